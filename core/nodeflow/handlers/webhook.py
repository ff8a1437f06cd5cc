"""Webhook node: one HTTP request to an external service via httpx."""

import logging
import time
from typing import Any, Literal

import httpx
from pydantic import Field

from nodeflow.errors import NodeExecutionError
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.graph.template import render, render_value
from nodeflow.handlers.base import HandlerConfig, NodeHandler

logger = logging.getLogger(__name__)


class WebhookConfig(HandlerConfig):
    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class WebhookHandler(NodeHandler):
    """
    Sends the rendered request and returns the parsed response.

    Payload is the JSON body when the response declares JSON, else its text.
    Transport errors and non-2xx statuses raise a retryable
    NodeExecutionError, so ``maxRetries`` applies to them.

    Args:
        transport: optional httpx transport (tests pass httpx.MockTransport)
    """

    config_model = WebhookConfig

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: WebhookConfig = ctx.config_for(node.id)
        scope = ctx.scope()

        url = render(config.url, scope)
        headers = {k: render(v, scope) for k, v in config.headers.items()}
        params = render_value(config.query, scope)
        body = render_value(config.body, scope)

        # Header values may hold resolved secrets; keep them out of the trace
        ctx.record_io(
            node.id,
            request={"method": config.method, "url": url, "query": params, "body": body},
        )

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.request(
                    config.method,
                    url,
                    headers=headers,
                    params=params or None,
                    json=body if body is not None and config.method != "GET" else None,
                )
        except httpx.HTTPError as e:
            raise NodeExecutionError(
                f"{config.method} {url} failed: {type(e).__name__}: {e}", retryable=True
            ) from e

        payload = self._parse(response)
        ctx.record_io(node.id, response={"status": response.status_code, "body": payload})

        if not response.is_success:
            raise NodeExecutionError(
                f"{config.method} {url} returned HTTP {response.status_code}", retryable=True
            )

        logger.info(
            f"{config.method} {url} -> {response.status_code}",
            extra={"event": "webhook", "latency_ms": int((time.perf_counter() - started) * 1000)},
        )
        return NodeResult.success(node.id, payload)

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if "json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                logger.warning("Response declared JSON but could not be parsed")
        return response.text
