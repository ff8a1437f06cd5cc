"""
Node Protocol - The units of work in a workflow graph.

A node is pure configuration: an id, a type that selects a handler, and an
opaque parameter bag the handler validates against its own schema. Nodes are
built once by the GraphLoader and never mutated afterwards.

The result of running a node is a NodeResult, written exactly once into the
RunContext.
"""

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models exchanged as camelCase JSON documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Error kind of nodes that were never started because an ancestor halted the run
DEPENDENCY_FAILED = "DependencyFailed"


class NodeStatus(StrEnum):
    """Terminal status of a node within one run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class TokenUsage(CamelModel):
    """Prompt/completion token accounting."""

    prompt: int = 0
    completion: int = 0
    total: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )

    @classmethod
    def of(cls, prompt: int, completion: int) -> "TokenUsage":
        return cls(prompt=prompt, completion=completion, total=prompt + completion)


class ErrorInfo(CamelModel):
    """Why a node failed. ``kind`` is the error class name."""

    kind: str
    message: str
    node_id: str | None = None


class NodeSpec(CamelModel):
    """
    Specification for a node in the graph.

    Example:
        NodeSpec(
            id="summarize",
            type="chat",
            parameters={"prompt": "Summarize: {{input.text}}"},
            log_requests=True,
        )
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique identifier within the graph")
    type: str = Field(min_length=1, description="Handler discriminator, e.g. 'chat'")
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Handler-specific configuration"
    )

    # Tracing flags
    log_requests: bool = False
    log_responses: bool = False
    debug: bool = False

    # Failure policy
    continue_on_error: bool = Field(
        default=False,
        description="Let dependents run after this node fails instead of halting the run",
    )
    max_retries: int = Field(default=0, ge=0, description="Retries for retryable failures")
    retry_backoff_seconds: float = Field(default=0.5, ge=0)


@dataclass
class NodeResult:
    """
    The outcome of running (or skipping) one node.

    ``error`` is present iff ``status`` is FAILED. ``token_usage`` is only
    reported by chat-capable nodes.
    """

    node_id: str
    status: NodeStatus
    payload: Any = None
    error: ErrorInfo | None = None
    duration_ms: int = 0
    token_usage: TokenUsage | None = None
    started_at: float = field(default_factory=time.time)
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    @classmethod
    def success(
        cls, node_id: str, payload: Any = None, token_usage: TokenUsage | None = None
    ) -> "NodeResult":
        return cls(
            node_id=node_id,
            status=NodeStatus.SUCCEEDED,
            payload=payload,
            token_usage=token_usage,
        )

    @classmethod
    def failure(cls, node_id: str, kind: str, message: str) -> "NodeResult":
        return cls(
            node_id=node_id,
            status=NodeStatus.FAILED,
            error=ErrorInfo(kind=kind, message=message, node_id=node_id),
        )

    @classmethod
    def skipped(cls, node_id: str) -> "NodeResult":
        return cls(node_id=node_id, status=NodeStatus.SKIPPED)

    @classmethod
    def dependency_failed(cls, node_id: str, failed_node_id: str) -> "NodeResult":
        """A node that never ran because an upstream node halted the run."""
        return cls.failure(
            node_id, DEPENDENCY_FAILED, f"Upstream node '{failed_node_id}' failed"
        )

    @property
    def ran(self) -> bool:
        """Whether a handler was actually invoked for this node."""
        if self.status == NodeStatus.SKIPPED:
            return False
        return not (self.error is not None and self.error.kind == DEPENDENCY_FAILED)
