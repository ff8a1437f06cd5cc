"""
Graph Executor - runs a validated graph for one execution request.

The executor:
1. Resolves secret markers and re-validates every node's parameters
2. Builds the request-scoped tool registry
3. Asks the planner for ready batches and runs each batch concurrently,
   bounded by a semaphore and a single run deadline
4. Records every NodeResult and trace entry in the RunContext
5. Hands the finished context to the ResponseAssembler

Collaborators (handler registry, tool resolver, memory manager, chat
providers, secret resolver) are injected; nothing is looked up globally.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel

from nodeflow.config import EngineConfig
from nodeflow.errors import NodeExecutionError, NodeflowError
from nodeflow.graph.context import (
    DEFAULT_PROVIDER,
    ChunkSink,
    ExecutionRequest,
    RunContext,
    StreamChunk,
)
from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.loader import GraphDocument, GraphLoader
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.graph.planner import ExecutionPlanner
from nodeflow.handlers.registry import HandlerRegistry, default_registry
from nodeflow.llm.provider import ChatProvider
from nodeflow.memory import MemoryManager
from nodeflow.observability import clear_trace_context, set_trace_context
from nodeflow.runner.tool_registry import ToolResolver
from nodeflow.runtime.assembler import ExecutionResponse, ResponseAssembler
from nodeflow.runtime.trace import RESOLVED_POSITION_OFFSET
from nodeflow.secrets import EnvSecretResolver, SecretResolver, resolve_secrets


class GraphExecutor:
    """
    Executes graphs.

    Example:
        executor = GraphExecutor(providers=LiteLLMProvider(model="openai/gpt-4o-mini"))
        graph = executor.load(document)
        response = await executor.execute(graph, ExecutionRequest(input={"text": "hi"}))
        print(response.to_dict())
    """

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        tool_resolver: ToolResolver | None = None,
        memory_manager: MemoryManager | None = None,
        providers: dict[str, ChatProvider] | ChatProvider | None = None,
        secret_resolver: SecretResolver | None = None,
        config: EngineConfig | None = None,
        assembler: ResponseAssembler | None = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Node type -> handler mapping (default: built-in handlers)
            tool_resolver: Builds the per-run tool registry
            memory_manager: Conversation memory shared across runs of a session
            providers: Chat capabilities by name, or a single default one
            secret_resolver: Resolves ``${NAME}`` markers (default: environment)
            config: Engine limits (concurrency, run deadline)
            assembler: Builds the ExecutionResponse
        """
        self.config = config or EngineConfig()
        self.registry = registry or default_registry()
        self.tool_resolver = tool_resolver or ToolResolver()
        self.memory = memory_manager or MemoryManager(
            default_max_messages=self.config.memory_max_messages,
            max_scopes=self.config.memory_max_scopes,
        )
        if isinstance(providers, ChatProvider):
            providers = {DEFAULT_PROVIDER: providers}
        self.providers: dict[str, ChatProvider] = dict(providers or {})
        self.secret_resolver = secret_resolver or EnvSecretResolver()
        self.assembler = assembler or ResponseAssembler()
        self.logger = logging.getLogger(__name__)

    def load(self, document: GraphDocument) -> GraphSpec:
        """Load and validate a graph document against this executor's registry."""
        return GraphLoader(self.registry).load(document)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute(
        self,
        graph: GraphSpec,
        request: ExecutionRequest | dict[str, Any] | None = None,
        *,
        chunk_sink: ChunkSink | None = None,
    ) -> ExecutionResponse:
        """
        Execute a graph.

        Args:
            graph: A graph returned by ``load``
            request: Input and tracing options
            chunk_sink: Receives StreamChunks from streaming nodes

        Returns:
            ExecutionResponse, also when nodes failed

        Raises:
            ConfigurationError: unresolved secret, bad parameters, unknown
                tool or provider; raised before any node executes
        """
        if request is None:
            request = ExecutionRequest()
        elif isinstance(request, dict):
            request = ExecutionRequest.model_validate(request)

        run_id = uuid.uuid4().hex
        set_trace_context(run_id=run_id, graph_id=graph.id, session_id=request.session_id)
        try:
            configs = self._resolve_configs(graph)
            async with self.tool_resolver.resolve(graph.tool_servers) as tools:
                ctx = RunContext(
                    graph,
                    request,
                    run_id=run_id,
                    configs=configs,
                    tools=tools,
                    memory=self.memory,
                    providers=self.providers,
                    chunk_sink=chunk_sink,
                )
                self._validate_run(ctx)

                self.logger.info(
                    f"🚀 Starting run of graph '{graph.id}' ({len(graph.nodes)} nodes)",
                    extra={"event": "run_start"},
                )
                await self._run(ctx)
                ctx.finish()
            return self.assembler.assemble(ctx)
        finally:
            clear_trace_context()

    async def stream(
        self,
        graph: GraphSpec,
        request: ExecutionRequest | dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk | ExecutionResponse]:
        """
        Execute a graph, yielding StreamChunks as streaming nodes produce
        them and the ExecutionResponse last.
        """
        queue: asyncio.Queue[StreamChunk] = asyncio.Queue()
        run = asyncio.create_task(self.execute(graph, request, chunk_sink=queue.put_nowait))
        getter: asyncio.Task | None = None
        try:
            while True:
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({getter, run}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                    continue
                getter.cancel()
                break
            while not queue.empty():
                yield queue.get_nowait()
            yield run.result()
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not run.done():
                run.cancel()
                await asyncio.gather(run, return_exceptions=True)

    def _resolve_configs(self, graph: GraphSpec) -> dict[str, BaseModel]:
        configs: dict[str, BaseModel] = {}
        for node in graph.nodes.values():
            handler = self.registry.get(node.type)
            parameters = resolve_secrets(node.parameters, self.secret_resolver, node.id)
            configs[node.id] = handler.parse_config(node, parameters)
        return configs

    def _validate_run(self, ctx: RunContext) -> None:
        for node in ctx.graph.nodes.values():
            self.registry.get(node.type).validate_run(ctx, node)

    async def _run(self, ctx: RunContext) -> None:
        graph = ctx.graph
        planner = ExecutionPlanner(graph)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        timeout = ctx.request.timeout_seconds or self.config.run_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while planner.has_ready():
            batch = planner.next_batch()
            batch_index = planner.batch_count
            self.logger.debug(f"Batch {batch_index}: {batch}")

            tasks = {
                node_id: asyncio.create_task(
                    self._dispatch(ctx, graph.nodes[node_id], semaphore),
                    name=f"node:{node_id}",
                )
                for node_id in batch
            }
            batch_started = time.time()
            try:
                _, pending = await asyncio.wait(
                    tasks.values(), timeout=max(deadline - loop.time(), 0)
                )
            except asyncio.CancelledError:
                for task in tasks.values():
                    task.cancel()
                raise
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            timed_out: list[str] = []
            halting: list[str] = []
            skip_position = RESOLVED_POSITION_OFFSET

            for position, node_id in enumerate(batch):
                node = graph.nodes[node_id]
                task = tasks[node_id]
                if task in pending:
                    result = NodeResult.failure(
                        node_id,
                        NodeExecutionError.__name__,
                        f"Run deadline of {timeout}s exceeded",
                    )
                    result.started_at = batch_started
                    result.duration_ms = int((time.time() - batch_started) * 1000)
                    timed_out.append(node_id)
                else:
                    result = task.result()
                    if result.failed and not node.continue_on_error:
                        halting.append(node_id)

                self._record(ctx, node, result, (batch_index, position))
                for skipped_id in planner.complete(node_id, result):
                    self._record(
                        ctx,
                        graph.nodes[skipped_id],
                        NodeResult.skipped(skipped_id),
                        (batch_index, skip_position),
                    )
                    skip_position += 1

            if timed_out:
                self.logger.error(
                    f"⏱ Run deadline exceeded; cancelled {', '.join(timed_out)}",
                    extra={"event": "run_timeout"},
                )
                ctx.halted_by = timed_out[0]
                halted = planner.halt()
            elif halting:
                self.logger.error(
                    f"✗ Halting run after failure of {', '.join(halting)}",
                    extra={"event": "run_halted"},
                )
                ctx.halted_by = halting[0]
                halted = planner.halt(halting)
            else:
                continue

            for result in halted.values():
                self._record(ctx, graph.nodes[result.node_id], result, (batch_index, skip_position))
                skip_position += 1
            break

    def _record(
        self, ctx: RunContext, node: NodeSpec, result: NodeResult, order: tuple[int, int]
    ) -> None:
        ctx.set_result(result)
        ctx.trace.record(node, result, order, io=ctx.io_for(node.id))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self, ctx: RunContext, node: NodeSpec, semaphore: asyncio.Semaphore
    ) -> NodeResult:
        """
        Run one node through its handler, with retries.

        Never raises (except cancellation): every failure becomes a failed
        NodeResult. Retryable NodeExecutionErrors are retried up to
        ``node.max_retries`` times with exponential backoff. The semaphore is
        held per attempt only, so a node waiting out its backoff leaves the
        slot to its siblings.
        """
        set_trace_context(node_id=node.id)
        handler = self.registry.get(node.type)
        started_at: float | None = None
        started = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            async with semaphore:
                if started_at is None:
                    started_at = time.time()
                    started = time.perf_counter()
                try:
                    result = await handler.execute(ctx, node)
                    break
                except NodeflowError as e:
                    retryable = isinstance(e, NodeExecutionError) and e.retryable
                    if not (retryable and attempt <= node.max_retries):
                        self.logger.error(f"✗ Node '{node.id}' failed: {e.kind}: {e}")
                        result = NodeResult.failure(node.id, e.kind, str(e))
                        break
                    error = e
                except Exception as e:
                    self.logger.exception(f"✗ Node '{node.id}' raised unexpectedly")
                    result = NodeResult.failure(
                        node.id, NodeExecutionError.__name__, f"{type(e).__name__}: {e}"
                    )
                    break

            delay = node.retry_backoff_seconds * (2 ** (attempt - 1))
            self.logger.warning(
                f"↻ Node '{node.id}' failed ({error}); retry {attempt}/"
                f"{node.max_retries} in {delay}s",
                extra={"event": "node_retry", "attempt": attempt},
            )
            await asyncio.sleep(delay)

        result.started_at = started_at
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        result.attempts = attempt
        if result.succeeded:
            self.logger.info(
                f"✓ Node '{node.id}' succeeded",
                extra={"event": "node_complete", "latency_ms": result.duration_ms},
            )
        return result
