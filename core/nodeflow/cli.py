"""
Command-line interface for nodeflow.

Usage:
    nodeflow validate flows/support.json
    nodeflow run flows/support.json --input '{"question": "Where is my order?"}'
    nodeflow run flows/support.json --input @request.json --trace --stream

The chat capability is LiteLLM with the model from ``--model``,
NODEFLOW_MODEL or ~/.nodeflow/configuration.json. Secret markers resolve
from environment variables.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from nodeflow.config import EngineConfig, get_mcp_servers
from nodeflow.errors import ConfigurationError, NodeflowError, ValidationError
from nodeflow.graph.context import ExecutionRequest, StreamChunk
from nodeflow.graph.executor import GraphExecutor
from nodeflow.graph.loader import GraphLoader
from nodeflow.handlers.registry import default_registry
from nodeflow.observability import configure_logging
from nodeflow.runner.tool_registry import ToolResolver

logger = logging.getLogger(__name__)


def parse_input(value: str | None) -> dict[str, Any]:
    """Parse ``--input``: inline JSON, or ``@path`` to a JSON file."""
    if not value:
        return {}
    if value.startswith("@"):
        value = Path(value[1:]).read_text(encoding="utf-8")
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError("--input must be a JSON object")
    return data


def cmd_validate(args: argparse.Namespace) -> int:
    """Load a graph and report whether it is valid."""
    try:
        graph = GraphLoader(default_registry()).load_file(args.graph)
    except (ValidationError, ConfigurationError) as e:
        print(f"✗ {e.kind}: {e}", file=sys.stderr)
        return 1

    print(f"✓ {args.graph} is valid")
    print(f"  Graph: {graph.id}")
    print(f"  Nodes: {len(graph.nodes)}  Edges: {len(graph.edges)}")
    print(f"  Entry: {graph.entry_node}")
    return 0


def _build_executor(args: argparse.Namespace) -> GraphExecutor:
    from nodeflow.llm.litellm import LiteLLMProvider

    config = EngineConfig()
    if args.model:
        config.model = args.model
    provider = LiteLLMProvider(model=config.model, api_key=config.api_key, api_base=config.api_base)
    return GraphExecutor(
        tool_resolver=ToolResolver(mcp_servers=get_mcp_servers()),
        providers=provider,
        config=config,
    )


async def _run(args: argparse.Namespace, executor: GraphExecutor) -> dict[str, Any]:
    graph = executor.load(Path(args.graph))
    request = ExecutionRequest(
        input=parse_input(args.input),
        trace=args.trace,
        debug=args.debug,
        session_id=args.session,
        timeout_seconds=args.timeout,
    )

    if not args.stream:
        response = await executor.execute(graph, request)
        return response.to_dict()

    current_node = None
    async for item in executor.stream(graph, request):
        if isinstance(item, StreamChunk):
            if item.node_id != current_node:
                current_node = item.node_id
                print(f"\n[{current_node}] ", end="", file=sys.stderr)
            print(item.content, end="", file=sys.stderr, flush=True)
        else:
            print(file=sys.stderr)
            return item.to_dict()
    raise RuntimeError("Stream ended without a response")


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a graph and print the JSON response."""
    try:
        executor = _build_executor(args)
        result = asyncio.run(_run(args, executor))
    except NodeflowError as e:
        print(f"✗ {e.kind}: {e}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        print(f"✗ Invalid input: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0 if "error" not in result else 2


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="nodeflow - execute declarative agent workflow graphs",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument(
        "--log-format", default="auto", choices=["auto", "json", "human"], help="Log output format"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate a graph document")
    validate_parser.add_argument("graph", help="Path to the graph JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Execute a graph")
    run_parser.add_argument("graph", help="Path to the graph JSON file")
    run_parser.add_argument("--input", help="Input JSON object, or @file.json")
    run_parser.add_argument("--trace", action="store_true", help="Include the execution trace")
    run_parser.add_argument(
        "--debug", action="store_true", help="Trace with request/response payloads"
    )
    run_parser.add_argument(
        "--stream", action="store_true", help="Print streamed chunks to stderr"
    )
    run_parser.add_argument("--session", help="Session id for conversation memory")
    run_parser.add_argument("--timeout", type=float, help="Run deadline in seconds")
    run_parser.add_argument("--model", help="LiteLLM model string for chat nodes")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
