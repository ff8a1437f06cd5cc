"""Shared nodeflow configuration.

Reads ``~/.nodeflow/configuration.json`` once per call site so the CLI and
any embedding server agree on defaults. Environment variables override the
file:

- NODEFLOW_MODEL             default chat model (LiteLLM model string)
- NODEFLOW_MAX_CONCURRENCY   node tasks allowed to run at once
- NODEFLOW_RUN_TIMEOUT       run deadline in seconds
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_CONFIG_FILE = Path.home() / ".nodeflow" / "configuration.json"

DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_RUN_TIMEOUT_SECONDS = 120.0
DEFAULT_MEMORY_MESSAGES = 20
DEFAULT_MEMORY_SCOPES = 1024


def get_nodeflow_config() -> dict[str, Any]:
    """Load configuration from ~/.nodeflow/configuration.json ({} when absent or unreadable)."""
    if not NODEFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(NODEFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config {NODEFLOW_CONFIG_FILE}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _env_number(name: str, cast: type, default: Any) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return default


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the default chat model string (e.g. 'anthropic/claude-sonnet-4-20250514')."""
    if os.environ.get("NODEFLOW_MODEL"):
        return os.environ["NODEFLOW_MODEL"]
    llm = get_nodeflow_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return llm.get("model") or DEFAULT_MODEL


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = get_nodeflow_config().get("llm", {}).get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_max_concurrency() -> int:
    configured = get_nodeflow_config().get("engine", {}).get(
        "max_concurrency", DEFAULT_MAX_CONCURRENCY
    )
    return max(1, _env_number("NODEFLOW_MAX_CONCURRENCY", int, configured))


def get_run_timeout() -> float:
    configured = get_nodeflow_config().get("engine", {}).get(
        "run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS
    )
    return _env_number("NODEFLOW_RUN_TIMEOUT", float, configured)


def get_mcp_servers() -> list[dict[str, Any]]:
    """Engine-wide MCP servers, available to every graph."""
    return list(get_nodeflow_config().get("mcp_servers", []))


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine limits and defaults loaded from ~/.nodeflow/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
    max_concurrency: int = field(default_factory=get_max_concurrency)
    run_timeout_seconds: float = field(default_factory=get_run_timeout)
    memory_max_messages: int = DEFAULT_MEMORY_MESSAGES
    memory_max_scopes: int = DEFAULT_MEMORY_SCOPES
