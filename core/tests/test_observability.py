"""Tests for logging formatters, run context propagation and configuration."""

import asyncio
import json
import logging
import sys

import pytest

from nodeflow import config
from nodeflow.config import EngineConfig
from nodeflow.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)
from nodeflow.observability.logging import HumanReadableFormatter, StructuredFormatter


def _record(message: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("nodeflow.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------
class TestTraceContext:
    def test_set_merges_and_clear_resets(self):
        set_trace_context(run_id="r1", graph_id="g")
        set_trace_context(node_id="chat")

        assert get_trace_context() == {"run_id": "r1", "graph_id": "g", "node_id": "chat"}

        clear_trace_context()
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_node_context_does_not_leak_between_tasks(self):
        set_trace_context(run_id="r1")

        async def node(node_id: str) -> dict:
            set_trace_context(node_id=node_id)
            await asyncio.sleep(0)
            return get_trace_context()

        first, second = await asyncio.gather(node("a"), node("b"))

        assert first == {"run_id": "r1", "node_id": "a"}
        assert second == {"run_id": "r1", "node_id": "b"}
        assert get_trace_context() == {"run_id": "r1"}


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------
class TestFormatters:
    def test_structured_formatter_emits_json_with_context(self):
        set_trace_context(run_id="r1", graph_id="support", node_id="chat")

        line = StructuredFormatter().format(
            _record("\x1b[32mdone\x1b[0m", event="node_complete", latency_ms=12)
        )
        data = json.loads(line)

        assert data["message"] == "done"
        assert data["level"] == "info"
        assert data["logger"] == "nodeflow.test"
        assert data["run_id"] == "r1"
        assert data["node_id"] == "chat"
        assert data["event"] == "node_complete"
        assert data["latency_ms"] == 12
        assert "tokens_used" not in data

    def test_structured_formatter_includes_exceptions(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "nodeflow.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]

    def test_human_formatter_prefix(self):
        set_trace_context(run_id="0123456789abcdef", graph_id="support", node_id="chat")

        line = HumanReadableFormatter().format(_record("hello", event="run_start"))

        assert "[run:01234567 | graph:support | node:chat] hello [run_start]" in line
        assert "INFO" in line

    def test_human_formatter_without_context(self):
        line = HumanReadableFormatter().format(_record("plain", level=logging.WARNING))
        assert line.endswith("plain")
        assert "[WARNING " in line


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "fmt, formatter_cls", [("json", StructuredFormatter), ("human", HumanReadableFormatter)]
)
def test_configure_logging_installs_formatter(
    restore_root_logger, fmt, formatter_cls, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("NO_COLOR", "0")
    monkeypatch.setenv("FORCE_COLOR", "1")
    configure_logging(level="debug", format=fmt)

    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, formatter_cls)
    assert restore_root_logger.level == logging.DEBUG


def test_configure_logging_auto_follows_environment(
    restore_root_logger, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("NO_COLOR", "0")
    monkeypatch.setenv("FORCE_COLOR", "1")
    monkeypatch.setenv("LOG_FORMAT", "json")
    configure_logging(format="auto")
    assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    monkeypatch.setenv("LOG_FORMAT", "")
    monkeypatch.setenv("ENV", "development")
    configure_logging(format="auto")
    assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@pytest.fixture
def config_file(tmp_path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(config, "NODEFLOW_CONFIG_FILE", path)
    for name in ("NODEFLOW_MODEL", "NODEFLOW_MAX_CONCURRENCY", "NODEFLOW_RUN_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return path


class TestConfig:
    def test_defaults_without_file(self, config_file):
        engine = EngineConfig()

        assert engine.model == config.DEFAULT_MODEL
        assert engine.api_key is None
        assert engine.max_concurrency == config.DEFAULT_MAX_CONCURRENCY
        assert engine.run_timeout_seconds == config.DEFAULT_RUN_TIMEOUT_SECONDS
        assert config.get_mcp_servers() == []

    def test_values_from_file(self, config_file, monkeypatch: pytest.MonkeyPatch):
        config_file.write_text(
            json.dumps(
                {
                    "llm": {
                        "provider": "anthropic",
                        "model": "claude-3-5-haiku",
                        "api_key_env_var": "MY_KEY",
                    },
                    "engine": {"max_concurrency": 3, "run_timeout_seconds": 30},
                    "mcp_servers": [{"name": "docs", "transport": "http", "url": "http://x"}],
                }
            ),
            encoding="utf-8",
        )
        monkeypatch.setenv("MY_KEY", "sk-file")

        engine = EngineConfig()

        assert engine.model == "anthropic/claude-3-5-haiku"
        assert engine.api_key == "sk-file"
        assert engine.max_concurrency == 3
        assert engine.run_timeout_seconds == 30.0
        assert config.get_mcp_servers()[0]["name"] == "docs"

    def test_environment_overrides_file(self, config_file, monkeypatch: pytest.MonkeyPatch):
        config_file.write_text(json.dumps({"engine": {"max_concurrency": 3}}), encoding="utf-8")
        monkeypatch.setenv("NODEFLOW_MODEL", "ollama/llama3")
        monkeypatch.setenv("NODEFLOW_MAX_CONCURRENCY", "0")
        monkeypatch.setenv("NODEFLOW_RUN_TIMEOUT", "2.5")

        assert config.get_preferred_model() == "ollama/llama3"
        assert config.get_max_concurrency() == 1
        assert config.get_run_timeout() == 2.5

    def test_invalid_values_fall_back(self, config_file, monkeypatch: pytest.MonkeyPatch):
        config_file.write_text("{not json", encoding="utf-8")
        monkeypatch.setenv("NODEFLOW_RUN_TIMEOUT", "soon")

        assert config.get_nodeflow_config() == {}
        assert config.get_run_timeout() == config.DEFAULT_RUN_TIMEOUT_SECONDS
