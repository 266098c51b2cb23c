"""Tests for structured logging and run context propagation."""

import asyncio
import json
import logging

import pytest

from blockflow.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    configure_logging,
    get_trace_context,
    set_trace_context,
    strip_ansi_codes,
)


def _record(message="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("blockflow.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_includes_trace_context(self):
        set_trace_context(run_id="run-1", trigger_id="t")
        set_trace_context(node_id="a")
        entry = json.loads(StructuredFormatter().format(_record("\033[31mred\033[0m")))
        assert entry["message"] == "red"
        assert entry["level"] == "info"
        assert entry["run_id"] == "run-1"
        assert entry["trigger_id"] == "t"
        assert entry["node_id"] == "a"

    def test_extra_fields(self):
        entry = json.loads(StructuredFormatter().format(_record(event="x", latency_ms=12)))
        assert entry["event"] == "x"
        assert entry["latency_ms"] == 12


class TestHumanReadableFormatter:
    def test_prefix(self):
        set_trace_context(run_id="run-0123456789", node_id="summarize")
        line = strip_ansi_codes(HumanReadableFormatter().format(_record("working")))
        assert line == "[INFO    ] [run:23456789 | node:summarize] working"

    def test_no_context(self):
        line = strip_ansi_codes(HumanReadableFormatter().format(_record("plain")))
        assert line == "[INFO    ] plain"


class TestTraceContext:
    def test_set_merges(self):
        set_trace_context(run_id="r")
        set_trace_context(node_id="n")
        assert get_trace_context() == {"run_id": "r", "node_id": "n"}

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_context(self):
        async def run(run_id):
            set_trace_context(run_id=run_id)
            await asyncio.sleep(0)
            return get_trace_context()["run_id"]

        assert await asyncio.gather(run("a"), run("b")) == ["a", "b"]
        assert get_trace_context() == {}


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "0")
        configure_logging(level="debug", format="json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_auto_reads_log_format(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "0")
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging(format="auto")
        assert isinstance(logging.getLogger().handlers[0].formatter, StructuredFormatter)

    def test_auto_defaults_to_human(self, monkeypatch):
        monkeypatch.delenv("ENV", raising=False)
        configure_logging(format="auto")
        assert isinstance(logging.getLogger().handlers[0].formatter, HumanReadableFormatter)
