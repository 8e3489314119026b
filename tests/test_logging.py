"""Tests for logging setup."""
from __future__ import annotations

import logging

import pytest

from npc_loop.config import GlobalConfig
from npc_loop.logging_config import reset_logging, setup_logging, setup_logging_from_config


@pytest.fixture(autouse=True)
def clean_logging(monkeypatch):
    monkeypatch.delenv("NPC_LOOP_LOG_LEVEL", raising=False)
    reset_logging()
    yield
    reset_logging()


def test_console_only():
    setup_logging("DEBUG", "none")
    parent = logging.getLogger("npc_loop")
    assert parent.level == logging.DEBUG
    assert parent.propagate is False
    assert len(parent.handlers) == 1


def test_file_handler_writes_child_records(tmp_path):
    log_file = tmp_path / "logs" / "npc.log"
    setup_logging("INFO", str(log_file))
    logging.getLogger("npc_loop.orchestrator").info("[%s] Workflow start", "agent-1")
    for handler in logging.getLogger("npc_loop").handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "| INFO     | npc_loop.orchestrator | [agent-1] Workflow start" in text


def test_setup_runs_once_until_reset():
    setup_logging("INFO", "none")
    setup_logging("DEBUG", "none")
    parent = logging.getLogger("npc_loop")
    assert parent.level == logging.INFO
    assert len(parent.handlers) == 1

    reset_logging()
    assert parent.handlers == []
    setup_logging("WARNING", "none")
    assert parent.level == logging.WARNING


def test_unknown_level_defaults_to_info():
    setup_logging("CHATTY", "none")
    assert logging.getLogger("npc_loop").level == logging.INFO


def test_environment_overrides_level(monkeypatch):
    monkeypatch.setenv("NPC_LOOP_LOG_LEVEL", "error")
    setup_logging("DEBUG", "none")
    assert logging.getLogger("npc_loop").level == logging.ERROR


def test_http_stack_is_quieted_above_debug():
    logging.getLogger("urllib3").setLevel(logging.NOTSET)
    setup_logging("INFO", "none")
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_setup_from_config(tmp_path):
    config = GlobalConfig.create_default()
    config.logging_level = "WARNING"
    config.logging_file = str(tmp_path / "npc.log")
    setup_logging_from_config(config)
    parent = logging.getLogger("npc_loop")
    assert parent.level == logging.WARNING
    assert len(parent.handlers) == 2
