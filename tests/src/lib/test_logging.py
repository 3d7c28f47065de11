"""
Tests for logging setup (src/lib/logging.py).
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from src.lib.logging import hash_identifier, redact_identifiers, setup_logging


def test_hash_identifier_is_stable_and_short() -> None:
    digest = hash_identifier("1.2.3.4")
    assert digest == hash_identifier("1.2.3.4")
    assert len(digest) == 12
    assert "1.2.3.4" not in digest


def test_hash_identifier_differs_per_client() -> None:
    assert hash_identifier("1.2.3.4") != hash_identifier("1.2.3.5")


@pytest.mark.parametrize("key", ["identifier", "ip", "client_ip"])
def test_redact_identifiers_hashes_raw_keys(key) -> None:
    event = redact_identifiers(None, "warning", {"event": "blocked", key: "1.2.3.4"})
    assert event == {"event": "blocked", "client": hash_identifier("1.2.3.4")}


def test_redact_identifiers_keeps_existing_client() -> None:
    event = redact_identifiers(None, "info", {"event": "x", "client": "abc", "ip": "1.2.3.4"})
    assert event == {"event": "x", "client": "abc"}


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.parametrize("dev_mode", ["1", "0"], ids=["console", "json"])
def test_setup_logging_installs_single_handler(monkeypatch, restore_logging, dev_mode) -> None:
    monkeypatch.setenv("VISEU_DEV_MODE", dev_mode)
    monkeypatch.setenv("LOG_LEVEL", "warning")

    setup_logging()

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    assert root.level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_explicit_arguments_override_environment(monkeypatch, restore_logging) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")

    setup_logging(dev_mode=False, level="error")

    assert logging.getLogger().level == logging.ERROR


def test_json_lines_never_carry_raw_ip(restore_logging, capsys) -> None:
    setup_logging(dev_mode=False, level="info")

    structlog.get_logger("viseu.test").warning("identifier_blocked", identifier="1.2.3.4")

    [line] = capsys.readouterr().err.strip().splitlines()
    record = json.loads(line)
    assert record["event"] == "identifier_blocked"
    assert record["client"] == hash_identifier("1.2.3.4")
    assert "1.2.3.4" not in line
