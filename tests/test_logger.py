from __future__ import annotations

import logging
from pathlib import Path

import pytest

import ephemera.core.logger as logger_module


@pytest.mark.asyncio
async def test_records_carry_request_id(tmp_path: Path):
    logger_module.setup_logging(tmp_path, debug=True)
    records: list[dict] = []
    logger_module.logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        logger_module.logger.info("outside any request")
        token = logger_module.request_id_ctx.set("req-123")
        try:
            logger_module.logger.info("inside a request")
        finally:
            logger_module.request_id_ctx.reset(token)
    finally:
        await logger_module.shutdown_logging()

    by_message = {r["message"]: r for r in records}
    assert by_message["outside any request"]["extra"]["request_id"] == "-"
    assert by_message["inside a request"]["extra"]["request_id"] == "req-123"


@pytest.mark.asyncio
async def test_standard_logging_is_routed_to_loguru(tmp_path: Path):
    logger_module.setup_logging(tmp_path, debug=False)
    messages: list[str] = []
    logger_module.logger.add(lambda message: messages.append(message.record["message"]))
    try:
        logging.getLogger("uvicorn.error").warning("stdlib says %s", "hello")
    finally:
        await logger_module.shutdown_logging()

    assert "stdlib says hello" in messages


def test_setup_adds_console_and_file_sinks(monkeypatch, tmp_path: Path):
    add_calls: list[tuple[tuple, dict]] = []

    def _add_sink(*a, **kw) -> int:
        add_calls.append((a, kw))
        return len(add_calls)

    monkeypatch.setattr(logger_module.logger, "add", _add_sink)
    monkeypatch.setattr(logger_module.logger, "remove", lambda *a, **kw: None)
    monkeypatch.setattr(logger_module.logger, "configure", lambda *a, **kw: None)
    monkeypatch.setattr(logger_module.logging, "basicConfig", lambda *a, **kw: None)

    logger_module.setup_logging(tmp_path, debug=False)

    assert len(add_calls) == 2
    console, log_file = add_calls
    assert console[1]["level"] == "INFO"
    assert str(log_file[0][0]).startswith(str(tmp_path))
    assert log_file[1]["level"] == "DEBUG"
    assert log_file[1]["retention"] == "7 days"
