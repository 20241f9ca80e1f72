from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from legalyze.logging_setup import (
    JsonFormatter,
    clear_log_context,
    get_log_context,
    set_log_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    yield
    clear_log_context()
    logging.getLogger("legalyze").handlers.clear()


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="legalyze.invoker",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_context_and_extras() -> None:
    set_log_context(workflow="analyze", document_id="doc-1")

    data = json.loads(JsonFormatter().format(_record("retrying", attempt=2, delay_s=10.5)))

    assert data["workflow"] == "analyze"
    assert data["document_id"] == "doc-1"
    assert data["attempt"] == 2
    assert data["delay_s"] == 10.5
    assert data["msg"] == "retrying"
    assert data["level"] == "WARNING"
    assert "analysis_id" not in data


def test_clear_log_context_by_keys() -> None:
    set_log_context(workflow="chat", document_id="doc-1", analysis_id="a-1")

    clear_log_context(["analysis_id"])

    assert get_log_context() == {"workflow": "chat", "document_id": "doc-1"}


@pytest.mark.asyncio
async def test_context_is_isolated_between_tasks() -> None:
    async def _worker(document_id: str) -> dict:
        set_log_context(document_id=document_id)
        await asyncio.sleep(0)
        return get_log_context()

    first, second = await asyncio.gather(_worker("doc-a"), _worker("doc-b"))

    assert first == {"document_id": "doc-a"}
    assert second == {"document_id": "doc-b"}
    assert get_log_context() == {}


def test_setup_logging_writes_json_lines_to_stderr(tmp_path: Path, capsys) -> None:
    log_file = tmp_path / "legalyze.log"
    logger = setup_logging("INFO", log_file)

    set_log_context(document_id="doc-9")
    logging.getLogger("legalyze.orchestrator").info("Analysis completed")
    logging.getLogger("legalyze.orchestrator").debug("hidden")
    for handler in logger.handlers:
        handler.flush()

    captured = capsys.readouterr()
    stderr_lines = captured.err.strip().splitlines()
    file_lines = log_file.read_text(encoding="utf-8").strip().splitlines()

    assert captured.out == ""
    assert len(stderr_lines) == 1
    assert stderr_lines == file_lines
    assert json.loads(stderr_lines[0])["document_id"] == "doc-9"
    assert logger.propagate is False
