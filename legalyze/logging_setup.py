import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "legalyze"

# Context lives in a ContextVar so concurrent asyncio tasks keep their own ids.
_log_ctx: ContextVar[dict] = ContextVar("legalyze_log_context", default={})

_CONTEXT_FIELDS = ("workflow", "document_id", "analysis_id", "attempt")
_EXTRA_FIELDS = ("delay_s", "duration_ms", "error_code", "status_code")


def set_log_context(**kwargs):
    ctx = dict(_log_ctx.get())
    ctx.update(kwargs)
    _log_ctx.set(ctx)


def clear_log_context(keys=None):
    if keys is None:
        _log_ctx.set({})
        return
    ctx = {k: v for k, v in _log_ctx.get().items() if k not in keys}
    _log_ctx.set(ctx)


def get_log_context() -> dict:
    return dict(_log_ctx.get())


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "logger": record.name,
        }
        for field in _CONTEXT_FIELDS:
            data[field] = getattr(record, field, ctx.get(field))
        data["msg"] = record.getMessage()

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                data[field] = getattr(record, field)

        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        # Clean nulls
        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, ensure_ascii=False)


def setup_logging(level=logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
