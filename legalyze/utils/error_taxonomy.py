from __future__ import annotations

import sqlite3
from typing import Any, Literal

ErrorCode = Literal[
    "NOT_LEGAL_DOCUMENT",
    "DOCUMENT_NOT_FOUND",
    "DOCUMENT_CONTENT_MISSING",
    "DOCUMENT_BUSY",
    "INVALID_REQUEST",
    "UPSTREAM_TRANSIENT_ERROR",
    "UPSTREAM_FATAL_ERROR",
    "RETRIES_EXHAUSTED",
    "RESPONSE_FORMAT_ERROR",
    "SCHEMA_VALIDATION_ERROR",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

ErrorClassification = Literal["rate_limited", "service_unavailable", "fatal"]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "NOT_LEGAL_DOCUMENT": (
        "This PDF is not a legal document, contract, policy, or agreement."
    ),
    "DOCUMENT_NOT_FOUND": "Document not found.",
    "DOCUMENT_CONTENT_MISSING": "Document content is not available yet.",
    "DOCUMENT_BUSY": "Document is already being processed. Try again later.",
    "INVALID_REQUEST": "Analysis request options are not supported.",
    "UPSTREAM_TRANSIENT_ERROR": (
        "Analysis service is temporarily unavailable. Please retry."
    ),
    "UPSTREAM_FATAL_ERROR": "Analysis service request failed.",
    "RETRIES_EXHAUSTED": (
        "Analysis service stayed unavailable after several attempts. Please retry later."
    ),
    "RESPONSE_FORMAT_ERROR": "Analysis service returned a response without valid JSON.",
    "SCHEMA_VALIDATION_ERROR": "Analysis result did not match the expected structure.",
    "STORAGE_ERROR": "Storage operation failed while saving analysis data.",
    "UNKNOWN_ERROR": "Unexpected error occurred during analysis.",
}

NOT_LEGAL_DOCUMENT_CODE = "NOT_LEGAL_DOCUMENT"

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


class PipelineError(Exception):
    """Base class for every error the pipeline surfaces to the orchestrator."""

    error_code: ErrorCode = "UNKNOWN_ERROR"


class UpstreamError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        classification: ErrorClassification,
        status_code: int | None = None,
        retry_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.classification = classification
        self.status_code = status_code
        self.retry_hint = retry_hint


class TransientUpstreamError(UpstreamError):
    """Rate-limited or service-unavailable upstream response."""

    error_code: ErrorCode = "UPSTREAM_TRANSIENT_ERROR"


class FatalUpstreamError(UpstreamError):
    """Any other upstream failure; never retried."""

    error_code: ErrorCode = "UPSTREAM_FATAL_ERROR"


class RetriesExhaustedError(PipelineError):
    error_code: ErrorCode = "RETRIES_EXHAUSTED"

    def __init__(self, *, attempts: int, last_error: BaseException | None) -> None:
        last_message = str(last_error) if last_error is not None else "Unknown error"
        super().__init__(
            f"Failed to generate content after {attempts} attempts. "
            f"Last error: {last_message}"
        )
        self.attempts = attempts
        self.last_error = last_error


class ResponseFormatError(PipelineError, ValueError):
    """Raised when no balanced JSON value can be parsed out of upstream text."""

    error_code: ErrorCode = "RESPONSE_FORMAT_ERROR"


class SchemaValidationError(PipelineError, ValueError):
    error_code: ErrorCode = "SCHEMA_VALIDATION_ERROR"

    def __init__(self, errors: list[str], *, artifact_kind: str) -> None:
        super().__init__(
            f"{artifact_kind} failed schema validation: {'; '.join(errors)}"
        )
        self.errors = errors
        self.artifact_kind = artifact_kind


class PersistenceError(PipelineError):
    """Raised by the record store for any storage failure."""

    error_code: ErrorCode = "STORAGE_ERROR"


class RecordNotFoundError(PersistenceError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Record not found"


class InvalidStatusTransitionError(PersistenceError):
    """Raised when a status write would move a record backwards."""


class DocumentNotFoundError(PipelineError):
    error_code: ErrorCode = "DOCUMENT_NOT_FOUND"


class DocumentContentMissingError(PipelineError, ValueError):
    error_code: ErrorCode = "DOCUMENT_CONTENT_MISSING"


class DocumentBusyError(PipelineError):
    error_code: ErrorCode = "DOCUMENT_BUSY"


class InvalidRequestError(PipelineError, ValueError):
    error_code: ErrorCode = "INVALID_REQUEST"


def classify_upstream_error(error: BaseException) -> ErrorClassification:
    status_code = extract_http_status_code(error)
    if status_code == 429:
        return "rate_limited"
    if status_code == 503:
        return "service_unavailable"
    return "fatal"


def to_upstream_error(error: BaseException) -> UpstreamError:
    if isinstance(error, UpstreamError):
        return error

    classification = classify_upstream_error(error)
    status_code = extract_http_status_code(error)
    message = f"{error.__class__.__name__}: {error}"
    if classification == "fatal":
        return FatalUpstreamError(
            message, classification=classification, status_code=status_code
        )
    return TransientUpstreamError(
        message,
        classification=classification,
        status_code=status_code,
        retry_hint=extract_retry_delay_hint(error)
        if classification == "rate_limited"
        else None,
    )


def classify_pipeline_error(error: BaseException) -> ErrorCode:
    if isinstance(error, PipelineError):
        return error.error_code
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    return "UNKNOWN_ERROR"


def extract_http_status_code(error: BaseException) -> int | None:
    for field_name in ("status_code", "status", "code", "http_status"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def extract_retry_delay_hint(error: BaseException) -> str | None:
    for details in _iter_error_details(error):
        if not isinstance(details, dict):
            continue
        if details.get("@type") != _RETRY_INFO_TYPE:
            continue
        retry_delay = details.get("retryDelay") or details.get("retry_delay")
        if isinstance(retry_delay, str) and retry_delay.strip():
            return retry_delay.strip()

    return None


def build_error_details(error: BaseException) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    return "\n".join(details)


def is_storage_error_exception(error: BaseException) -> bool:
    if isinstance(error, (PersistenceError, sqlite3.Error)):
        return True
    if isinstance(error, OSError):
        return True
    return False


def _iter_error_details(error: BaseException) -> list[Any]:
    # SDKs expose RetryInfo either as a flat errorDetails list or nested
    # inside the JSON error body.
    candidates: list[Any] = []
    for field_name in ("errorDetails", "error_details"):
        value = getattr(error, field_name, None)
        if isinstance(value, list):
            candidates.extend(value)

    details = getattr(error, "details", None)
    if isinstance(details, list):
        candidates.extend(details)
    elif isinstance(details, dict):
        nested = details.get("error", details)
        if isinstance(nested, dict) and isinstance(nested.get("details"), list):
            candidates.extend(nested["details"])

    return candidates


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
