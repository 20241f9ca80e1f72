from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from jsonschema import Draft202012Validator

from legalyze.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    NOT_LEGAL_DOCUMENT_CODE,
    SchemaValidationError,
)

ArtifactKind = Literal["full_analysis", "party_list", "chat_reply"]

_SENTINEL_FIELDS = ("statuscode", "statusCode")


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    schema_errors: list[str]
    invariant_errors: list[str]

    @property
    def errors(self) -> list[str]:
        return self.schema_errors + self.invariant_errors


@dataclass(frozen=True, slots=True)
class ValidatedArtifact:
    kind: ArtifactKind
    value: Any


@dataclass(frozen=True, slots=True)
class SentinelRejection:
    note: str
    code: str = NOT_LEGAL_DOCUMENT_CODE


def detect_rejection_sentinel(value: Any) -> SentinelRejection | None:
    if not isinstance(value, dict):
        return None

    for field_name in _SENTINEL_FIELDS:
        if value.get(field_name) == NOT_LEGAL_DOCUMENT_CODE:
            note = value.get("note")
            if not isinstance(note, str) or not note.strip():
                note = ERROR_FRIENDLY_MESSAGES["NOT_LEGAL_DOCUMENT"]
            return SentinelRejection(note=note.strip())

    return None


def validate_artifact(
    value: Any,
    *,
    kind: ArtifactKind,
    schema: dict[str, Any],
) -> ValidatedArtifact | SentinelRejection:
    rejection = detect_rejection_sentinel(value)
    if rejection is not None:
        return rejection

    result = validate_output(parsed_json=value, schema=schema, kind=kind)
    if not result.valid:
        raise SchemaValidationError(result.errors, artifact_kind=kind)

    return ValidatedArtifact(kind=kind, value=value)


def validate_output(
    *,
    parsed_json: Any,
    schema: dict[str, Any],
    kind: ArtifactKind,
) -> ValidationResult:
    schema_errors = _validate_schema(parsed_json=parsed_json, schema=schema)
    invariant_errors = (
        [] if schema_errors else _validate_invariants(parsed_json=parsed_json, kind=kind)
    )

    return ValidationResult(
        valid=not schema_errors and not invariant_errors,
        schema_errors=schema_errors,
        invariant_errors=invariant_errors,
    )


def _validate_schema(*, parsed_json: Any, schema: dict[str, Any]) -> list[str]:
    validator = Draft202012Validator(schema)
    errors = sorted(
        validator.iter_errors(parsed_json),
        key=lambda item: [str(part) for part in item.path],
    )

    messages: list[str] = []
    for error in errors:
        path = "/".join(str(item) for item in error.path)
        if path:
            messages.append(f"{path}: {error.message}")
        else:
            messages.append(error.message)

    return messages


def _validate_invariants(*, parsed_json: Any, kind: ArtifactKind) -> list[str]:
    if kind == "full_analysis":
        return _full_analysis_invariants(parsed_json)
    if kind == "party_list":
        return _party_list_invariants(parsed_json)
    return []


def _full_analysis_invariants(parsed_json: dict[str, Any]) -> list[str]:
    errors: list[str] = []

    risk_score = parsed_json.get("riskScore")
    if isinstance(risk_score, (int, float)) and not 0 <= risk_score <= 100:
        errors.append(f"riskScore must be between 0 and 100, got {risk_score}")

    return errors


def _party_list_invariants(parsed_json: list[Any]) -> list[str]:
    errors: list[str] = []
    for index, party in enumerate(parsed_json):
        if isinstance(party, str) and not party.strip():
            errors.append(f"parties[{index}] must not be blank")
    return errors
