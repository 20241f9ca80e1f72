from __future__ import annotations

import logging
from dataclasses import dataclass

from legalyze.pipeline.invoker import RATE_LIMITED_ONLY, ResilientInvoker
from legalyze.pipeline.parse_response import extract_structured_value
from legalyze.pipeline.validate_output import validate_output
from legalyze.prompts.manager import PromptSet
from legalyze.utils.error_taxonomy import (
    DocumentContentMissingError,
    SchemaValidationError,
)

logger = logging.getLogger("legalyze.party_extraction")

DEFAULT_CONTENT_CHAR_LIMIT = 10_000
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class PartyExtractionResult:
    parties: list[str]
    retries_used: int


class PartyExtractionWorkflow:
    def __init__(
        self,
        *,
        invoker: ResilientInvoker,
        prompt_set: PromptSet,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        content_char_limit: int = DEFAULT_CONTENT_CHAR_LIMIT,
    ) -> None:
        if prompt_set.schema is None:
            raise ValueError(f"Prompt {prompt_set.prompt_name} has no schema.json")
        self.invoker = invoker
        self.prompt_set = prompt_set
        self.max_attempts = max_attempts
        self.content_char_limit = content_char_limit

    async def run(self, content: str | None) -> PartyExtractionResult:
        if not content or not content.strip():
            raise DocumentContentMissingError("Document content is empty")

        prompt = self.prompt_set.render(
            {"DOCUMENT_CONTENT": content[: self.content_char_limit]}
        )
        invocation = await self.invoker.invoke(
            prompt,
            max_attempts=self.max_attempts,
            retryable=RATE_LIMITED_ONLY,
        )

        parsed = extract_structured_value(invocation.raw_text, "array")
        validation = validate_output(
            parsed_json=parsed,
            schema=self.prompt_set.schema,
            kind="party_list",
        )
        if not validation.valid:
            raise SchemaValidationError(validation.errors, artifact_kind="party_list")

        parties = dedupe_parties(parsed)
        logger.info(
            "Extracted %d parties after %d retries",
            len(parties),
            invocation.retries_used,
        )
        return PartyExtractionResult(
            parties=parties,
            retries_used=invocation.retries_used,
        )


def dedupe_parties(parties: list[str]) -> list[str]:
    """Trim names and drop case-insensitive duplicates, keeping first order."""
    seen: set[str] = set()
    unique: list[str] = []
    for party in parties:
        name = party.strip()
        key = name.casefold()
        if not name or key in seen:
            continue
        seen.add(key)
        unique.append(name)
    return unique
