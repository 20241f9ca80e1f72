from __future__ import annotations

import re
from dataclasses import dataclass

from legalyze.pipeline.invoker import RATE_LIMITED_ONLY, ResilientInvoker
from legalyze.prompts.manager import PromptSet
from legalyze.utils.error_taxonomy import DocumentContentMissingError

DEFAULT_CONTENT_CHAR_LIMIT = 20_000
DEFAULT_MAX_ATTEMPTS = 3

_FIRST_WORD_RE = re.compile(r"[A-Za-z]+")


@dataclass(frozen=True, slots=True)
class LegalCheckResult:
    is_legal: bool
    answer: str
    retries_used: int


class LegalCheckWorkflow:
    """Yes/no gate asking the upstream whether a document is legal text."""

    def __init__(
        self,
        *,
        invoker: ResilientInvoker,
        prompt_set: PromptSet,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        content_char_limit: int = DEFAULT_CONTENT_CHAR_LIMIT,
    ) -> None:
        self.invoker = invoker
        self.prompt_set = prompt_set
        self.max_attempts = max_attempts
        self.content_char_limit = content_char_limit

    async def run(self, content: str | None) -> LegalCheckResult:
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
        answer = invocation.raw_text.strip()
        return LegalCheckResult(
            is_legal=not is_negative_answer(answer),
            answer=answer,
            retries_used=invocation.retries_used,
        )


def is_negative_answer(answer: str) -> bool:
    match = _FIRST_WORD_RE.search(answer)
    return match is not None and match.group(0).lower() == "no"
