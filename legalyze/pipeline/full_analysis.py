from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from legalyze.pipeline.invoker import RATE_LIMITED_OR_UNAVAILABLE, ResilientInvoker
from legalyze.pipeline.parse_response import extract_structured_value
from legalyze.pipeline.validate_output import SentinelRejection, validate_artifact
from legalyze.prompts.manager import PromptSet
from legalyze.storage.models import AnalysisBias
from legalyze.utils.error_taxonomy import DocumentContentMissingError

logger = logging.getLogger("legalyze.full_analysis")

DEFAULT_MAX_ATTEMPTS = 5
ANALYSIS_DEPTH = "full"

STRICT_NOT_LEGAL_INSTRUCTION = (
    "IMPORTANT: If the provided document is NOT a legal document, contract, "
    "policy, agreement, or similar legal text, respond ONLY with the following "
    'JSON: {"statuscode": "NOT_LEGAL_DOCUMENT", "note": "This PDF is not a '
    'legal document, contract, policy, or agreement." } and nothing else.'
)


@dataclass(frozen=True, slots=True)
class AnalysisRun:
    """Result of one full-analysis invocation.

    Exactly one of ``artifact`` and ``rejection`` is set.
    """

    retries_used: int
    elapsed_ms: float
    artifact: dict[str, Any] | None = None
    rejection: SentinelRejection | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return self.rejection is not None


class FullAnalysisWorkflow:
    def __init__(
        self,
        *,
        invoker: ResilientInvoker,
        prompt_set: PromptSet,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if prompt_set.schema is None:
            raise ValueError(f"Prompt {prompt_set.prompt_name} has no schema.json")
        self.invoker = invoker
        self.prompt_set = prompt_set
        self.max_attempts = max_attempts

    def build_prompt(
        self,
        *,
        content: str,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> str:
        body = self.prompt_set.render(
            {
                "PARTY_PERSPECTIVE": party_perspective,
                "ANALYSIS_BIAS": analysis_bias,
                "ANALYSIS_DEPTH": ANALYSIS_DEPTH,
                "DOCUMENT_CONTENT": content,
            }
        )
        return f"{STRICT_NOT_LEGAL_INSTRUCTION}\n\n{body}"

    async def run(
        self,
        content: str | None,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> AnalysisRun:
        if not content or not content.strip():
            raise DocumentContentMissingError("Document content is empty")

        started_at = time.perf_counter()
        prompt = self.build_prompt(
            content=content,
            party_perspective=party_perspective,
            analysis_bias=analysis_bias,
        )
        invocation = await self.invoker.invoke(
            prompt,
            max_attempts=self.max_attempts,
            retryable=RATE_LIMITED_OR_UNAVAILABLE,
        )

        parsed = extract_structured_value(invocation.raw_text, "object")
        validated = validate_artifact(
            parsed,
            kind="full_analysis",
            schema=self.prompt_set.schema,
        )
        elapsed_ms = (time.perf_counter() - started_at) * 1000

        if isinstance(validated, SentinelRejection):
            logger.info("Upstream rejected the document as not legal")
            return AnalysisRun(
                retries_used=invocation.retries_used,
                elapsed_ms=elapsed_ms,
                rejection=validated,
            )

        metadata = {
            "processingTime": int(round(elapsed_ms)),
            "retries": invocation.retries_used,
            "promptVersion": self.prompt_set.prompt_version,
            "aiModel": self.invoker.model,
        }
        return AnalysisRun(
            retries_used=invocation.retries_used,
            elapsed_ms=elapsed_ms,
            artifact=validated.value,
            metadata=metadata,
        )
