from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from legalyze.config.settings import DocumentLockPolicy
from legalyze.pipeline.document_chat import DocumentChatWorkflow
from legalyze.pipeline.full_analysis import FullAnalysisWorkflow
from legalyze.pipeline.invoker import ResilientInvoker
from legalyze.pipeline.legal_check import LegalCheckWorkflow
from legalyze.pipeline.orchestrator import LifecycleOrchestrator
from legalyze.pipeline.party_extraction import PartyExtractionWorkflow
from legalyze.prompts.manager import (
    DOCUMENT_CHAT_PROMPT,
    LEGAL_ANALYSIS_PROMPT,
    LEGAL_CHECK_PROMPT,
    PARTY_EXTRACTION_PROMPT,
    PromptManager,
)
from legalyze.storage.base import RecordStore

PROMPTS_ROOT = Path(__file__).resolve().parents[1] / "legalyze" / "prompts"

VALID_ANALYSIS: dict[str, Any] = {
    "document": {
        "title": "Master Services Agreement",
        "type": "contract",
        "status": "active",
        "parties": ["Acme Corp", "Globex LLC"],
        "effectiveDate": "2024-01-01",
        "expirationDate": "not mentioned",
    },
    "riskScore": 42,
    "keyClauses": [
        {
            "title": "Termination",
            "section": "12.1",
            "text": "Either party may terminate on 30 days notice.",
            "importance": "high",
            "analysis": "Short notice period favours the provider.",
        }
    ],
    "negotiableTerms": [
        {
            "title": "Liability cap",
            "description": "Cap equals fees paid in the prior month.",
            "priority": "high",
            "currentLanguage": "limited to one month of fees",
            "suggestedLanguage": "limited to twelve months of fees",
        }
    ],
    "redFlags": [
        {
            "title": "Unilateral changes",
            "description": "Provider may change terms without consent.",
            "severity": "medium",
        }
    ],
    "recommendations": [
        {"title": "Extend notice", "description": "Ask for 90 days notice."}
    ],
    "overallImpression": {
        "summary": "Balanced but with a low liability cap.",
        "pros": ["Clear scope"],
        "cons": ["Low cap"],
        "conclusion": "Negotiate the cap before signing.",
    },
}

SENTINEL_RESPONSE = json.dumps(
    {"statuscode": "NOT_LEGAL_DOCUMENT", "note": "This is a recipe, not a contract."}
)


class HttpError(RuntimeError):
    def __init__(
        self,
        status_code: int,
        message: str = "http error",
        *,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def rate_limited(retry_delay: str | None = None) -> HttpError:
    details = None
    if retry_delay is not None:
        details = [
            {
                "@type": "type.googleapis.com/google.rpc.RetryInfo",
                "retryDelay": retry_delay,
            }
        ]
    return HttpError(429, "resource exhausted", details=details)


class ScriptedClient:
    """Generation client returning (or raising) scripted results in order."""

    provider = "fake"

    def __init__(self, *results: str | BaseException) -> None:
        self.results = list(results)
        self.prompts: list[str] = []
        self.models: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate_text(self, *, prompt: str, model: str) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        if not self.results:
            raise AssertionError("ScriptedClient ran out of scripted results")
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_invoker(
    client: ScriptedClient,
    *,
    sleep: RecordingSleep | None = None,
    model: str = "gemini-1.5-flash",
) -> ResilientInvoker:
    return ResilientInvoker(
        client=client,
        model=model,
        sleep_fn=sleep or RecordingSleep(),
        random_fn=lambda: 0.5,
    )


def prompt_manager() -> PromptManager:
    return PromptManager(PROMPTS_ROOT)


def build_orchestrator(
    store: RecordStore,
    client: ScriptedClient,
    *,
    sleep: RecordingSleep | None = None,
    document_lock_policy: DocumentLockPolicy = "none",
) -> LifecycleOrchestrator:
    invoker = build_invoker(client, sleep=sleep)
    prompts = prompt_manager()
    return LifecycleOrchestrator(
        store=store,
        full_analysis=FullAnalysisWorkflow(
            invoker=invoker,
            prompt_set=prompts.load_prompt_set(
                prompt_name=LEGAL_ANALYSIS_PROMPT, version="v001"
            ),
        ),
        party_extraction=PartyExtractionWorkflow(
            invoker=invoker,
            prompt_set=prompts.load_prompt_set(
                prompt_name=PARTY_EXTRACTION_PROMPT, version="v001"
            ),
        ),
        legal_check=LegalCheckWorkflow(
            invoker=invoker,
            prompt_set=prompts.load_prompt_set(
                prompt_name=LEGAL_CHECK_PROMPT, version="v001"
            ),
        ),
        document_chat=DocumentChatWorkflow(
            invoker=invoker,
            prompt_set=prompts.load_prompt_set(
                prompt_name=DOCUMENT_CHAT_PROMPT, version="v001"
            ),
        ),
        document_lock_policy=document_lock_policy,
    )
