from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Sequence

from legalyze.config.settings import DocumentLockPolicy, Settings
from legalyze.llm_client.base import GenerationClient
from legalyze.llm_client.factory import build_generation_client, resolve_model
from legalyze.logging_setup import clear_log_context, set_log_context
from legalyze.pipeline.document_chat import ChatMessage, ChatReply, DocumentChatWorkflow
from legalyze.pipeline.full_analysis import FullAnalysisWorkflow
from legalyze.pipeline.invoker import ResilientInvoker
from legalyze.pipeline.legal_check import LegalCheckWorkflow
from legalyze.pipeline.party_extraction import PartyExtractionWorkflow
from legalyze.prompts.manager import (
    DOCUMENT_CHAT_PROMPT,
    LEGAL_ANALYSIS_PROMPT,
    LEGAL_CHECK_PROMPT,
    PARTY_EXTRACTION_PROMPT,
    PromptManager,
)
from legalyze.storage.base import RecordStore
from legalyze.storage.cache import CachedRecordStore
from legalyze.storage.models import TERMINAL_DOCUMENT_STATUSES, AnalysisBias, DocumentRecord
from legalyze.storage.repo import StorageRepo
from legalyze.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    NOT_LEGAL_DOCUMENT_CODE,
    DocumentBusyError,
    DocumentNotFoundError,
    ErrorCode,
    InvalidRequestError,
    build_error_details,
    classify_pipeline_error,
)

logger = logging.getLogger("legalyze.orchestrator")

OutcomeStatus = Literal["succeeded", "rejected", "failed"]

ANALYSIS_BIASES: tuple[str, ...] = ("neutral", "favorable", "risk")

_LOG_CONTEXT_KEYS = ("workflow", "document_id", "analysis_id")


@dataclass(frozen=True, slots=True)
class AnalysisOutcome:
    status: OutcomeStatus
    document_id: str
    analysis_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_details: str | None = None
    retries_used: int = 0
    metadata: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True, slots=True)
class PartyExtractionOutcome:
    status: OutcomeStatus
    document_id: str
    parties: list[str]
    record_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_details: str | None = None
    retries_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True, slots=True)
class LegalCheckOutcome:
    status: OutcomeStatus
    document_id: str
    is_legal: bool | None = None
    deleted: bool = False
    answer: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_details: str | None = None


@dataclass(frozen=True, slots=True)
class ChatOutcome:
    status: OutcomeStatus
    document_id: str
    reply: ChatReply | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_details: str | None = None


class _AnalysisLifecycle:
    """Terminal store writes for one analysis, issued at most once."""

    def __init__(self, store: RecordStore, *, document_id: str, analysis_id: str) -> None:
        self.store = store
        self.document_id = document_id
        self.analysis_id = analysis_id
        self.terminal_state: str | None = None

    @property
    def closed(self) -> bool:
        return self.terminal_state is not None

    def start(self) -> None:
        self.store.update_analysis_status(self.analysis_id, "processing")

    def complete(
        self,
        result: dict[str, Any],
        metadata: dict[str, Any],
    ) -> list[str | None]:
        if self.closed:
            return []
        self.terminal_state = "complete"
        error = _safe_store_call(
            "update_analysis_result",
            lambda: self.store.update_analysis_result(self.analysis_id, result, metadata),
        )
        if error is not None:
            self.terminal_state = None
            return [error, *self.fail()]
        return [self._document_status("completed")]

    def reject(self) -> list[str | None]:
        if self.closed:
            return []
        self.terminal_state = "rejected"
        error = _safe_store_call(
            "delete_analysis",
            lambda: self.store.delete_analysis(self.analysis_id),
        )
        if error is not None:
            self.terminal_state = None
            return [error, *self.fail()]
        return [self._document_status("failed")]

    def fail(self, *, update_document: bool = True) -> list[str | None]:
        if self.closed:
            return []
        self.terminal_state = "failed"
        errors = [
            _safe_store_call(
                "update_analysis_status",
                lambda: self.store.update_analysis_status(self.analysis_id, "failed"),
            )
        ]
        if update_document:
            errors.append(self._document_status("failed"))
        return errors

    def _document_status(self, status: str) -> str | None:
        return _safe_store_call(
            "update_document_status",
            lambda: self.store.update_document_status(self.document_id, status),
        )


class LifecycleOrchestrator:
    """Drives document and analysis state around the upstream workflows.

    Every error kind raised below this class ends here and is turned into
    terminal store writes plus an outcome object. Store failures during
    that reconciliation are logged and reported as ``STORAGE_ERROR``.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        full_analysis: FullAnalysisWorkflow,
        party_extraction: PartyExtractionWorkflow,
        legal_check: LegalCheckWorkflow,
        document_chat: DocumentChatWorkflow,
        document_lock_policy: DocumentLockPolicy = "none",
    ) -> None:
        self.store = store
        self.full_analysis = full_analysis
        self.party_extraction = party_extraction
        self.legal_check = legal_check
        self.document_chat = document_chat
        self.document_lock_policy = document_lock_policy

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: RecordStore | None = None,
        client: GenerationClient | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
    ) -> LifecycleOrchestrator:
        record_store: RecordStore = store or StorageRepo(settings.resolved_sqlite_path)
        if settings.cache_enabled:
            record_store = CachedRecordStore(
                record_store, max_items=settings.cache_max_items
            )

        invoker = ResilientInvoker(
            client=client or build_generation_client(settings),
            model=resolve_model(settings),
            sleep_fn=sleep_fn,
            random_fn=random_fn,
            max_delay_seconds=settings.max_delay_seconds,
        )
        prompts = PromptManager(settings.resolved_prompts_root)

        return cls(
            store=record_store,
            full_analysis=FullAnalysisWorkflow(
                invoker=invoker,
                prompt_set=prompts.load_prompt_set(
                    prompt_name=LEGAL_ANALYSIS_PROMPT,
                    version=settings.analysis_prompt_version,
                ),
                max_attempts=settings.analysis_max_attempts,
            ),
            party_extraction=PartyExtractionWorkflow(
                invoker=invoker,
                prompt_set=prompts.load_prompt_set(
                    prompt_name=PARTY_EXTRACTION_PROMPT,
                    version=settings.party_prompt_version,
                ),
                max_attempts=settings.party_max_attempts,
                content_char_limit=settings.party_content_char_limit,
            ),
            legal_check=LegalCheckWorkflow(
                invoker=invoker,
                prompt_set=prompts.load_prompt_set(
                    prompt_name=LEGAL_CHECK_PROMPT,
                    version=settings.legal_check_prompt_version,
                ),
                max_attempts=settings.party_max_attempts,
                content_char_limit=settings.legal_check_char_limit,
            ),
            document_chat=DocumentChatWorkflow(
                invoker=invoker,
                prompt_set=prompts.load_prompt_set(
                    prompt_name=DOCUMENT_CHAT_PROMPT,
                    version=settings.chat_prompt_version,
                ),
                max_attempts=settings.party_max_attempts,
            ),
            document_lock_policy=settings.document_lock_policy,
        )

    async def analyze_document(
        self,
        document_id: str,
        *,
        party_perspective: str,
        analysis_bias: AnalysisBias = "neutral",
    ) -> AnalysisOutcome:
        set_log_context(workflow="analyze", document_id=document_id)
        try:
            if analysis_bias not in ANALYSIS_BIASES:
                return _failed_analysis_outcome(
                    document_id,
                    None,
                    InvalidRequestError(f"Unsupported analysis bias: {analysis_bias}"),
                )
            return await self._analyze_document(
                document_id,
                party_perspective=party_perspective,
                analysis_bias=analysis_bias,
            )
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    async def _analyze_document(
        self,
        document_id: str,
        *,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> AnalysisOutcome:
        try:
            document = self._require_document(document_id)
            analysis_id = self.store.create_analysis(
                document_id=document_id,
                party_perspective=party_perspective,
                analysis_bias=analysis_bias,
            )
        except Exception as error:  # noqa: BLE001
            return _failed_analysis_outcome(document_id, None, error)

        set_log_context(analysis_id=analysis_id)
        lifecycle = _AnalysisLifecycle(
            self.store, document_id=document_id, analysis_id=analysis_id
        )

        try:
            entered = self._enter_processing(document_id)
        except Exception as error:  # noqa: BLE001
            return _failed_analysis_outcome(
                document_id,
                analysis_id,
                error,
                persistence_errors=lifecycle.fail(update_document=False),
            )
        if not entered:
            return _failed_analysis_outcome(
                document_id,
                analysis_id,
                DocumentBusyError(f"Document {document_id} is already being processed"),
                persistence_errors=lifecycle.fail(update_document=False),
            )

        try:
            lifecycle.start()
            run = await self.full_analysis.run(
                document.content,
                party_perspective,
                analysis_bias,
            )
        except Exception as error:  # noqa: BLE001
            return _failed_analysis_outcome(
                document_id,
                analysis_id,
                error,
                persistence_errors=lifecycle.fail(),
            )

        if run.rejection is not None:
            errors = lifecycle.reject()
            code, message = _merge_persistence_error(
                error_code=NOT_LEGAL_DOCUMENT_CODE,
                error_message=run.rejection.note,
                persistence_errors=errors,
            )
            logger.info("Analysis rejected: %s", run.rejection.note, extra={"error_code": code})
            return AnalysisOutcome(
                status="rejected" if code == NOT_LEGAL_DOCUMENT_CODE else "failed",
                document_id=document_id,
                # The analysis row survives only when its delete failed.
                analysis_id=None if lifecycle.terminal_state == "rejected" else analysis_id,
                error_code=code,
                error_message=message,
                retries_used=run.retries_used,
            )

        errors = lifecycle.complete(run.artifact or {}, run.metadata)
        if any(errors):
            code, message = _merge_persistence_error(
                error_code="STORAGE_ERROR",
                error_message=ERROR_FRIENDLY_MESSAGES["STORAGE_ERROR"],
                persistence_errors=errors,
            )
            return AnalysisOutcome(
                status="failed",
                document_id=document_id,
                analysis_id=analysis_id,
                error_code=code,
                error_message=message,
                retries_used=run.retries_used,
            )

        logger.info(
            "Analysis completed after %d retries",
            run.retries_used,
            extra={"duration_ms": round(run.elapsed_ms, 1)},
        )
        return AnalysisOutcome(
            status="succeeded",
            document_id=document_id,
            analysis_id=analysis_id,
            retries_used=run.retries_used,
            metadata=run.metadata,
        )

    async def extract_parties(
        self,
        document_id: str,
        content: str | None = None,
    ) -> PartyExtractionOutcome:
        set_log_context(workflow="extract_parties", document_id=document_id)
        try:
            try:
                document = self._require_document(document_id)
            except Exception as error:  # noqa: BLE001
                code, message, details = _describe_error(error)
                return PartyExtractionOutcome(
                    status="failed",
                    document_id=document_id,
                    parties=[],
                    error_code=code,
                    error_message=message,
                    error_details=details,
                )

            text = content if content else document.content
            try:
                result = await self.party_extraction.run(text)
                record_id = self.store.store_extracted_parties(document_id, result.parties)
            except Exception as error:  # noqa: BLE001
                code, message, details = _describe_error(error)
                code, message = _merge_persistence_error(
                    error_code=code,
                    error_message=message,
                    persistence_errors=[
                        _safe_store_call(
                            "update_document_status",
                            lambda: self.store.update_document_status(document_id, "failed"),
                        )
                    ],
                )
                return PartyExtractionOutcome(
                    status="failed",
                    document_id=document_id,
                    parties=[],
                    error_code=code,
                    error_message=message,
                    error_details=details,
                )

            return PartyExtractionOutcome(
                status="succeeded",
                document_id=document_id,
                parties=result.parties,
                record_id=record_id,
                retries_used=result.retries_used,
            )
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    async def check_legal_document(self, document_id: str) -> LegalCheckOutcome:
        set_log_context(workflow="legal_check", document_id=document_id)
        try:
            try:
                document = self._require_document(document_id)
                result = await self.legal_check.run(document.content)
            except Exception as error:  # noqa: BLE001
                code, message, details = _describe_error(error)
                logger.error("Legal check failed: %s", details, extra={"error_code": code})
                return LegalCheckOutcome(
                    status="failed",
                    document_id=document_id,
                    error_code=code,
                    error_message=message,
                    error_details=details,
                )

            if result.is_legal:
                return LegalCheckOutcome(
                    status="succeeded",
                    document_id=document_id,
                    is_legal=True,
                    answer=result.answer,
                )

            logger.info("Document judged not legal; deleting")
            delete_error = _safe_store_call(
                "delete_document",
                lambda: self.store.delete_document(document_id),
            )
            if delete_error is not None:
                return LegalCheckOutcome(
                    status="failed",
                    document_id=document_id,
                    is_legal=False,
                    answer=result.answer,
                    error_code="STORAGE_ERROR",
                    error_message=ERROR_FRIENDLY_MESSAGES["STORAGE_ERROR"],
                    error_details=delete_error,
                )
            return LegalCheckOutcome(
                status="succeeded",
                document_id=document_id,
                is_legal=False,
                deleted=True,
                answer=result.answer,
            )
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    async def chat_with_document(
        self,
        document_id: str,
        message: str,
        previous_messages: Sequence[ChatMessage] = (),
    ) -> ChatOutcome:
        set_log_context(workflow="chat", document_id=document_id)
        try:
            document = self._require_document(document_id)
            reply = await self.document_chat.run(
                document.content,
                message,
                previous_messages,
            )
        except Exception as error:  # noqa: BLE001
            code, message_text, details = _describe_error(error)
            return ChatOutcome(
                status="failed",
                document_id=document_id,
                error_code=code,
                error_message=message_text,
                error_details=details,
            )
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

        return ChatOutcome(status="succeeded", document_id=document_id, reply=reply)

    def _require_document(self, document_id: str) -> DocumentRecord:
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return document

    def _enter_processing(self, document_id: str) -> bool:
        if self.document_lock_policy == "compare_and_swap":
            return self.store.update_document_status(
                document_id,
                "processing",
                expected_statuses=TERMINAL_DOCUMENT_STATUSES,
            )
        self.store.update_document_status(document_id, "processing")
        return True


def _describe_error(error: BaseException) -> tuple[ErrorCode, str, str]:
    code = classify_pipeline_error(error)
    details = build_error_details(error)
    logger.warning("Workflow failed: %s", details, extra={"error_code": code})
    return code, ERROR_FRIENDLY_MESSAGES[code], details


def _failed_analysis_outcome(
    document_id: str,
    analysis_id: str | None,
    error: BaseException,
    *,
    persistence_errors: list[str | None] | None = None,
) -> AnalysisOutcome:
    code, message, details = _describe_error(error)
    code, message = _merge_persistence_error(
        error_code=code,
        error_message=message,
        persistence_errors=persistence_errors or [],
    )
    return AnalysisOutcome(
        status="failed",
        document_id=document_id,
        analysis_id=analysis_id,
        error_code=code,
        error_message=message,
        error_details=details,
    )


def _safe_store_call(operation: str, call: Callable[[], Any]) -> str | None:
    try:
        call()
        return None
    except Exception as error:  # noqa: BLE001
        details = build_error_details(error)
        logger.error(
            "Storage persistence failed in %s: %s",
            operation,
            details,
            extra={"error_code": "STORAGE_ERROR"},
        )
        return details


def _merge_persistence_error(
    *,
    error_code: str,
    error_message: str,
    persistence_errors: list[str | None],
) -> tuple[str, str]:
    details = [item for item in persistence_errors if item]
    if not details:
        return error_code, error_message

    merged = "\n".join(details)
    if error_code != "STORAGE_ERROR":
        return "STORAGE_ERROR", f"{error_message}\nStorage details:\n{merged}"
    return "STORAGE_ERROR", f"{error_message}\n{merged}"
