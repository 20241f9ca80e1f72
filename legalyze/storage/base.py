from __future__ import annotations

from typing import Any, Collection, Protocol

from legalyze.storage.models import (
    AnalysisBias,
    AnalysisRecord,
    AnalysisStatus,
    DocumentRecord,
    DocumentStatus,
    ExtractedPartiesRecord,
)


class RecordStore(Protocol):
    """Persistence boundary used by the orchestrator.

    Every method is a single atomic record operation and raises
    ``PersistenceError`` on failure.
    """

    def get_document(self, document_id: str) -> DocumentRecord | None: ...

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        updated_at: str | None = None,
        *,
        expected_statuses: Collection[DocumentStatus] | None = None,
    ) -> bool: ...

    def delete_document(self, document_id: str) -> bool: ...

    def create_analysis(
        self,
        *,
        document_id: str,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> str: ...

    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None: ...

    def update_analysis_status(self, analysis_id: str, status: AnalysisStatus) -> None: ...

    def update_analysis_result(
        self,
        analysis_id: str,
        result: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def delete_analysis(self, analysis_id: str) -> bool: ...

    def store_extracted_parties(self, document_id: str, parties: list[str]) -> str: ...

    def get_extracted_parties(self, document_id: str) -> ExtractedPartiesRecord | None: ...
