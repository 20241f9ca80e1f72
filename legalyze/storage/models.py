from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

DocumentStatus = Literal["processing", "completed", "failed"]
AnalysisStatus = Literal["pending", "processing", "complete", "failed"]
AnalysisBias = Literal["neutral", "favorable", "risk"]

ANALYSIS_STATUS_ORDER: dict[str, int] = {
    "pending": 0,
    "processing": 1,
    "complete": 2,
    "failed": 2,
}
TERMINAL_ANALYSIS_STATUSES: frozenset[str] = frozenset({"complete", "failed"})
TERMINAL_DOCUMENT_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    document_id: str
    title: str
    content: str | None
    status: DocumentStatus
    created_at: str
    updated_at: str

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


@dataclass(frozen=True, slots=True)
class AnalysisRecord:
    analysis_id: str
    document_id: str
    status: AnalysisStatus
    party_perspective: str
    analysis_bias: AnalysisBias
    created_at: str
    updated_at: str
    result_json: dict[str, Any] | None = None
    metadata_json: dict[str, Any] | None = None

    @property
    def risk_score(self) -> float | None:
        if not self.result_json:
            return None
        value = self.result_json.get("riskScore")
        return float(value) if isinstance(value, (int, float)) else None


@dataclass(frozen=True, slots=True)
class ExtractedPartiesRecord:
    record_id: str
    document_id: str
    parties: list[str]
    created_at: str
