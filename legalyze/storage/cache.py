from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Collection, Generic, TypeVar

from legalyze.storage.base import RecordStore
from legalyze.storage.models import (
    AnalysisBias,
    AnalysisRecord,
    AnalysisStatus,
    DocumentRecord,
    DocumentStatus,
    ExtractedPartiesRecord,
)

logger = logging.getLogger("legalyze.storage.cache")

V = TypeVar("V")


class LRUCache(Generic[V]):
    """Bounded in-memory LRU map."""

    def __init__(self, max_items: int = 256) -> None:
        self._items: OrderedDict[str, V] = OrderedDict()
        self._max_items = max(max_items, 1)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def get(self, key: str) -> V | None:
        if key in self._items:
            self._items.move_to_end(key)
            return self._items[key]
        return None

    def set(self, key: str, value: V) -> None:
        if key in self._items:
            self._items.move_to_end(key)
        elif len(self._items) >= self._max_items:
            self._items.popitem(last=False)
        self._items[key] = value

    def pop(self, key: str) -> None:
        self._items.pop(key, None)

    def values(self) -> list[V]:
        return list(self._items.values())


class CachedRecordStore:
    """Read-through cache over a ``RecordStore``.

    Only documents and analyses are cached. Every write through this
    wrapper drops the keys it touches, so reads never see a value older
    than the last write made here.
    """

    def __init__(self, inner: RecordStore, *, max_items: int = 256) -> None:
        self.inner = inner
        self._documents: LRUCache[DocumentRecord] = LRUCache(max_items)
        self._analyses: LRUCache[AnalysisRecord] = LRUCache(max_items)

    def get_document(self, document_id: str) -> DocumentRecord | None:
        cached = self._documents.get(document_id)
        if cached is not None:
            logger.debug("Document cache hit", extra={"document_id": document_id})
            return cached

        record = self.inner.get_document(document_id)
        if record is not None:
            self._documents.set(document_id, record)
        return record

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        updated_at: str | None = None,
        *,
        expected_statuses: Collection[DocumentStatus] | None = None,
    ) -> bool:
        self._documents.pop(document_id)
        return self.inner.update_document_status(
            document_id,
            status,
            updated_at,
            expected_statuses=expected_statuses,
        )

    def delete_document(self, document_id: str) -> bool:
        self._documents.pop(document_id)
        for analysis in self._analyses.values():
            if analysis.document_id == document_id:
                self._analyses.pop(analysis.analysis_id)
        return self.inner.delete_document(document_id)

    def create_analysis(
        self,
        *,
        document_id: str,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> str:
        return self.inner.create_analysis(
            document_id=document_id,
            party_perspective=party_perspective,
            analysis_bias=analysis_bias,
        )

    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None:
        cached = self._analyses.get(analysis_id)
        if cached is not None:
            logger.debug("Analysis cache hit", extra={"analysis_id": analysis_id})
            return cached

        record = self.inner.get_analysis(analysis_id)
        if record is not None:
            self._analyses.set(analysis_id, record)
        return record

    def update_analysis_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        self._analyses.pop(analysis_id)
        self.inner.update_analysis_status(analysis_id, status)

    def update_analysis_result(
        self,
        analysis_id: str,
        result: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._analyses.pop(analysis_id)
        self.inner.update_analysis_result(analysis_id, result, metadata)

    def delete_analysis(self, analysis_id: str) -> bool:
        self._analyses.pop(analysis_id)
        return self.inner.delete_analysis(analysis_id)

    def store_extracted_parties(self, document_id: str, parties: list[str]) -> str:
        return self.inner.store_extracted_parties(document_id, parties)

    def get_extracted_parties(self, document_id: str) -> ExtractedPartiesRecord | None:
        return self.inner.get_extracted_parties(document_id)
