from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Iterator
from uuid import uuid4

from legalyze.storage.db import connection, init_db
from legalyze.storage.models import (
    ANALYSIS_STATUS_ORDER,
    TERMINAL_ANALYSIS_STATUSES,
    AnalysisBias,
    AnalysisRecord,
    AnalysisStatus,
    DocumentRecord,
    DocumentStatus,
    ExtractedPartiesRecord,
)
from legalyze.utils.error_taxonomy import (
    InvalidStatusTransitionError,
    PersistenceError,
    RecordNotFoundError,
)

_ANALYSIS_COLUMNS = """
    analysis_id,
    document_id,
    status,
    party_perspective,
    analysis_bias,
    result_json,
    metadata_json,
    created_at,
    updated_at
"""


class StorageRepo:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        try:
            init_db(self.db_path)
        except (sqlite3.Error, OSError) as error:
            raise PersistenceError(f"init_db failed: {error}") from error

    def create_document(
        self,
        *,
        title: str,
        content: str | None = None,
        status: DocumentStatus = "processing",
        document_id: str | None = None,
    ) -> DocumentRecord:
        document_identifier = document_id or str(uuid4())
        created_at = _utc_now()

        with self._connect("create_document") as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    document_id, title, content, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (document_identifier, title, content, status, created_at, created_at),
            )

        return DocumentRecord(
            document_id=document_identifier,
            title=title,
            content=content,
            status=status,
            created_at=created_at,
            updated_at=created_at,
        )

    def update_document_content(self, document_id: str, content: str) -> None:
        with self._connect("update_document_content") as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET content = ?, updated_at = ?
                WHERE document_id = ?
                """,
                (content, _utc_now(), document_id),
            )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Document not found: {document_id}")

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with self._connect("get_document") as conn:
            row = conn.execute(
                """
                SELECT document_id, title, content, status, created_at, updated_at
                FROM documents
                WHERE document_id = ?
                """,
                (document_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_document_record(row)

    def list_documents(self, *, limit: int = 50) -> list[DocumentRecord]:
        with self._connect("list_documents") as conn:
            rows = conn.execute(
                """
                SELECT document_id, title, content, status, created_at, updated_at
                FROM documents
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (max(limit, 1),),
            ).fetchall()

        return [_row_to_document_record(row) for row in rows]

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        updated_at: str | None = None,
        *,
        expected_statuses: Collection[DocumentStatus] | None = None,
    ) -> bool:
        """Write a document status.

        With ``expected_statuses`` the write is a compare-and-swap and
        returns False when the current status is not one of them.
        """
        timestamp = updated_at or _utc_now()
        query = "UPDATE documents SET status = ?, updated_at = ? WHERE document_id = ?"
        params: list[Any] = [status, timestamp, document_id]
        if expected_statuses is not None:
            expected = sorted(set(expected_statuses))
            if not expected:
                return False
            placeholders = ", ".join("?" for _ in expected)
            query += f" AND status IN ({placeholders})"
            params.extend(expected)

        with self._connect("update_document_status") as conn:
            cursor = conn.execute(query, tuple(params))
            if cursor.rowcount > 0:
                return True
            exists = conn.execute(
                "SELECT 1 FROM documents WHERE document_id = ?",
                (document_id,),
            ).fetchone()

        if exists is None:
            raise RecordNotFoundError(f"Document not found: {document_id}")
        return False

    def delete_document(self, document_id: str) -> bool:
        with self._connect("delete_document") as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE document_id = ?",
                (document_id,),
            )
        return cursor.rowcount > 0

    def create_analysis(
        self,
        *,
        document_id: str,
        party_perspective: str,
        analysis_bias: AnalysisBias,
    ) -> str:
        analysis_id = str(uuid4())
        created_at = _utc_now()

        with self._connect("create_analysis") as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO analyses (
                        analysis_id,
                        document_id,
                        status,
                        party_perspective,
                        analysis_bias,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, 'pending', ?, ?, ?, ?)
                    """,
                    (
                        analysis_id,
                        document_id,
                        party_perspective,
                        analysis_bias,
                        created_at,
                        created_at,
                    ),
                )
            except sqlite3.IntegrityError as error:
                raise RecordNotFoundError(
                    f"Document not found: {document_id}"
                ) from error

        return analysis_id

    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None:
        with self._connect("get_analysis") as conn:
            row = conn.execute(
                f"SELECT {_ANALYSIS_COLUMNS} FROM analyses WHERE analysis_id = ?",
                (analysis_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_analysis_record(row)

    def list_analyses_for_document(self, document_id: str) -> list[AnalysisRecord]:
        with self._connect("list_analyses_for_document") as conn:
            rows = conn.execute(
                f"""
                SELECT {_ANALYSIS_COLUMNS}
                FROM analyses
                WHERE document_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (document_id,),
            ).fetchall()

        return [_row_to_analysis_record(row) for row in rows]

    def get_latest_analysis_for_document(self, document_id: str) -> AnalysisRecord | None:
        analyses = self.list_analyses_for_document(document_id)
        return analyses[0] if analyses else None

    def update_analysis_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        with self._connect("update_analysis_status") as conn:
            current = _load_analysis_status(conn, analysis_id)
            _ensure_forward_transition(analysis_id, current=current, target=status)
            conn.execute(
                """
                UPDATE analyses
                SET status = ?, updated_at = ?
                WHERE analysis_id = ?
                """,
                (status, _utc_now(), analysis_id),
            )

    def update_analysis_result(
        self,
        analysis_id: str,
        result: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._connect("update_analysis_result") as conn:
            current = _load_analysis_status(conn, analysis_id)
            _ensure_forward_transition(analysis_id, current=current, target="complete")
            conn.execute(
                """
                UPDATE analyses
                SET status = 'complete',
                    result_json = ?,
                    metadata_json = ?,
                    updated_at = ?
                WHERE analysis_id = ?
                """,
                (
                    _to_json_text(result),
                    _to_json_text(metadata) if metadata is not None else None,
                    _utc_now(),
                    analysis_id,
                ),
            )

    def delete_analysis(self, analysis_id: str) -> bool:
        with self._connect("delete_analysis") as conn:
            cursor = conn.execute(
                "DELETE FROM analyses WHERE analysis_id = ?",
                (analysis_id,),
            )
        return cursor.rowcount > 0

    def store_extracted_parties(self, document_id: str, parties: list[str]) -> str:
        record_id = str(uuid4())
        with self._connect("store_extracted_parties") as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO extracted_parties (
                        record_id, document_id, parties_json, created_at
                    ) VALUES (?, ?, ?, ?)
                    """,
                    (
                        record_id,
                        document_id,
                        json.dumps(list(parties), ensure_ascii=False),
                        _utc_now(),
                    ),
                )
            except sqlite3.IntegrityError as error:
                raise RecordNotFoundError(
                    f"Document not found: {document_id}"
                ) from error
        return record_id

    def get_extracted_parties(self, document_id: str) -> ExtractedPartiesRecord | None:
        with self._connect("get_extracted_parties") as conn:
            row = conn.execute(
                """
                SELECT record_id, document_id, parties_json, created_at
                FROM extracted_parties
                WHERE document_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (document_id,),
            ).fetchone()

        if row is None:
            return None

        parties = json.loads(str(row["parties_json"]))
        return ExtractedPartiesRecord(
            record_id=str(row["record_id"]),
            document_id=str(row["document_id"]),
            parties=[str(item) for item in parties],
            created_at=str(row["created_at"]),
        )

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            with connection(self.db_path) as conn:
                yield conn
        except PersistenceError:
            raise
        except (sqlite3.Error, OSError) as error:
            raise PersistenceError(
                f"{operation} failed: {error.__class__.__name__}: {error}"
            ) from error


def _load_analysis_status(conn: sqlite3.Connection, analysis_id: str) -> str:
    row = conn.execute(
        "SELECT status FROM analyses WHERE analysis_id = ?",
        (analysis_id,),
    ).fetchone()
    if row is None:
        raise RecordNotFoundError(f"Analysis not found: {analysis_id}")
    return str(row["status"])


def _ensure_forward_transition(analysis_id: str, *, current: str, target: str) -> None:
    if current == target and target not in TERMINAL_ANALYSIS_STATUSES:
        return
    if current in TERMINAL_ANALYSIS_STATUSES or (
        ANALYSIS_STATUS_ORDER[target] < ANALYSIS_STATUS_ORDER[current]
    ):
        raise InvalidStatusTransitionError(
            f"Analysis {analysis_id} cannot move from {current} to {target}"
        )


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _to_optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _row_to_document_record(row: sqlite3.Row) -> DocumentRecord:
    return DocumentRecord(
        document_id=str(row["document_id"]),
        title=str(row["title"]),
        content=_to_optional_str(row["content"]),
        status=str(row["status"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _row_to_analysis_record(row: sqlite3.Row) -> AnalysisRecord:
    return AnalysisRecord(
        analysis_id=str(row["analysis_id"]),
        document_id=str(row["document_id"]),
        status=str(row["status"]),
        party_perspective=str(row["party_perspective"]),
        analysis_bias=str(row["analysis_bias"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
        result_json=_from_json_text(row["result_json"]),
        metadata_json=_from_json_text(row["metadata_json"]),
    )


def _to_json_text(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _from_json_text(value: object) -> dict[str, Any] | None:
    text = _to_optional_str(value)
    if text is None:
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"_raw": text}
    if isinstance(parsed, dict):
        return parsed
    return {"_value": parsed}
