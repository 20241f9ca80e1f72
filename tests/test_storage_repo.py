from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from legalyze.storage.repo import StorageRepo
from legalyze.utils.error_taxonomy import (
    InvalidStatusTransitionError,
    PersistenceError,
    RecordNotFoundError,
)


def test_storage_repo_creates_required_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "legalyze.sqlite3"
    StorageRepo(db_path=db_path)

    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()

    table_names = {name for (name,) in rows}

    assert {"documents", "analyses", "extracted_parties"}.issubset(table_names)


def test_document_create_read_update(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")

    document = repo.create_document(title="Lease")
    assert document.status == "processing"
    assert document.has_content is False

    repo.update_document_content(document.document_id, "The tenant shall pay rent.")
    assert repo.update_document_status(document.document_id, "completed") is True

    loaded = repo.get_document(document.document_id)
    assert loaded is not None
    assert loaded.content == "The tenant shall pay rent."
    assert loaded.status == "completed"
    assert repo.get_document("missing") is None
    assert [item.document_id for item in repo.list_documents()] == [document.document_id]


def test_document_status_compare_and_swap(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="Lease", content="text", status="processing")

    applied = repo.update_document_status(
        document.document_id,
        "processing",
        expected_statuses={"completed", "failed"},
    )
    assert applied is False

    repo.update_document_status(document.document_id, "failed")
    applied = repo.update_document_status(
        document.document_id,
        "processing",
        expected_statuses={"completed", "failed"},
    )
    assert applied is True
    assert repo.get_document(document.document_id).status == "processing"


def test_update_missing_document_raises_not_found(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")

    with pytest.raises(RecordNotFoundError):
        repo.update_document_status("missing", "failed")

    with pytest.raises(RecordNotFoundError):
        repo.update_document_content("missing", "text")


def test_analysis_lifecycle_and_result(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="NDA", content="text", status="completed")

    analysis_id = repo.create_analysis(
        document_id=document.document_id,
        party_perspective="Recipient",
        analysis_bias="risk",
    )
    assert repo.get_analysis(analysis_id).status == "pending"

    repo.update_analysis_status(analysis_id, "processing")
    repo.update_analysis_result(
        analysis_id,
        {"riskScore": 64, "keyClauses": []},
        {"retries": 1, "aiModel": "gemini-1.5-flash"},
    )

    analysis = repo.get_analysis(analysis_id)
    assert analysis.status == "complete"
    assert analysis.result_json == {"riskScore": 64, "keyClauses": []}
    assert analysis.metadata_json == {"retries": 1, "aiModel": "gemini-1.5-flash"}
    assert analysis.risk_score == 64.0
    assert repo.get_latest_analysis_for_document(document.document_id) == analysis


def test_analysis_status_never_moves_backwards(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="NDA", content="text", status="completed")
    analysis_id = repo.create_analysis(
        document_id=document.document_id,
        party_perspective="Discloser",
        analysis_bias="neutral",
    )

    repo.update_analysis_status(analysis_id, "processing")
    repo.update_analysis_status(analysis_id, "failed")

    with pytest.raises(InvalidStatusTransitionError):
        repo.update_analysis_status(analysis_id, "processing")

    with pytest.raises(InvalidStatusTransitionError):
        repo.update_analysis_status(analysis_id, "complete")

    with pytest.raises(InvalidStatusTransitionError):
        repo.update_analysis_result(analysis_id, {"riskScore": 1})

    assert repo.get_analysis(analysis_id).status == "failed"


def test_analysis_for_missing_document_is_rejected(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")

    with pytest.raises(RecordNotFoundError):
        repo.create_analysis(
            document_id="missing",
            party_perspective="Buyer",
            analysis_bias="neutral",
        )

    with pytest.raises(RecordNotFoundError):
        repo.update_analysis_status("missing", "processing")


def test_delete_analysis_and_document_cascade(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="NDA", content="text", status="completed")
    first = repo.create_analysis(
        document_id=document.document_id,
        party_perspective="Buyer",
        analysis_bias="neutral",
    )
    second = repo.create_analysis(
        document_id=document.document_id,
        party_perspective="Seller",
        analysis_bias="favorable",
    )
    repo.store_extracted_parties(document.document_id, ["Acme", "Globex"])

    assert repo.delete_analysis(first) is True
    assert repo.delete_analysis(first) is False
    assert [item.analysis_id for item in repo.list_analyses_for_document(document.document_id)] == [second]

    assert repo.delete_document(document.document_id) is True
    assert repo.get_analysis(second) is None
    assert repo.get_extracted_parties(document.document_id) is None


def test_extracted_parties_returns_latest_record(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="Lease", content="text", status="completed")

    repo.store_extracted_parties(document.document_id, ["Old Landlord"])
    latest_id = repo.store_extracted_parties(document.document_id, ["Landlord Ltd", "Tenant"])

    record = repo.get_extracted_parties(document.document_id)
    assert record is not None
    assert record.record_id == latest_id
    assert record.parties == ["Landlord Ltd", "Tenant"]


def test_storage_errors_are_wrapped(tmp_path: Path) -> None:
    repo = StorageRepo(db_path=tmp_path / "legalyze.sqlite3")
    document = repo.create_document(title="Lease", content="text", status="completed")

    with pytest.raises(PersistenceError):
        repo.update_document_status(document.document_id, "archived")

    with pytest.raises(PersistenceError):
        repo.create_document(title="Dup", document_id=document.document_id)
