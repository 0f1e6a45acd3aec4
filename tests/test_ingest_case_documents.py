"""
Tests for ingest_case_documents.py

Covers: file collection, duplicate detection, and single-file ingestion into
        storage, the documents table and the vector index,
        rollback when indexing fails, and the run summary.
"""

from unittest.mock import MagicMock

import pytest

LONG_TEXT = "On March 3, 2024 the defendant's truck ran a red light and struck the plaintiff's car. " * 3


@pytest.fixture
def storage(tmp_path):
    from execution.doculaw.storage import DocumentStorage, StorageConfig
    return DocumentStorage(StorageConfig(root=str(tmp_path / "store"), public_base_url="/files"))


@pytest.fixture
def db():
    mock = MagicMock()
    mock.create_document.side_effect = lambda **kw: dict(kw, id="doc-1")
    return mock


class TestCollectFiles:
    def test_supported_only_sorted(self, tmp_path):
        from ingest_case_documents import collect_files
        for name in ["b.txt", "a.PDF", "notes.md", "photo.jpg", "memo.docx"]:
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "sub").mkdir()

        assert [p.name for p in collect_files(tmp_path)] == ["a.PDF", "b.txt", "memo.docx", "notes.md"]

    def test_already_ingested(self):
        from ingest_case_documents import is_already_ingested
        db = MagicMock()
        db.list_documents.return_value = [{"name": "complaint.pdf"}]
        assert is_already_ingested(db, "case-1", "u1", "complaint.pdf") is True
        assert is_already_ingested(db, "case-1", "u1", "other.pdf") is False
        db.list_documents.assert_called_with("case-1", "u1")


class TestIngestFile:
    def test_stores_records_and_indexes(self, tmp_path, db, storage, retriever, mock_vector_store):
        from ingest_case_documents import ingest_file
        path = tmp_path / "police_report.txt"
        path.write_text(LONG_TEXT, encoding="utf-8")

        vectors = ingest_file(path, db, storage, retriever, "case-1", "u1", "support")

        assert vectors == 1
        kwargs = db.create_document.call_args.kwargs
        assert kwargs["name"] == "police_report.txt"
        assert kwargs["document_type"] == "support"
        assert kwargs["mime_type"] == "text/plain"
        assert kwargs["url"].startswith("/files/u1/case-1/")
        assert storage.download(kwargs["path"]) == LONG_TEXT.encode("utf-8")

        record = next(iter(mock_vector_store._vectors.values()))
        assert record.metadata["caseId"] == "case-1"
        assert record.metadata["documentId"] == "doc-1"
        assert record.metadata["type"] == "support"

    def test_skips_short_text(self, tmp_path, db, storage, retriever):
        from ingest_case_documents import ingest_file
        path = tmp_path / "blank.txt"
        path.write_text("too short", encoding="utf-8")

        assert ingest_file(path, db, storage, retriever, "case-1", "u1", "document") is None
        db.create_document.assert_not_called()

    def test_index_failure_rolls_back(self, tmp_path, db, storage):
        from ingest_case_documents import ingest_file
        from execution.doculaw.vector_store import VectorStoreError
        path = tmp_path / "police_report.txt"
        path.write_text(LONG_TEXT, encoding="utf-8")
        retriever = MagicMock(is_configured=True)
        retriever.add_documents.side_effect = VectorStoreError("Pinecone upsert failed: 503")

        with pytest.raises(VectorStoreError):
            ingest_file(path, db, storage, retriever, "case-1", "u1", "document")

        db.delete_document.assert_called_once_with("doc-1", "u1")
        assert storage.exists(db.create_document.call_args.kwargs["path"]) is False

    def test_unconfigured_index_still_stores(self, tmp_path, db, storage, mock_embedding_service):
        from ingest_case_documents import ingest_file
        from execution.doculaw.retriever import CaseRetriever
        from tests.conftest import MockVectorStore

        path = tmp_path / "notes.md"
        path.write_text(LONG_TEXT, encoding="utf-8")
        retriever = CaseRetriever(MockVectorStore(configured=False), mock_embedding_service)

        assert ingest_file(path, db, storage, retriever, "case-1", "u1", "document") == 0
        db.create_document.assert_called_once()


class TestMain:
    def test_short_files_are_skipped_not_successes(self, tmp_path, monkeypatch, capsys):
        import ingest_case_documents
        (tmp_path / "blank.txt").write_text("too short", encoding="utf-8")
        (tmp_path / "report.txt").write_text(LONG_TEXT, encoding="utf-8")

        results = {"blank.txt": None, "report.txt": 2}
        monkeypatch.setattr(
            ingest_case_documents, "ingest_file", lambda path, *args: results[path.name],
        )
        monkeypatch.setattr(ingest_case_documents, "is_already_ingested", lambda *args: False)
        monkeypatch.setattr("execution.doculaw.database.CaseDatabase", MagicMock())
        monkeypatch.setattr("execution.doculaw.storage.DocumentStorage", MagicMock())
        monkeypatch.setattr("execution.doculaw.embeddings.get_embedding_service", MagicMock())
        monkeypatch.setattr("execution.doculaw.vector_store.PineconeVectorStore", MagicMock())
        monkeypatch.setattr("execution.doculaw.retriever.CaseRetriever", MagicMock())
        monkeypatch.setattr(
            "sys.argv",
            ["ingest_case_documents.py", "--dir", str(tmp_path), "--case-id", "case-1", "--user-id", "u1"],
        )

        ingest_case_documents.main()

        out = capsys.readouterr().out
        assert "Files processed: 1/2 (0 failed, 1 skipped)" in out
        assert "Total vectors:   2" in out
