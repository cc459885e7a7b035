"""
Unit Tests — IngestionPipeline
═══════════════════════════════
Every collaborator is an in-memory fake from conftest.py; PDFs are real
(PyMuPDF), so TextExtractor and ThumbnailExtractor run for real.

Coverage targets:
  ✅ Happy path: stage order, vectors, text blob, index upload, thumbnail, metadata
  ✅ Index document carries SUMMARY / KEY FINDINGS ahead of the content
  ✅ Staged .txt file is removed after upload
  ✅ Thumbnail failure → still completed, metadata applied
  ✅ Thumbnail AND metadata failure → still completed
  ✅ Text failure is fatal: failed, error stored, no embedding or index calls
  ✅ Index poll timeout / remote rejection → failed, index_status=Failed
  ✅ Transient errors mark the outcome retryable; others do not
  ✅ A retry after the index upload deletes the earlier file first
  ✅ An explicit zero poll timeout is not replaced by the default
  ✅ Stored errors are truncated
  ✅ Cached text reused only for the current extraction version
  ✅ Pipeline switches: processing / text storage / metadata
  ✅ Non-runnable and missing documents
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import DocumentNotFoundError, TransientIOFailure
from pdf_ingest.llm.gateway import LLMGateway
from pdf_ingest.models.documents import Document
from pdf_ingest.processing.metadata import MetadataExtractor
from pdf_ingest.processing.text import NO_TEXT_ERROR, TextExtractor
from pdf_ingest.processing.thumbnail import ThumbnailExtractor
from pdf_ingest.schemas.documents import DocumentStatus, IndexStatus, JobStage
from pdf_ingest.services.dedup import compute_sha256
from pdf_ingest.services.flags import PipelineFlags
from pdf_ingest.services.pipeline import (
    IngestionPipeline,
    build_index_document,
    build_index_metadata,
    staged_text_file,
)
from pdf_ingest.services.sources import SourceLoader
from pdf_ingest.storage.s3 import ResourceType, object_key


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def _failing_thumbnailer() -> ThumbnailExtractor:
    thumbnailer = MagicMock(spec=ThumbnailExtractor)
    thumbnailer.extract = AsyncMock(side_effect=RuntimeError("renderer crashed"))
    return thumbnailer


def _failing_gateway() -> LLMGateway:
    gateway = MagicMock(spec=LLMGateway)
    gateway.complete = AsyncMock(side_effect=RuntimeError("LLM unavailable"))
    return gateway


@pytest.fixture
def seed_upload(documents, storage):
    """Record an upload-sourced pending document whose PDF is already in storage."""
    def _seed(pdf_bytes: bytes, filename: str = "battery-report.pdf", **overrides) -> Document:
        document_id = uuid.uuid4()
        key = object_key(ResourceType.DOCUMENT, document_id, filename)
        storage.objects[key] = pdf_bytes
        values = dict(
            id=document_id,
            file_hash=compute_sha256(pdf_bytes),
            source="upload",
            storage_ref=key,
            title="Battery Report",
            filename=filename,
            status=DocumentStatus.PENDING.value,
        )
        values.update(overrides)
        return documents.add(Document(**values))
    return _seed


@pytest.fixture
def make_pipeline(documents, jobs, flags, storage, vector_store, index_store, embedder, llm_gateway):
    def _build(**overrides) -> IngestionPipeline:
        clock = FakeClock()
        kwargs = dict(
            documents=documents,
            jobs=jobs,
            flags=flags,
            sources=SourceLoader(storage),
            storage=storage,
            vector_store=vector_store,
            index_store=index_store,
            embedder=embedder,
            metadata_extractor=MetadataExtractor(gateway=llm_gateway),
            poll_interval=2.0,
            poll_timeout=300.0,
            clock=clock,
            sleep=clock.sleep,
        )
        kwargs.update(overrides)
        return IngestionPipeline(**kwargs)
    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestPipelineHappyPath:

    async def test_completes_and_records_every_stage(
        self, make_pipeline, seed_upload, sample_pdf_bytes, jobs, vector_store, index_store, storage,
    ):
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert outcome.retryable is False
        assert doc.status == "completed"
        assert doc.processing_error is None
        assert doc.index_status == IndexStatus.AVAILABLE.value
        assert doc.index_file_id == "file-1"
        assert jobs.history[outcome.job_id] == [
            JobStage.EXTRACTING, JobStage.EMBEDDING, JobStage.STORING, JobStage.COMPLETED,
        ]
        assert jobs.jobs[outcome.job_id].completed_at is not None

        assert doc.page_count == 2
        assert doc.extraction_version == settings.extraction_version
        assert doc.extracted_text_ref in storage.objects
        assert storage.objects[doc.extracted_text_ref].decode().startswith("[Page 1]")

        assert set(vector_store.records) == {f"{doc.id}:{i}" for i in range(outcome.counters["chunk_count"])}
        assert vector_store.records[f"{doc.id}:0"].metadata["document_id"] == str(doc.id)

        assert doc.thumbnail_ref is not None
        assert storage.objects[doc.thumbnail_ref].startswith(b"\x89PNG")

        assert doc.company == "Acme Research"
        assert doc.year == 2023
        assert doc.keywords == ["batteries", "lithium"]
        assert doc.title == "Battery Report"

    async def test_index_upload_content_and_metadata(
        self, make_pipeline, seed_upload, sample_pdf_bytes, index_store,
    ):
        doc = seed_upload(sample_pdf_bytes)

        await make_pipeline().run(doc.id)

        uploaded = index_store.files["file-1"]
        assert uploaded["content"].startswith("DOCUMENT CONTENT:\n[Page 1]\nBattery demand report")
        assert uploaded["name"].startswith("battery-report")
        assert uploaded["name"].endswith(".txt")
        assert not uploaded["path"].exists()
        assert uploaded["metadata"]["document_id"] == str(doc.id)
        assert uploaded["metadata"]["filename"] == "battery-report.pdf"

    async def test_existing_summary_is_prepended_and_metadata_not_rerun(
        self, make_pipeline, seed_upload, sample_pdf_bytes, index_store, llm_gateway,
    ):
        doc = seed_upload(
            sample_pdf_bytes,
            summary="Demand is up.",
            key_findings=["Prices fell", "Supply grew"],
        )

        await make_pipeline().run(doc.id)

        content = index_store.files["file-1"]["content"]
        assert content.startswith("SUMMARY:\nDemand is up.\n\nKEY FINDINGS:\n1. Prices fell\n2. Supply grew")
        assert "\n\nDOCUMENT CONTENT:\n[Page 1]" in content
        llm_gateway.complete.assert_not_awaited()

    async def test_polls_until_index_available(
        self, make_pipeline, seed_upload, sample_pdf_bytes, index_store,
    ):
        index_store.statuses = [IndexStatus.PROCESSING, IndexStatus.PROCESSING, IndexStatus.AVAILABLE]
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert [c for c in index_store.calls if c[0] == "describe"] == [("describe", "file-1")] * 3


# ─────────────────────────────────────────────────────────────────────────────
# Best-effort enrichment
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestPartialFailureTolerance:

    async def test_thumbnail_failure_still_completes_with_metadata(
        self, make_pipeline, seed_upload, sample_pdf_bytes,
    ):
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline(thumbnail_extractor=_failing_thumbnailer()).run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert doc.status == "completed"
        assert doc.thumbnail_ref is None
        assert doc.company == "Acme Research"
        assert outcome.counters["thumbnail"] is False

    async def test_thumbnail_and_metadata_failure_still_completes(
        self, make_pipeline, seed_upload, sample_pdf_bytes,
    ):
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline(
            thumbnail_extractor=_failing_thumbnailer(),
            metadata_extractor=MetadataExtractor(gateway=_failing_gateway()),
        ).run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert doc.status == "completed"
        assert doc.index_status == IndexStatus.AVAILABLE.value
        assert doc.company is None
        assert doc.processing_error is None

    async def test_existing_thumbnail_not_regenerated(
        self, make_pipeline, seed_upload, sample_pdf_bytes,
    ):
        thumbnailer = MagicMock(spec=ThumbnailExtractor)
        thumbnailer.extract = AsyncMock()
        doc = seed_upload(sample_pdf_bytes, thumbnail_ref="library/thumbnails/x/thumbnail.png")

        await make_pipeline(thumbnail_extractor=thumbnailer).run(doc.id)

        thumbnailer.extract.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Fatal failures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestFatalFailures:

    async def test_text_failure_stops_before_embedding_and_indexing(
        self, make_pipeline, seed_upload, blank_pdf_bytes, embedder, index_store, vector_store, jobs,
    ):
        doc = seed_upload(blank_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert outcome.retryable is False
        assert doc.status == "failed"
        assert doc.processing_error == NO_TEXT_ERROR
        assert embedder.calls == []
        assert vector_store.records == {}
        assert index_store.calls == []
        assert doc.index_status is None
        job = jobs.jobs[outcome.job_id]
        assert job.stage == JobStage.FAILED.value
        assert job.error == NO_TEXT_ERROR

    async def test_index_timeout(self, make_pipeline, seed_upload, sample_pdf_bytes, index_store, llm_gateway):
        index_store.statuses = [IndexStatus.PROCESSING]
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline(poll_timeout=10.0).run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert "timed out" in doc.processing_error
        assert doc.index_status == IndexStatus.FAILED.value
        assert doc.index_file_id == "file-1"
        llm_gateway.complete.assert_not_awaited()

    async def test_zero_poll_timeout_is_honoured(self, make_pipeline, seed_upload, sample_pdf_bytes, index_store):
        index_store.statuses = [IndexStatus.PROCESSING]
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline(poll_timeout=0.0).run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert "timed out" in doc.processing_error
        assert [c for c in index_store.calls if c[0] == "describe"] == [("describe", "file-1")]

    async def test_index_rejection(self, make_pipeline, seed_upload, sample_pdf_bytes, index_store):
        index_store.statuses = [IndexStatus.PROCESSING, IndexStatus.FAILED]
        index_store.error = "unsupported encoding"
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert doc.processing_error == "File processing failed: unsupported encoding"
        assert doc.index_status == IndexStatus.FAILED.value

    async def test_transient_failure_is_retryable(self, make_pipeline, seed_upload, sample_pdf_bytes, embedder):
        embedder.embed = AsyncMock(side_effect=TransientIOFailure("Embedding API rate limited"))
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert outcome.retryable is True
        assert doc.processing_error == "Embedding API rate limited"

    async def test_retry_after_upload_replaces_the_index_file(
        self, make_pipeline, seed_upload, sample_pdf_bytes, index_store,
    ):
        index_store.fail_describe = TransientIOFailure("assistant describe timed out")
        doc = seed_upload(sample_pdf_bytes)
        pipeline = make_pipeline()

        first = await pipeline.run(doc.id)
        assert first.retryable is True
        assert doc.index_file_id == "file-1"

        second = await pipeline.run(doc.id)

        assert second.status == DocumentStatus.COMPLETED
        assert doc.index_file_id == "file-2"
        assert set(index_store.files) == {"file-2"}
        calls = index_store.calls
        assert calls.index(("delete", "file-1")) < calls.index(("upload", "file-2"))

    async def test_retry_uploads_even_when_old_file_delete_fails(
        self, make_pipeline, seed_upload, sample_pdf_bytes, index_store,
    ):
        index_store.fail_delete = RuntimeError("assistant unavailable")
        doc = seed_upload(sample_pdf_bytes, status="failed", index_file_id="file-old")

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert index_store.calls[:2] == [("delete", "file-old"), ("upload", "file-1")]
        assert doc.index_file_id == "file-1"

    async def test_unclassified_exception_stores_raw_message(
        self, make_pipeline, seed_upload, sample_pdf_bytes, vector_store,
    ):
        vector_store.upsert = AsyncMock(side_effect=ValueError("dimension mismatch: 8 != 1536"))
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.retryable is False
        assert doc.status == "failed"
        assert doc.processing_error == "dimension mismatch: 8 != 1536"

    async def test_long_error_is_truncated(self, make_pipeline, seed_upload, sample_pdf_bytes, index_store):
        index_store.statuses = [IndexStatus.FAILED]
        index_store.error = "x" * 5000
        doc = seed_upload(sample_pdf_bytes)

        await make_pipeline().run(doc.id)

        assert len(doc.processing_error) == settings.max_error_length
        assert doc.processing_error.endswith("…")

    async def test_missing_stored_pdf_fails(self, make_pipeline, seed_upload, sample_pdf_bytes, storage):
        doc = seed_upload(sample_pdf_bytes)
        storage.objects.pop(doc.storage_ref)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.FAILED
        assert "Stored PDF not found" in doc.processing_error


# ─────────────────────────────────────────────────────────────────────────────
# Text cache and switches
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestTextCacheAndSwitches:

    async def test_cached_text_reused_for_current_version(
        self, make_pipeline, seed_upload, sample_pdf_bytes, storage,
    ):
        doc = seed_upload(sample_pdf_bytes, extraction_version=settings.extraction_version, page_count=2)
        ref = object_key(ResourceType.TEXT, doc.id, "extracted.txt")
        storage.objects[ref] = b"[Page 1]\ncached text"
        doc.extracted_text_ref = ref

        extractor = MagicMock(spec=TextExtractor)
        extractor.extract = AsyncMock()

        outcome = await make_pipeline(text_extractor=extractor).run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        extractor.extract.assert_not_awaited()
        assert outcome.counters["text_cached"] is True

    async def test_stale_extraction_version_re_extracts(
        self, make_pipeline, seed_upload, sample_pdf_bytes, storage,
    ):
        doc = seed_upload(sample_pdf_bytes, extraction_version="0")
        ref = object_key(ResourceType.TEXT, doc.id, "extracted.txt")
        storage.objects[ref] = b"old text"
        doc.extracted_text_ref = ref

        await make_pipeline().run(doc.id)

        assert storage.objects[doc.extracted_text_ref].decode().startswith("[Page 1]\nBattery")
        assert doc.extraction_version == settings.extraction_version

    async def test_processing_disabled_completes_without_indexing(
        self, make_pipeline, seed_upload, sample_pdf_bytes, flags, embedder, index_store,
    ):
        flags.flags = PipelineFlags(
            processing_enabled=False, text_extraction_enabled=True, metadata_extraction_enabled=True,
        )
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert doc.status == "completed"
        assert embedder.calls == []
        assert index_store.calls == []
        assert doc.index_status is None
        assert doc.extracted_text_ref is not None
        assert doc.company == "Acme Research"

    async def test_text_storage_disabled_still_indexes(
        self, make_pipeline, seed_upload, sample_pdf_bytes, flags, storage, index_store,
    ):
        flags.flags = PipelineFlags(
            processing_enabled=True, text_extraction_enabled=False, metadata_extraction_enabled=True,
        )
        doc = seed_upload(sample_pdf_bytes)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert doc.extracted_text_ref is None
        assert storage.keys(ResourceType.TEXT) == []
        assert "file-1" in index_store.files

    async def test_metadata_disabled_skips_llm(
        self, make_pipeline, seed_upload, sample_pdf_bytes, flags, llm_gateway,
    ):
        flags.flags = PipelineFlags(
            processing_enabled=True, text_extraction_enabled=True, metadata_extraction_enabled=False,
        )
        doc = seed_upload(sample_pdf_bytes)

        await make_pipeline().run(doc.id)

        llm_gateway.complete.assert_not_awaited()
        assert doc.summary is None


# ─────────────────────────────────────────────────────────────────────────────
# Entry conditions
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestEntryConditions:

    @pytest.mark.parametrize("status", ["processing", "completed"])
    async def test_non_runnable_status_is_skipped(
        self, make_pipeline, seed_upload, sample_pdf_bytes, jobs, status,
    ):
        doc = seed_upload(sample_pdf_bytes, status=status)

        outcome = await make_pipeline().run(doc.id)

        assert outcome.skipped is True
        assert outcome.status == DocumentStatus(status)
        assert jobs.jobs == {}

    async def test_failed_document_is_runnable(self, make_pipeline, seed_upload, sample_pdf_bytes):
        doc = seed_upload(sample_pdf_bytes, status="failed", processing_error="earlier failure")

        outcome = await make_pipeline().run(doc.id)

        assert outcome.status == DocumentStatus.COMPLETED
        assert doc.processing_error is None

    async def test_unknown_document_raises(self, make_pipeline):
        with pytest.raises(DocumentNotFoundError):
            await make_pipeline().run(uuid.uuid4())


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestIndexHelpers:

    def test_build_index_document_without_enrichment(self):
        assert build_index_document("body") == "DOCUMENT CONTENT:\nbody"

    def test_build_index_metadata_omits_empty_fields(self):
        doc = Document(
            id=uuid.uuid4(), file_hash="0" * 64, source="url", title="T", filename="t.pdf",
            company="Acme", year=2022, keywords=[], technology_areas=["ai"],
        )
        metadata = build_index_metadata(doc)
        assert metadata["company"] == "Acme"
        assert metadata["year"] == "2022"
        assert metadata["technology_areas"] == ["ai"]
        assert "keywords" not in metadata
        assert "region" not in metadata

    def test_staged_file_removed_on_error(self):
        with pytest.raises(RuntimeError):
            with staged_text_file("content", "report.pdf") as path:
                assert path.read_text(encoding="utf-8") == "content"
                raise RuntimeError("upload failed")
        assert not path.exists()
