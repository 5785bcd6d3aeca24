"""Unit tests for IngestionService -- pipeline stages and dataset lifecycle."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from docrag.models.dataset import DatasetStatus, UploadPayload
from docrag.providers.store.sqlite_dataset_store import SQLiteDatasetStore
from docrag.services.ingestion.chunker import TextChunker
from docrag.services.ingestion.ingestion_service import IngestionService
from docrag.services.ingestion.text_extractor import TextExtractor
from docrag.utils.errors import (
    DatasetNotFoundError,
    EmbeddingError,
    InvalidStatusTransitionError,
    StoreError,
    UploadRejectedError,
)
from tests.conftest import (
    MockEmbeddingProvider,
    _hash_to_vector,
    make_sentences,
    make_upload,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stage_upload(upload_dir: Path, upload: UploadPayload) -> Path:
    """Write the upload where the transport layer would have stored it."""
    path = upload_dir / upload.storage_name
    path.write_bytes(upload.file_bytes)
    return path


def _service(
    store: SQLiteDatasetStore,
    provider: MockEmbeddingProvider,
    upload_dir: Path,
    chunker: TextChunker | MagicMock | None = None,
    **kwargs,
) -> IngestionService:
    options = {
        "upload_dir": upload_dir,
        "embedding_timeout": 2.0,
        "max_upload_bytes": 1024 * 1024,
        "allowed_mime_types": ["text/plain", "text/csv", "application/pdf"],
    }
    options.update(kwargs)
    return IngestionService(
        extractor=TextExtractor(),
        chunker=chunker or TextChunker(),
        embedding_provider=provider,
        store=store,
        **options,
    )


def _five_segment_chunker() -> MagicMock:
    chunker = MagicMock()
    chunker.min_length = 50
    chunker.chunk.return_value = [
        f"Segment {i} carries enough words to be worth embedding on its own."
        for i in range(5)
    ]
    return chunker


class FailingOnCallProvider(MockEmbeddingProvider):
    """Raises on the N-th embed call (1-based)."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self._fail_on = fail_on

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if len(self.calls) + 1 == self._fail_on:
            self.calls.append(list(texts))
            raise EmbeddingError("upstream 500", provider_name=self.get_provider_name())
        return await super().embed(texts)


class HangingProvider(MockEmbeddingProvider):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        await asyncio.sleep(30)
        return await super().embed(texts)


class ShuffledTimingProvider(MockEmbeddingProvider):
    """Later batches finish first, so results arrive out of order."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        delay = max(0.0, 0.05 - 0.01 * len(self.calls))
        result = await super().embed(texts)
        await asyncio.sleep(delay)
        return result


class ContextRecordingProvider(MockEmbeddingProvider):
    """Records the structlog context visible while embedding."""

    def __init__(self) -> None:
        super().__init__()
        self.seen: list[dict] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.seen.append(structlog.contextvars.get_contextvars())
        return await super().embed(texts)


class WrongDimensionProvider(MockEmbeddingProvider):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [[0.5] * 4 for _ in texts]


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulIngestion:
    @pytest.mark.asyncio
    async def test_ingest_returns_id_before_run_finishes(
        self,
        ingestion_service: IngestionService,
        store: SQLiteDatasetStore,
    ) -> None:
        dataset_id = await ingestion_service.ingest(make_upload(make_sentences(40)))

        assert ingestion_service.pending_count == 1
        [result] = await ingestion_service.drain()

        assert result.dataset_id == dataset_id
        assert result.status is DatasetStatus.COMPLETED
        assert result.chunks_created == await store.chunk_count(dataset_id)
        assert await ingestion_service.get_status(dataset_id) is DatasetStatus.COMPLETED
        assert ingestion_service.pending_count == 0

    @pytest.mark.asyncio
    async def test_upload_file_removed_after_success(
        self,
        ingestion_service: IngestionService,
        upload_dir: Path,
    ) -> None:
        upload = make_upload(make_sentences(5))
        path = _stage_upload(upload_dir, upload)

        result = await ingestion_service.ingest_and_wait(upload)

        assert result.status is DatasetStatus.COMPLETED
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_dataset_metadata_is_recorded(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        upload = make_upload(make_sentences(5), original_name="manual.txt")
        result = await ingestion_service.ingest_and_wait(upload)

        dataset = await ingestion_service.get_dataset(result.dataset_id)
        assert dataset.original_name == "manual.txt"
        assert dataset.filename == upload.storage_name
        assert dataset.file_size == upload.size
        assert dataset.file_type == "text/plain"
        assert dataset.chunk_count == result.chunks_created

    @pytest.mark.asyncio
    async def test_embeddings_stay_paired_with_their_chunks(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        provider = ShuffledTimingProvider()
        service = _service(
            store,
            provider,
            upload_dir,
            chunker=TextChunker(chunk_size=200, overlap=40),
            embedding_batch_size=2,
            embedding_concurrency=4,
        )

        result = await service.ingest_and_wait(make_upload(make_sentences(30)))

        assert result.status is DatasetStatus.COMPLETED
        stored = await store.all_chunks_with_vectors()
        assert [c.chunk_index for c in stored] == list(range(result.chunks_created))
        for chunk in stored:
            assert chunk.embedding == pytest.approx(_hash_to_vector(chunk.text), abs=1e-6)

    @pytest.mark.asyncio
    async def test_batches_respect_batch_size(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
    ) -> None:
        service = _service(
            store,
            mock_embedding_provider,
            upload_dir,
            chunker=_five_segment_chunker(),
            embedding_batch_size=2,
        )
        await service.ingest_and_wait(make_upload("ignored by the mocked chunker"))
        assert [len(batch) for batch in mock_embedding_provider.calls] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_log_context_carries_dataset_and_stage(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        provider = ContextRecordingProvider()
        service = _service(store, provider, upload_dir)

        result = await service.ingest_and_wait(
            make_upload(make_sentences(5), original_name="manual.txt")
        )

        assert provider.seen
        for bound in provider.seen:
            assert bound["dataset_id"] == result.dataset_id
            assert bound["source"] == "manual.txt"
            assert bound["stage"] == "embed"
        assert "dataset_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_concurrent_uploads_all_complete(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        ids = [
            await ingestion_service.ingest(
                make_upload(make_sentences(10, start=n * 100), storage_name=f"{n}_upload.txt")
            )
            for n in range(3)
        ]

        results = await ingestion_service.drain()

        assert sorted(r.dataset_id for r in results) == sorted(ids)
        assert all(r.status is DatasetStatus.COMPLETED for r in results)


# ---------------------------------------------------------------------------
# Failed runs
# ---------------------------------------------------------------------------


class TestFailedIngestion:
    @pytest.mark.asyncio
    async def test_provider_failure_on_third_chunk_aborts_dataset(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        provider = FailingOnCallProvider(fail_on=3)
        service = _service(
            store,
            provider,
            upload_dir,
            chunker=_five_segment_chunker(),
            embedding_batch_size=1,
            embedding_concurrency=1,
        )

        result = await service.ingest_and_wait(make_upload("five segments"))

        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "embed"
        assert "upstream 500" in (result.error or "")
        assert await service.get_status(result.dataset_id) is DatasetStatus.FAILED
        assert await store.chunk_count(result.dataset_id) == 0
        assert await store.all_chunks_with_vectors() == []

    @pytest.mark.asyncio
    async def test_embedding_timeout_fails_dataset(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        service = _service(store, HangingProvider(), upload_dir, embedding_timeout=0.05)

        result = await service.ingest_and_wait(make_upload(make_sentences(5)))

        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "embed"
        assert "timed out" in (result.error or "")

    @pytest.mark.asyncio
    async def test_wrong_vector_dimension_fails_dataset(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        service = _service(store, WrongDimensionProvider(), upload_dir)
        result = await service.ingest_and_wait(make_upload(make_sentences(5)))
        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "embed"

    @pytest.mark.asyncio
    async def test_document_without_chunks_fails_at_chunk_stage(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        result = await ingestion_service.ingest_and_wait(make_upload("too short"))

        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "chunk"
        assert result.chunks_created == 0

    @pytest.mark.asyncio
    async def test_empty_file_fails_at_chunk_stage(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        result = await ingestion_service.ingest_and_wait(make_upload(""))
        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "chunk"

    @pytest.mark.asyncio
    async def test_store_failure_fails_dataset(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
    ) -> None:
        service = _service(store, mock_embedding_provider, upload_dir)
        store.append_chunks = AsyncMock(side_effect=StoreError("disk full", provider_name="sqlite"))

        result = await service.ingest_and_wait(make_upload(make_sentences(5)))

        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "store"
        assert await service.get_status(result.dataset_id) is DatasetStatus.FAILED

    @pytest.mark.asyncio
    async def test_chunks_committed_before_a_late_failure_are_purged(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
    ) -> None:
        service = _service(store, mock_embedding_provider, upload_dir)
        real_set_status = store.set_status

        async def _refuse_completion(dataset_id: int, status: DatasetStatus) -> None:
            if status is DatasetStatus.COMPLETED:
                raise StoreError("lost connection", provider_name="sqlite")
            await real_set_status(dataset_id, status)

        store.set_status = _refuse_completion

        result = await service.ingest_and_wait(make_upload(make_sentences(20)))

        assert result.status is DatasetStatus.FAILED
        assert result.failed_stage == "store"
        assert await store.chunk_count(result.dataset_id) == 0
        assert await service.get_status(result.dataset_id) is DatasetStatus.FAILED

    @pytest.mark.asyncio
    async def test_upload_file_removed_after_failure(
        self,
        ingestion_service: IngestionService,
        upload_dir: Path,
    ) -> None:
        upload = make_upload("too short")
        path = _stage_upload(upload_dir, upload)

        await ingestion_service.ingest_and_wait(upload)

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_background_failure_is_only_visible_through_status(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        dataset_id = await ingestion_service.ingest(make_upload("too short"))
        await ingestion_service.drain()
        assert await ingestion_service.get_status(dataset_id) is DatasetStatus.FAILED


# ---------------------------------------------------------------------------
# Upload acceptance
# ---------------------------------------------------------------------------


class TestUploadAcceptance:
    @pytest.mark.asyncio
    async def test_oversized_upload_is_rejected(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
    ) -> None:
        service = _service(store, mock_embedding_provider, upload_dir, max_upload_bytes=10)
        upload = make_upload("this is longer than ten bytes")
        path = _stage_upload(upload_dir, upload)

        with pytest.raises(UploadRejectedError):
            await service.ingest(upload)

        assert await store.list_datasets() == []
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_disallowed_type_is_rejected(
        self,
        ingestion_service: IngestionService,
        store: SQLiteDatasetStore,
    ) -> None:
        upload = make_upload(declared_type="image/png", file_bytes=b"\x89PNG....")
        with pytest.raises(UploadRejectedError) as exc_info:
            await ingestion_service.ingest(upload)
        assert "image/png" in str(exc_info.value)
        assert await store.list_datasets() == []

    @pytest.mark.asyncio
    async def test_type_parameters_do_not_affect_acceptance(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        upload = make_upload(make_sentences(3), declared_type="text/plain; charset=utf-8")
        result = await ingestion_service.ingest_and_wait(upload)
        assert result.status is DatasetStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_without_limits_everything_is_accepted(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
    ) -> None:
        service = _service(
            store,
            mock_embedding_provider,
            upload_dir,
            max_upload_bytes=None,
            allowed_mime_types=None,
        )
        upload = make_upload(make_sentences(3), declared_type="application/x-anything")
        result = await service.ingest_and_wait(upload)
        assert result.status is DatasetStatus.COMPLETED


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_terminal_status_cannot_change(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        result = await ingestion_service.ingest_and_wait(make_upload(make_sentences(5)))

        with pytest.raises(InvalidStatusTransitionError):
            await ingestion_service._transition(result.dataset_id, DatasetStatus.FAILED)
        assert await ingestion_service.get_status(result.dataset_id) is DatasetStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_of_unknown_dataset_raises(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        with pytest.raises(DatasetNotFoundError):
            await ingestion_service.get_status(999)

    @pytest.mark.asyncio
    async def test_delete_removes_rows_and_file(
        self,
        ingestion_service: IngestionService,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        result = await ingestion_service.ingest_and_wait(make_upload(make_sentences(5)))
        dataset = await ingestion_service.get_dataset(result.dataset_id)
        leftover = upload_dir / dataset.filename
        leftover.write_bytes(b"still here")

        assert await ingestion_service.delete_dataset(result.dataset_id) is True

        assert not leftover.exists()
        assert await store.get_dataset(result.dataset_id) is None
        assert await store.chunk_count(result.dataset_id) == 0

    @pytest.mark.asyncio
    async def test_delete_unknown_dataset_returns_false(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        assert await ingestion_service.delete_dataset(31337) is False

    @pytest.mark.asyncio
    async def test_list_datasets_reports_every_upload(
        self,
        ingestion_service: IngestionService,
    ) -> None:
        await ingestion_service.ingest_and_wait(make_upload(make_sentences(5)))
        await ingestion_service.ingest_and_wait(make_upload("too short"))

        statuses = sorted(ds.status.value for ds in await ingestion_service.list_datasets())
        assert statuses == ["completed", "failed"]

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, ingestion_service: IngestionService) -> None:
        assert await ingestion_service.drain() == []

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_runs(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        service = _service(store, HangingProvider(), upload_dir, embedding_timeout=60.0)
        upload = make_upload(make_sentences(5))
        path = _stage_upload(upload_dir, upload)

        dataset_id = await service.ingest(upload)
        await asyncio.sleep(0.05)
        await service.close()

        assert service.pending_count == 0
        assert not path.exists()
        assert await service.get_status(dataset_id) is DatasetStatus.FAILED
        assert await store.chunk_count(dataset_id) == 0

    @pytest.mark.asyncio
    async def test_cancel_after_chunks_committed_purges_them(
        self,
        store: SQLiteDatasetStore,
        mock_embedding_provider: MockEmbeddingProvider,
        upload_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        committed = asyncio.Event()
        append_chunks = store.append_chunks

        async def append_then_stall(dataset_id, chunks):
            await append_chunks(dataset_id, chunks)
            committed.set()
            await asyncio.sleep(30)

        monkeypatch.setattr(store, "append_chunks", append_then_stall)
        service = _service(store, mock_embedding_provider, upload_dir)

        dataset_id = await service.ingest(make_upload(make_sentences(40)))
        await asyncio.wait_for(committed.wait(), timeout=5)
        assert await store.chunk_count(dataset_id) > 0

        await service.close()

        dataset = await store.get_dataset(dataset_id)
        assert dataset is not None
        assert dataset.status is DatasetStatus.FAILED
        assert dataset.chunk_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_records_failure(
        self,
        store: SQLiteDatasetStore,
        upload_dir: Path,
    ) -> None:
        service = _service(store, HangingProvider(), upload_dir, embedding_timeout=60.0)
        waiter = asyncio.create_task(service.ingest_and_wait(make_upload(make_sentences(5))))
        await asyncio.sleep(0.05)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        [dataset] = await store.list_datasets()
        assert dataset.status is DatasetStatus.FAILED
