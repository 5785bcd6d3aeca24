"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **extract -> chunk -> embed -> store**.

The :class:`IngestionService` implements the **Orchestrator pattern**: it
coordinates four collaborators (text extractor, chunker, embedding
provider, dataset store) without any of them knowing about each other,
and it is the only component that changes a dataset's status.

Lifecycle of one upload:

    1. ``ingest`` validates the upload, creates the dataset row in
       ``processing`` and returns its id immediately.  The pipeline runs
       in a background ``asyncio`` task.
    2. Extraction, chunking and embedding run strictly in that order; any
       failure short-circuits the rest.
    3. On success every chunk is committed in one transaction, then the
       dataset moves to ``completed``.
    4. On failure the dataset moves to ``failed`` and any chunk committed
       by the run is purged.  The temporary upload file is removed on
       every exit path.  A run cancelled at shutdown ends the same way.

Embedding failure policy: **abort**.  A single failed or timed-out
embedding call fails the whole dataset; no zero-vector substitution.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from docrag.models.dataset import (
    ChunkRecord,
    Dataset,
    DatasetStatus,
    IngestionResult,
    NewDataset,
    UploadPayload,
)
from docrag.utils.concurrency import call_with_timeout, throttled_gather
from docrag.utils.errors import (
    DatasetNotFoundError,
    DocRagError,
    EmbeddingError,
    EmptyDocumentError,
    InvalidStatusTransitionError,
    UploadRejectedError,
)
from docrag.utils.files import format_file_size
from docrag.utils.logging import bind_stage, ingestion_context

if TYPE_CHECKING:
    from docrag.interfaces.dataset_store import IDatasetStore
    from docrag.interfaces.embedding_provider import IEmbeddingProvider
    from docrag.services.ingestion.chunker import TextChunker
    from docrag.services.ingestion.text_extractor import TextExtractor

logger = structlog.get_logger(logger_name=__name__)


class IngestionService:
    """Drives uploads through extract -> chunk -> embed -> store.

    Parameters
    ----------
    extractor:
        Turns raw upload bytes into plain text.
    chunker:
        Splits text into overlapping segments.
    embedding_provider:
        Generates one vector per chunk.
    store:
        Persists datasets, chunks and vectors.
    upload_dir:
        Directory holding uploaded files under their storage name.  The
        file is removed when its ingestion run ends and when its dataset
        is deleted.  ``None`` disables file handling.
    embedding_timeout:
        Seconds allowed per embedding call before it counts as a failure.
    embedding_batch_size:
        Chunks sent per embedding call.
    embedding_concurrency:
        Embedding calls in flight at once for a single dataset.
    max_upload_bytes:
        Uploads larger than this are rejected.  ``None`` disables the check.
    allowed_mime_types:
        Media types accepted at upload.  ``None`` accepts any type.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        store: IDatasetStore,
        upload_dir: str | Path | None = None,
        embedding_timeout: float = 30.0,
        embedding_batch_size: int = 16,
        embedding_concurrency: int = 4,
        max_upload_bytes: int | None = None,
        allowed_mime_types: list[str] | None = None,
    ) -> None:
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._store = store
        self._upload_dir = Path(upload_dir) if upload_dir is not None else None
        self._embedding_timeout = embedding_timeout
        self._embedding_batch_size = max(1, embedding_batch_size)
        self._embedding_concurrency = max(1, embedding_concurrency)
        self._max_upload_bytes = max_upload_bytes
        self._allowed_mime_types = (
            frozenset(t.lower() for t in allowed_mime_types)
            if allowed_mime_types is not None
            else None
        )
        # Strong references keep background runs alive until they finish.
        self._tasks: dict[int, asyncio.Task[IngestionResult]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, upload: UploadPayload) -> int:
        """Accept an upload and start its ingestion in the background.

        Returns
        -------
        int
            The new dataset id.  Progress is observable via :meth:`get_status`.

        Raises
        ------
        UploadRejectedError
            If the upload is too large or of a non-allowed media type.
        docrag.utils.errors.StoreError
            If the dataset row cannot be created.
        """
        dataset_id = await self._accept(upload)
        task = asyncio.create_task(
            self._run(dataset_id, upload),
            name=f"ingest-dataset-{dataset_id}",
        )
        self._tasks[dataset_id] = task
        task.add_done_callback(lambda _t, did=dataset_id: self._tasks.pop(did, None))
        return dataset_id

    async def ingest_and_wait(self, upload: UploadPayload) -> IngestionResult:
        """Accept an upload and run its ingestion to completion in the caller's task."""
        dataset_id = await self._accept(upload)
        return await self._run(dataset_id, upload)

    async def drain(self) -> list[IngestionResult]:
        """Wait for every background ingestion run that is currently in flight."""
        if not self._tasks:
            return []
        outcomes = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        return [o for o in outcomes if isinstance(o, IngestionResult)]

    async def close(self) -> None:
        """Cancel background runs that are still in flight and wait for them to unwind.

        A cancelled run ends its dataset as ``failed`` with no chunks, and its
        upload file is removed.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("ingestion_runs_cancelled", count=len(tasks))

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def get_dataset(self, dataset_id: int) -> Dataset:
        """Return a dataset with its chunk count.

        Raises
        ------
        DatasetNotFoundError
            If no dataset has this id.
        """
        dataset = await self._store.get_dataset(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(dataset_id)
        return dataset

    async def get_status(self, dataset_id: int) -> DatasetStatus:
        """Return the lifecycle status of a dataset (status polling)."""
        return (await self.get_dataset(dataset_id)).status

    async def list_datasets(self) -> list[Dataset]:
        return await self._store.list_datasets()

    async def delete_dataset(self, dataset_id: int) -> bool:
        """Delete a dataset, its chunks and its uploaded file.

        Returns ``False`` when the dataset does not exist.
        """
        dataset = await self._store.get_dataset(dataset_id)
        if dataset is None:
            return False
        self._remove_upload_file(dataset.filename)
        return await self._store.delete_dataset(dataset_id)

    # ------------------------------------------------------------------
    # Upload acceptance
    # ------------------------------------------------------------------

    async def _accept(self, upload: UploadPayload) -> int:
        """Validate the upload and create its dataset row in ``processing``."""
        try:
            self._check_upload(upload)
            dataset_id = await self._store.create_dataset(
                NewDataset(
                    filename=upload.storage_name,
                    original_name=upload.original_name,
                    file_size=upload.size,
                    file_type=upload.declared_type,
                    owner_id=upload.owner_id,
                )
            )
        except DocRagError:
            self._remove_upload_file(upload.storage_name)
            raise

        logger.info(
            "ingestion_accepted",
            dataset_id=dataset_id,
            source=upload.original_name,
            size=upload.size,
        )
        return dataset_id

    def _check_upload(self, upload: UploadPayload) -> None:
        media_type = upload.declared_type.split(";", 1)[0].strip().lower()
        if self._allowed_mime_types is not None and media_type not in self._allowed_mime_types:
            allowed = ", ".join(sorted(self._allowed_mime_types))
            raise UploadRejectedError(
                f"File type '{media_type}' not allowed. Allowed types: {allowed}"
            )
        if self._max_upload_bytes is not None and upload.size > self._max_upload_bytes:
            raise UploadRejectedError(
                "File size exceeds maximum limit of "
                f"{format_file_size(self._max_upload_bytes)}"
            )

    # ------------------------------------------------------------------
    # Pipeline run
    # ------------------------------------------------------------------

    async def _run(self, dataset_id: int, upload: UploadPayload) -> IngestionResult:
        """Run one dataset through the pipeline.  Never raises a DocRagError.

        Every failure is logged with the dataset id and the stage it came
        from, then converted into a terminal ``failed`` status.  A cancelled
        run is also recorded as ``failed`` before the cancellation propagates.
        """
        start = time.monotonic()
        stage = "extract"

        with ingestion_context(dataset_id, upload.original_name):
            try:
                bind_stage(stage)
                text = self._extractor.extract(upload.file_bytes, upload.declared_type)

                stage = "chunk"
                bind_stage(stage)
                segments = self._chunker.chunk(text)
                if not segments:
                    raise EmptyDocumentError(
                        f"No chunk of at least {self._chunker.min_length} characters "
                        f"could be cut from {len(text)} extracted characters"
                    )

                stage = "embed"
                bind_stage(stage)
                vectors = await self._embed_all(segments)

                stage = "store"
                bind_stage(stage)
                records = [
                    ChunkRecord(chunk_index=index, text=segment, embedding=vector)
                    for index, (segment, vector) in enumerate(zip(segments, vectors))
                ]
                await self._store.append_chunks(dataset_id, records)
                await self._transition(dataset_id, DatasetStatus.COMPLETED)

            except asyncio.CancelledError:
                logger.warning("ingestion_cancelled")
                # Shielded so the cleanup finishes even though this task is being cancelled.
                await asyncio.shield(self._mark_failed(dataset_id))
                raise
            except Exception as exc:  # noqa: BLE001 -- every failure ends the run as "failed"
                logger.error("ingestion_failed", error=str(exc))
                await self._mark_failed(dataset_id)
                return IngestionResult(
                    dataset_id=dataset_id,
                    status=DatasetStatus.FAILED,
                    ingestion_time=round(time.monotonic() - start, 2),
                    failed_stage=stage,
                    error=str(exc),
                )
            finally:
                self._remove_upload_file(upload.storage_name)

            result = IngestionResult(
                dataset_id=dataset_id,
                status=DatasetStatus.COMPLETED,
                chunks_created=len(records),
                ingestion_time=round(time.monotonic() - start, 2),
            )
            logger.info(
                "ingestion_complete",
                chunks=result.chunks_created,
                chars=len(text),
                time_s=result.ingestion_time,
            )
            return result

    async def _embed_all(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in batches, keeping vector *i* paired with text *i*.

        Raises
        ------
        EmbeddingError
            If any batch fails, times out, or returns vectors of the wrong
            count or dimension.
        """
        provider_name = self._embedding_provider.get_provider_name()
        dimension = self._embedding_provider.get_dimension()
        size = self._embedding_batch_size
        batches = [texts[i : i + size] for i in range(0, len(texts), size)]

        outcomes = await throttled_gather(
            [
                call_with_timeout(
                    self._embedding_provider.embed(batch),
                    timeout=self._embedding_timeout,
                    provider_name=provider_name,
                )
                for batch in batches
            ],
            semaphore=asyncio.Semaphore(self._embedding_concurrency),
            return_exceptions=True,
        )

        vectors: list[list[float]] = []
        for number, (batch, outcome) in enumerate(zip(batches, outcomes)):
            if isinstance(outcome, EmbeddingError):
                raise outcome
            if isinstance(outcome, BaseException):
                raise EmbeddingError(
                    message=f"Embedding batch {number} failed: {outcome}",
                    provider_name=provider_name,
                ) from outcome
            if len(outcome) != len(batch):
                raise EmbeddingError(
                    message=(
                        f"Embedding batch {number} returned {len(outcome)} vectors "
                        f"for {len(batch)} texts"
                    ),
                    provider_name=provider_name,
                )
            for vector in outcome:
                if len(vector) != dimension:
                    raise EmbeddingError(
                        message=f"Expected {dimension}-dimensional vectors, got {len(vector)}",
                        provider_name=provider_name,
                    )
            vectors.extend(outcome)

        return vectors

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def _transition(self, dataset_id: int, target: DatasetStatus) -> None:
        dataset = await self._store.get_dataset(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(dataset_id)
        if not dataset.status.can_transition_to(target):
            raise InvalidStatusTransitionError(
                f"Dataset {dataset_id} cannot move from "
                f"{dataset.status.value} to {target.value}"
            )
        await self._store.set_status(dataset_id, target)

    async def _mark_failed(self, dataset_id: int) -> None:
        """Purge any chunk committed by the run and record ``failed``.

        A dataset that already reached a terminal status is left alone.
        """
        try:
            dataset = await self._store.get_dataset(dataset_id)
            if dataset is None or dataset.status is not DatasetStatus.PROCESSING:
                logger.warning(
                    "failed_status_not_recorded",
                    current=dataset.status.value if dataset else None,
                )
                return
            purged = await self._store.purge_chunks(dataset_id)
            if purged:
                logger.warning("orphaned_chunks_purged", purged=purged)
            await self._transition(dataset_id, DatasetStatus.FAILED)
        except DocRagError as exc:
            logger.warning("failed_status_not_recorded", error=str(exc))

    # ------------------------------------------------------------------
    # Upload files
    # ------------------------------------------------------------------

    def _remove_upload_file(self, storage_name: str) -> None:
        if self._upload_dir is None or not storage_name:
            return
        path = self._upload_dir / Path(storage_name).name
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("upload_file_cleanup_failed", path=str(path), error=str(exc))
