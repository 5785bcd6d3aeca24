"""Abstract base class for dataset/chunk persistence.

Defines the contract for storing datasets, their chunk text and chunk
vectors.  The SQLite implementation lives in docrag/providers/store/;
other relational backends can be dropped in behind the same interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docrag.models.dataset import (
    ChunkRecord,
    Dataset,
    DatasetStatus,
    NewDataset,
    StoredChunk,
)


class IDatasetStore(ABC):
    """Contract for the persistence layer behind ingestion and retrieval.

    Implementations must guarantee:

    * :meth:`append_chunks` is atomic per call.
    * :meth:`delete_dataset` removes dependent chunks with the dataset row.
    * :meth:`all_chunks_with_vectors` never returns chunks of a dataset
      whose status is not ``completed``.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open the persistence handle and create the schema.  Called at startup."""

    @abstractmethod
    async def close(self) -> None:
        """Release the persistence handle.  Called at shutdown."""

    @abstractmethod
    async def create_dataset(self, meta: NewDataset) -> int:
        """Insert a dataset row in ``processing`` state and return its id."""

    @abstractmethod
    async def append_chunks(self, dataset_id: int, chunks: list[ChunkRecord]) -> None:
        """Persist *chunks* for *dataset_id* in a single transaction.

        Raises
        ------
        docrag.utils.errors.DatasetNotFoundError
            If the dataset does not exist.
        docrag.utils.errors.StoreError
            If the batch is malformed or the write fails; nothing is kept.
        """

    @abstractmethod
    async def set_status(self, dataset_id: int, status: DatasetStatus) -> None:
        """Overwrite the status column of a dataset.

        Lifecycle rules are enforced by the ingestion service, not here.
        """

    @abstractmethod
    async def get_dataset(self, dataset_id: int) -> Dataset | None:
        """Return a dataset with its chunk count, or ``None`` if unknown."""

    @abstractmethod
    async def list_datasets(self) -> list[Dataset]:
        """Return every dataset with its chunk count, newest first."""

    @abstractmethod
    async def chunk_count(self, dataset_id: int) -> int:
        """Return the number of committed chunks of a dataset."""

    @abstractmethod
    async def purge_chunks(self, dataset_id: int) -> int:
        """Delete every chunk of a dataset, keeping the dataset row."""

    @abstractmethod
    async def delete_dataset(self, dataset_id: int) -> bool:
        """Delete a dataset and, by cascade, its chunks.

        Returns ``False`` when no such dataset existed.
        """

    @abstractmethod
    async def fail_interrupted(self) -> int:
        """Move datasets left in ``processing`` by an earlier process to ``failed``.

        Their chunks are purged.  Returns the number of datasets moved.
        """

    @abstractmethod
    async def all_chunks_with_vectors(self) -> list[StoredChunk]:
        """Return all chunks of ``completed`` datasets joined with their source name."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
