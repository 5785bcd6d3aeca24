"""SQLite-backed dataset store.

Persists datasets and their embedded chunks to a local SQLite database at
``data/knowledge.sqlite``.  Uses ``aiosqlite`` for async I/O over a single
connection that is opened in :meth:`initialize` and released in
:meth:`close`.

Vectors are stored as BLOBs of little-endian float32 values (see
:mod:`docrag.utils.vectors`).  Chunks reference their dataset with
``ON DELETE CASCADE``, so deleting a dataset removes its chunks in the same
statement.

Every operation holds an ``asyncio.Lock``: a reader can never observe a
chunk batch between its insert and its commit.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

from docrag.interfaces.dataset_store import IDatasetStore
from docrag.models.dataset import (
    ChunkRecord,
    Dataset,
    DatasetStatus,
    NewDataset,
    StoredChunk,
)
from docrag.utils.errors import DatasetNotFoundError, StoreError
from docrag.utils.vectors import decode_vector, encode_vector

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.sqlite")
_PROVIDER_NAME = "sqlite"

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS datasets (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id      TEXT,
    filename      TEXT    NOT NULL,
    original_name TEXT    NOT NULL,
    file_size     INTEGER NOT NULL,
    file_type     TEXT    NOT NULL,
    uploaded_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    status        TEXT    NOT NULL DEFAULT 'processing'
                  CHECK (status IN ('processing', 'completed', 'failed'))
);

CREATE TABLE IF NOT EXISTS chunks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    dataset_id  INTEGER NOT NULL REFERENCES datasets(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL CHECK (chunk_index >= 0),
    chunk_text  TEXT    NOT NULL,
    embedding   BLOB    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE(dataset_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_dataset_id ON chunks(dataset_id);
CREATE INDEX IF NOT EXISTS idx_datasets_status ON datasets(status);
"""

_INSERT_DATASET_SQL = """\
INSERT INTO datasets (owner_id, filename, original_name, file_size, file_type, status)
VALUES (?, ?, ?, ?, ?, ?);
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO chunks (dataset_id, chunk_index, chunk_text, embedding)
VALUES (?, ?, ?, ?);
"""

_SELECT_DATASETS_SQL = """\
SELECT d.id, d.owner_id, d.filename, d.original_name, d.file_size, d.file_type,
       d.uploaded_at, d.status,
       (SELECT COUNT(*) FROM chunks c WHERE c.dataset_id = d.id) AS chunk_count
FROM datasets d
"""

_SELECT_RETRIEVABLE_SQL = """\
SELECT c.dataset_id, c.chunk_index, c.chunk_text, c.embedding, d.original_name
FROM chunks c
JOIN datasets d ON c.dataset_id = d.id
WHERE d.status = ?
ORDER BY c.dataset_id, c.chunk_index;
"""


class SQLiteDatasetStore(IDatasetStore):
    """SQLite-backed dataset and chunk persistence.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file, or ``":memory:"``.
    dimension:
        Expected vector dimensionality.  When set, :meth:`append_chunks`
        rejects vectors of any other length.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        dimension: int | None = None,
    ) -> None:
        self._db_path = str(db_path)
        self._dimension = dimension
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the connection, enable foreign keys and create the schema."""
        if self._db is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            db = await aiosqlite.connect(self._db_path)
            db.row_factory = aiosqlite.Row
            # Cascade deletes are off by default in SQLite.
            await db.execute("PRAGMA foreign_keys = ON;")
            await db.executescript(_SCHEMA_SQL)
            await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(
                message=f"Could not open dataset database {self._db_path}: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        self._db = db
        logger.info("dataset_db_initialized", path=self._db_path)

    async def close(self) -> None:
        if self._db is None:
            return
        async with self._lock:
            await self._db.close()
            self._db = None
        logger.info("dataset_db_closed", path=self._db_path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_dataset(self, meta: NewDataset) -> int:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    _INSERT_DATASET_SQL,
                    (
                        meta.owner_id,
                        meta.filename,
                        meta.original_name,
                        meta.file_size,
                        meta.file_type,
                        DatasetStatus.PROCESSING.value,
                    ),
                )
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not create dataset: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc

        dataset_id = int(cursor.lastrowid)
        logger.info(
            "dataset_created",
            dataset_id=dataset_id,
            original_name=meta.original_name,
            file_type=meta.file_type,
        )
        return dataset_id

    async def append_chunks(self, dataset_id: int, chunks: list[ChunkRecord]) -> None:
        """Insert *chunks* in one transaction; all rows land or none do.

        Chunk indices must continue the dataset's existing sequence without
        gaps (``0..n-1`` for a fresh dataset), in order.
        """
        if not chunks:
            return

        db = self._connection()
        async with self._lock:
            try:
                exists = await self._dataset_exists(db, dataset_id)
                existing = await self._count_chunks(db, dataset_id) if exists else 0
            except aiosqlite.Error as exc:
                raise self._read_error(f"dataset {dataset_id}", exc) from exc
            if not exists:
                raise DatasetNotFoundError(dataset_id, provider_name=_PROVIDER_NAME)

            self._validate_batch(dataset_id, chunks, first_index=existing)

            rows = [
                (dataset_id, c.chunk_index, c.text, encode_vector(c.embedding))
                for c in chunks
            ]
            try:
                await db.executemany(_INSERT_CHUNK_SQL, rows)
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not store chunks for dataset {dataset_id}: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc

        logger.info("chunks_stored", dataset_id=dataset_id, num_chunks=len(chunks))

    async def set_status(self, dataset_id: int, status: DatasetStatus) -> None:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "UPDATE datasets SET status = ? WHERE id = ?;",
                    (status.value, dataset_id),
                )
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not update status of dataset {dataset_id}: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc

        if cursor.rowcount == 0:
            raise DatasetNotFoundError(dataset_id, provider_name=_PROVIDER_NAME)
        logger.debug("dataset_status_set", dataset_id=dataset_id, status=status.value)

    async def purge_chunks(self, dataset_id: int) -> int:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "DELETE FROM chunks WHERE dataset_id = ?;", (dataset_id,)
                )
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not purge chunks of dataset {dataset_id}: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc
        return cursor.rowcount

    async def delete_dataset(self, dataset_id: int) -> bool:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute("DELETE FROM datasets WHERE id = ?;", (dataset_id,))
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not delete dataset {dataset_id}: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc

        deleted = cursor.rowcount > 0
        logger.info("dataset_deleted", dataset_id=dataset_id, deleted=deleted)
        return deleted

    async def fail_interrupted(self) -> int:
        db = self._connection()
        processing = DatasetStatus.PROCESSING.value
        async with self._lock:
            try:
                await db.execute(
                    "DELETE FROM chunks WHERE dataset_id IN "
                    "(SELECT id FROM datasets WHERE status = ?);",
                    (processing,),
                )
                cursor = await db.execute(
                    "UPDATE datasets SET status = ? WHERE status = ?;",
                    (DatasetStatus.FAILED.value, processing),
                )
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise StoreError(
                    message=f"Could not fail interrupted datasets: {exc}",
                    provider_name=_PROVIDER_NAME,
                ) from exc

        if cursor.rowcount:
            logger.warning("interrupted_datasets_failed", count=cursor.rowcount)
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_dataset(self, dataset_id: int) -> Dataset | None:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    _SELECT_DATASETS_SQL + "WHERE d.id = ?;", (dataset_id,)
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as exc:
                raise self._read_error(f"dataset {dataset_id}", exc) from exc
        return Dataset(**dict(row)) if row is not None else None

    async def list_datasets(self) -> list[Dataset]:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    _SELECT_DATASETS_SQL + "ORDER BY d.uploaded_at DESC, d.id DESC;"
                )
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise self._read_error("datasets", exc) from exc
        return [Dataset(**dict(r)) for r in rows]

    async def chunk_count(self, dataset_id: int) -> int:
        db = self._connection()
        async with self._lock:
            try:
                return await self._count_chunks(db, dataset_id)
            except aiosqlite.Error as exc:
                raise self._read_error(f"chunk count of dataset {dataset_id}", exc) from exc

    async def all_chunks_with_vectors(self) -> list[StoredChunk]:
        db = self._connection()
        async with self._lock:
            try:
                cursor = await db.execute(
                    _SELECT_RETRIEVABLE_SQL, (DatasetStatus.COMPLETED.value,)
                )
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise self._read_error("retrievable chunks", exc) from exc

        chunks: list[StoredChunk] = []
        for r in rows:
            try:
                embedding = decode_vector(r["embedding"])
            except ValueError as exc:
                raise StoreError(
                    message=(
                        f"Corrupt vector for chunk {r['chunk_index']} "
                        f"of dataset {r['dataset_id']}: {exc}"
                    ),
                    provider_name=_PROVIDER_NAME,
                ) from exc
            chunks.append(
                StoredChunk(
                    dataset_id=r["dataset_id"],
                    chunk_index=r["chunk_index"],
                    text=r["chunk_text"],
                    embedding=embedding,
                    source_name=r["original_name"],
                )
            )
        return chunks

    def get_provider_name(self) -> str:
        return "sqlite_dataset_store"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError(
                message="Dataset store is not initialized",
                provider_name=_PROVIDER_NAME,
            )
        return self._db

    @staticmethod
    def _read_error(what: str, exc: Exception) -> StoreError:
        return StoreError(
            message=f"Could not read {what}: {exc}",
            provider_name=_PROVIDER_NAME,
        )

    @staticmethod
    async def _dataset_exists(db: aiosqlite.Connection, dataset_id: int) -> bool:
        cursor = await db.execute(
            "SELECT 1 FROM datasets WHERE id = ? LIMIT 1;", (dataset_id,)
        )
        return await cursor.fetchone() is not None

    @staticmethod
    async def _count_chunks(db: aiosqlite.Connection, dataset_id: int) -> int:
        cursor = await db.execute(
            "SELECT COUNT(*) FROM chunks WHERE dataset_id = ?;", (dataset_id,)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def _validate_batch(
        self,
        dataset_id: int,
        chunks: list[ChunkRecord],
        first_index: int,
    ) -> None:
        """Reject batches with index gaps or inconsistent vector sizes."""
        expected = list(range(first_index, first_index + len(chunks)))
        actual = [c.chunk_index for c in chunks]
        if actual != expected:
            raise StoreError(
                message=(
                    f"Chunk indices for dataset {dataset_id} must be "
                    f"{first_index}..{expected[-1]} in order"
                ),
                provider_name=_PROVIDER_NAME,
            )

        dimension = self._dimension or len(chunks[0].embedding)
        for chunk in chunks:
            if len(chunk.embedding) != dimension or dimension == 0:
                raise StoreError(
                    message=(
                        f"Chunk {chunk.chunk_index} of dataset {dataset_id} has "
                        f"{len(chunk.embedding)} dimensions, expected {dimension}"
                    ),
                    provider_name=_PROVIDER_NAME,
                )
