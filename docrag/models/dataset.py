"""Dataset and chunk data models for the docrag knowledge base.

Defines Pydantic v2 models for uploaded datasets, their embedded chunks,
retrieval results and ingestion run summaries.  All models use frozen
config; status changes produce new rows in the store, never in-place edits.

Lifecycle overview:

    1. UPLOAD: an accepted upload creates one Dataset row in ``processing``.
    2. INGESTION: text is extracted, chunked and embedded in the background.
    3. COMMIT: all chunks are written in a single transaction, then the
       dataset moves to ``completed``.  Any failure moves it to ``failed``.
    4. RETRIEVAL: only chunks of ``completed`` datasets are ranked.

See docrag/services/ingestion/ for the pipeline and
docrag/providers/store/ for the SQLite persistence layer.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# DatasetStatus -- the lifecycle state machine of an uploaded dataset.
# ---------------------------------------------------------------------------
class DatasetStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Lifecycle states of a dataset.

    ``processing`` is the initial state; ``completed`` and ``failed`` are
    terminal.  A failed upload is re-ingested as a new dataset, never
    resurrected.
    """

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DatasetStatus.PROCESSING

    def can_transition_to(self, target: DatasetStatus) -> bool:
        """Return ``True`` if moving from this state to *target* is allowed."""
        return self is DatasetStatus.PROCESSING and target.is_terminal


# ---------------------------------------------------------------------------
# Upload and dataset metadata
# ---------------------------------------------------------------------------
class UploadPayload(BaseModel):
    """Everything the transport layer hands over when an upload is accepted."""

    model_config = ConfigDict(frozen=True)

    file_bytes: bytes = Field(repr=False, description="Raw uploaded file content.")
    declared_type: str = Field(description="Declared media type, e.g. 'text/plain'.")
    original_name: str = Field(description="Filename as supplied by the uploader.")
    storage_name: str = Field(description="Filename assigned in the upload directory.")
    size: int = Field(ge=0, description="Upload size in bytes.")
    owner_id: str | None = Field(
        default=None,
        description="Opaque owning-context reference (user id), if any.",
    )


class NewDataset(BaseModel):
    """Metadata for a dataset row that does not exist yet."""

    model_config = ConfigDict(frozen=True)

    filename: str
    original_name: str
    file_size: int = Field(ge=0)
    file_type: str
    owner_id: str | None = None


class Dataset(BaseModel):
    """A persisted dataset row, optionally annotated with its chunk count."""

    model_config = ConfigDict(frozen=True)

    id: int
    owner_id: str | None = None
    filename: str
    original_name: str
    file_size: int = Field(ge=0)
    file_type: str
    uploaded_at: datetime
    status: DatasetStatus
    chunk_count: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------
class ChunkRecord(BaseModel):
    """An in-flight chunk paired with its embedding, ready to be committed."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0, description="0-based position in the source document.")
    text: str = Field(description="Chunk text content.")
    embedding: list[float] = Field(repr=False, description="Embedding vector.")

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("chunk text must not be blank")
        return value


class StoredChunk(BaseModel):
    """A committed chunk joined with the name of its parent dataset."""

    model_config = ConfigDict(frozen=True)

    dataset_id: int
    chunk_index: int = Field(ge=0)
    text: str
    embedding: list[float] = Field(repr=False)
    source_name: str


# ---------------------------------------------------------------------------
# Retrieval and ingestion results
# ---------------------------------------------------------------------------
class RetrievedChunk(BaseModel):
    """A chunk ranked against a query vector, with provenance."""

    model_config = ConfigDict(frozen=True)

    text: str
    similarity: float = Field(
        ge=-1.0,
        le=1.0,
        description="Cosine similarity between the query and this chunk.",
    )
    source_name: str = Field(description="Original filename of the parent dataset.")


class IngestionResult(BaseModel):
    """Summary of a single background ingestion run."""

    model_config = ConfigDict(frozen=True)

    dataset_id: int
    status: DatasetStatus
    chunks_created: int = Field(default=0, ge=0)
    ingestion_time: float = Field(default=0.0, ge=0.0)
    failed_stage: str | None = None
    error: str | None = None
