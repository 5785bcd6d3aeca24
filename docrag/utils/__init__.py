"""Utility modules for docrag.

- **errors** -- Domain exception hierarchy rooted at DocRagError; each
  stage raises its own subclass so callers can handle failures
  granularly.
- **logging** -- structlog setup (console or JSON on stderr) and the
  per-run ingestion context bound into every event.
- **concurrency** -- asyncio semaphore throttling and timeout helpers for
  embedding calls.
- **vectors** -- float32 vector encoding and cosine similarity.
- **files** -- Storage filename generation and human-readable sizes.
- **text_normalizer** (not re-exported here) -- Control-character
  stripping and CSV flattening used by the text extractor.
"""

from docrag.utils.errors import (
    ChunkingConfigError,
    ConfigurationError,
    DatasetNotFoundError,
    DocRagError,
    EmbeddingError,
    EmptyDocumentError,
    ExtractionError,
    InvalidStatusTransitionError,
    StoreError,
    UploadRejectedError,
)
from docrag.utils.files import format_file_size, generate_storage_filename
from docrag.utils.logging import bind_stage, configure_logging, ingestion_context
from docrag.utils.vectors import cosine_similarity, decode_vector, encode_vector

__all__ = [
    "ChunkingConfigError",
    "ConfigurationError",
    "DatasetNotFoundError",
    "DocRagError",
    "EmbeddingError",
    "EmptyDocumentError",
    "ExtractionError",
    "InvalidStatusTransitionError",
    "StoreError",
    "UploadRejectedError",
    "bind_stage",
    "configure_logging",
    "cosine_similarity",
    "decode_vector",
    "encode_vector",
    "format_file_size",
    "generate_storage_filename",
    "ingestion_context",
]
