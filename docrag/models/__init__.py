"""Domain models, re-exported for ``from docrag.models import Dataset``.

All models are immutable pydantic v2 models defined in ``dataset.py``.
"""

from docrag.models.dataset import (
    ChunkRecord,
    Dataset,
    DatasetStatus,
    IngestionResult,
    NewDataset,
    RetrievedChunk,
    StoredChunk,
    UploadPayload,
)

__all__ = [
    "ChunkRecord",
    "Dataset",
    "DatasetStatus",
    "IngestionResult",
    "NewDataset",
    "RetrievedChunk",
    "StoredChunk",
    "UploadPayload",
]
