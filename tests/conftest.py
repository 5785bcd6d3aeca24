"""Shared pytest fixtures for the docrag test suite."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
import pytest_asyncio

from docrag.config.settings import Settings
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.models.dataset import ChunkRecord, NewDataset, UploadPayload
from docrag.providers.store.sqlite_dataset_store import SQLiteDatasetStore
from docrag.services.ingestion.chunker import TextChunker
from docrag.services.ingestion.ingestion_service import IngestionService
from docrag.services.ingestion.text_extractor import TextExtractor

# ---------------------------------------------------------------------------
# Deterministic embeddings
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 8


def _hash_to_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Map *text* to a stable vector with components in [-1, 1]."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(digest[i] / 255.0) * 2.0 - 1.0 for i in range(dim)]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests."""

    def __init__(self, dimension: int = _EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [_hash_to_vector(t, self._dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return _hash_to_vector(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True

    async def validate(self) -> bool:
        return True


def make_sentences(count: int, start: int = 0) -> str:
    """Return *count* distinct sentences, each a little over 60 characters."""
    return " ".join(
        f"Sentence number {i} talks about topic {i} in some detail here."
        for i in range(start, start + count)
    )


def make_upload(
    text: str = "",
    declared_type: str = "text/plain",
    original_name: str = "notes.txt",
    storage_name: str = "1700000000000_abcdefghijklm.txt",
    file_bytes: bytes | None = None,
) -> UploadPayload:
    data = file_bytes if file_bytes is not None else text.encode("utf-8")
    return UploadPayload(
        file_bytes=data,
        declared_type=declared_type,
        original_name=original_name,
        storage_name=storage_name,
        size=len(data),
    )


def make_chunks(count: int, dim: int = _EMBEDDING_DIM, prefix: str = "chunk") -> list[ChunkRecord]:
    return [
        ChunkRecord(
            chunk_index=i,
            text=f"{prefix} {i} text",
            embedding=_hash_to_vector(f"{prefix} {i} text", dim),
        )
        for i in range(count)
    ]


def new_dataset(original_name: str = "notes.txt") -> NewDataset:
    return NewDataset(
        filename="1700000000000_abcdefghijklm.txt",
        original_name=original_name,
        file_size=1234,
        file_type="text/plain",
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, upload_dir: Path) -> Settings:
    """Settings pointing at a throwaway database and upload directory."""
    return Settings(
        openai_api_key="",
        embedding_provider="auto",
        database_path=str(tmp_path / "knowledge.sqlite"),
        upload_dir=str(upload_dir),
        app_env="test",
    )


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    """An initialized SQLite store in a temporary directory."""
    dataset_store = SQLiteDatasetStore(db_path=tmp_path / "knowledge.sqlite")
    await dataset_store.initialize()
    yield dataset_store
    await dataset_store.close()


@pytest.fixture
def ingestion_service(
    store: SQLiteDatasetStore,
    mock_embedding_provider: MockEmbeddingProvider,
    upload_dir: Path,
) -> IngestionService:
    return IngestionService(
        extractor=TextExtractor(),
        chunker=TextChunker(),
        embedding_provider=mock_embedding_provider,
        store=store,
        upload_dir=upload_dir,
        embedding_timeout=2.0,
        max_upload_bytes=10 * 1024 * 1024,
        allowed_mime_types=["text/plain", "application/pdf", "text/csv", "text/markdown"],
    )
