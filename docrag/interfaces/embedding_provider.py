"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), or any other embedding backend.
The ingestion and retrieval services only ever see this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider  -- nomic-embed-text via Ollama (local)
# Located in: docrag/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the ingestion pipeline.

    Embeddings are persisted by
    :class:`~docrag.interfaces.dataset_store.IDatasetStore` and ranked by
    :class:`~docrag.services.retrieval_service.RetrievalService`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations should
            handle batching internally if the underlying API has a per-call
            limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        docrag.utils.errors.EmbeddingError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        This is a convenience wrapper around :meth:`embed` for the common
        single-text case (e.g. embedding a search query).
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance.  Example values: ``1536`` (OpenAI
        ``text-embedding-3-small``), ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Must not perform network I/O; see :meth:`validate` for a live check.
        """

    @abstractmethod
    async def validate(self) -> bool:
        """Probe the backend to confirm the key and model are usable.

        Called once at startup.  Returns ``False`` instead of raising when
        the backend rejects the credentials or cannot be reached.
        """
