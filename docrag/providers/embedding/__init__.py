"""Embedding provider implementations.

Embeddings convert text into numeric vectors that capture semantic meaning.
These vectors are stored alongside chunk text and ranked by cosine
similarity at query time.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims).
       High quality but requires API key and incurs cost per token.
    2. NomicEmbeddingProvider  -- nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
"""

from docrag.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docrag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider", "NomicEmbeddingProvider"]
