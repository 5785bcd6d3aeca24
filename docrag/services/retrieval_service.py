"""Semantic retrieval over stored chunks.

Ranks every retrievable chunk against a query vector by cosine similarity
and returns the top-K with the name of the source document, ready to be
handed to a completion step as context.

Ranking is recomputed per query from the store (exhaustive scan, no
cache).  Only chunks of ``completed`` datasets are ever considered; the
store enforces that filter.  Chunks whose vector dimension differs from
the query's are skipped, not compared.
"""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

import structlog

from docrag.models.dataset import RetrievedChunk
from docrag.utils.concurrency import call_with_timeout
from docrag.utils.vectors import cosine_similarity

if TYPE_CHECKING:
    from docrag.interfaces.dataset_store import IDatasetStore
    from docrag.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)


class RetrievalService:
    """Finds the chunks most similar to a query.

    Parameters
    ----------
    store:
        Source of retrievable chunks and their vectors.
    embedding_provider:
        Used by :meth:`retrieve` to embed query text.  Must be the same
        model that embedded the stored chunks.
    default_limit:
        Number of results returned when a caller does not pass ``limit``.
    embedding_timeout:
        Seconds to wait for the query embedding before giving up.
    """

    def __init__(
        self,
        store: IDatasetStore,
        embedding_provider: IEmbeddingProvider,
        default_limit: int = 5,
        embedding_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._embedding_provider = embedding_provider
        self._default_limit = default_limit
        self._embedding_timeout = embedding_timeout

    async def retrieve(self, query_text: str, limit: int | None = None) -> list[RetrievedChunk]:
        """Embed *query_text* and return the most similar chunks.

        Raises
        ------
        docrag.utils.errors.EmbeddingError
            If the query cannot be embedded within the timeout.
        docrag.utils.errors.StoreError
            If stored chunks cannot be read.
        """
        if not query_text or not query_text.strip():
            return []

        query_vector = await call_with_timeout(
            self._embedding_provider.embed_single(query_text.strip()),
            timeout=self._embedding_timeout,
            provider_name=self._embedding_provider.get_provider_name(),
        )
        return await self.find_similar(query_vector, limit)

    async def find_similar(
        self,
        query_vector: list[float],
        limit: int | None = None,
    ) -> list[RetrievedChunk]:
        """Return up to *limit* chunks ordered by descending cosine similarity.

        An empty corpus or a non-positive limit yields an empty list.
        """
        top_k = self._default_limit if limit is None else limit
        if top_k <= 0:
            return []

        stored = await self._store.all_chunks_with_vectors()
        if not stored:
            return []

        dimension = len(query_vector)
        scored: list[tuple[float, int, RetrievedChunk]] = []
        skipped = 0
        for position, chunk in enumerate(stored):
            if len(chunk.embedding) != dimension:
                skipped += 1
                continue
            similarity = cosine_similarity(query_vector, chunk.embedding)
            scored.append(
                (
                    similarity,
                    -position,
                    RetrievedChunk(
                        text=chunk.text,
                        similarity=similarity,
                        source_name=chunk.source_name,
                    ),
                )
            )

        if skipped:
            logger.warning(
                "retrieval_dimension_mismatch",
                skipped=skipped,
                query_dimension=dimension,
            )

        # Ties keep corpus order (earlier chunks first).
        best = heapq.nlargest(top_k, scored, key=lambda item: (item[0], item[1]))
        results = [item[2] for item in best]

        logger.debug(
            "retrieval_complete",
            candidates=len(stored),
            returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results
