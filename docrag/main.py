"""docrag composition root.

Wires the embedding provider, the SQLite dataset store, the ingestion
service and the retrieval service together from a :class:`Settings`
instance.  Transport layers (the CLI, or a web app embedding the core)
open the whole stack with :func:`open_application` and close it when done::

    async with open_application(settings) as app:
        dataset_id = await app.ingestion.ingest(upload)
        results = await app.retrieval.retrieve("what is overlap?")
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from docrag.config.settings import Settings
from docrag.interfaces.dataset_store import IDatasetStore
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.providers.store.sqlite_dataset_store import SQLiteDatasetStore
from docrag.services.ingestion.chunker import TextChunker
from docrag.services.ingestion.ingestion_service import IngestionService
from docrag.services.ingestion.text_extractor import TextExtractor
from docrag.services.retrieval_service import RetrievalService
from docrag.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Embedding provider selection
# ---------------------------------------------------------------------------


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Build the embedding provider named by ``settings.embedding_provider``.

    ``auto`` resolves to OpenAI when an API key is configured, otherwise to
    Nomic via a local Ollama server.

    Raises
    ------
    ConfigurationError
        If the provider name is unknown, or OpenAI is requested without a key.
    """
    choice = app_settings.resolve_embedding_provider()

    if choice == "openai":
        from docrag.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
    elif choice == "nomic":
        from docrag.providers.embedding.nomic_embedding_provider import (
            NomicEmbeddingProvider,
        )

        provider = NomicEmbeddingProvider(settings=app_settings)
    else:
        raise ConfigurationError(
            f"Unknown embedding provider '{app_settings.embedding_provider}' "
            "(expected auto, openai or nomic)"
        )

    if not provider.is_available():
        raise ConfigurationError(
            f"Embedding provider '{provider.get_provider_name()}' is not configured",
            provider_name=provider.get_provider_name(),
        )
    return provider


# ---------------------------------------------------------------------------
# Application assembly
# ---------------------------------------------------------------------------


@dataclass
class Application:
    """The assembled core: one store, one ingestion service, one retrieval service."""

    settings: Settings
    embedding_provider: IEmbeddingProvider
    store: IDatasetStore
    ingestion: IngestionService
    retrieval: RetrievalService


def build_application(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    store: IDatasetStore | None = None,
) -> Application:
    """Construct every component without touching the network or disk.

    *embedding_provider* and *store* may be injected (tests, alternative
    backends); otherwise they are built from *app_settings*.
    """
    provider = embedding_provider or build_embedding_provider(app_settings)
    dataset_store = store or SQLiteDatasetStore(
        db_path=app_settings.database_path,
        dimension=provider.get_dimension(),
    )

    ingestion = IngestionService(
        extractor=TextExtractor(),
        chunker=TextChunker(
            chunk_size=app_settings.chunk_size,
            overlap=app_settings.chunk_overlap,
            min_length=app_settings.min_chunk_length,
        ),
        embedding_provider=provider,
        store=dataset_store,
        upload_dir=app_settings.upload_dir,
        embedding_timeout=app_settings.embedding_timeout_seconds,
        embedding_batch_size=app_settings.embedding_batch_size,
        embedding_concurrency=app_settings.embedding_concurrency,
        max_upload_bytes=app_settings.max_upload_bytes,
        allowed_mime_types=app_settings.allowed_mime_types,
    )
    retrieval = RetrievalService(
        store=dataset_store,
        embedding_provider=provider,
        default_limit=app_settings.retrieval_top_k,
        embedding_timeout=app_settings.embedding_timeout_seconds,
    )

    return Application(
        settings=app_settings,
        embedding_provider=provider,
        store=dataset_store,
        ingestion=ingestion,
        retrieval=retrieval,
    )


@asynccontextmanager
async def open_application(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    store: IDatasetStore | None = None,
    validate_provider: bool = False,
) -> AsyncIterator[Application]:
    """Open the store on entry; drain ingestion runs and close the store on exit.

    Datasets an earlier process left in ``processing`` are moved to
    ``failed`` before anything is yielded.

    When *validate_provider* is set, the embedding provider's validation
    check runs at startup and a rejected key or unreachable server raises
    :class:`ConfigurationError` before anything is yielded.
    """
    app = build_application(app_settings, embedding_provider=embedding_provider, store=store)

    if validate_provider and not await app.embedding_provider.validate():
        raise ConfigurationError(
            "Embedding provider failed validation",
            provider_name=app.embedding_provider.get_provider_name(),
        )

    await app.store.initialize()
    # Runs cut short by an earlier shutdown never reached a terminal status.
    interrupted = await app.store.fail_interrupted()
    logger.info(
        "app_startup",
        interrupted_datasets=interrupted,
        environment=app_settings.app_env,
        embedding_provider=app.embedding_provider.get_provider_name(),
        dimension=app.embedding_provider.get_dimension(),
        store=app.store.get_provider_name(),
    )

    try:
        yield app
    finally:
        await app.ingestion.drain()
        await app.ingestion.close()
        await app.store.close()
        logger.info("app_shutdown")
