"""Custom exception hierarchy for docrag.

All application exceptions inherit from :class:`DocRagError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai_embedding", "sqlite") caused the failure.

The hierarchy is organized by pipeline stage:

    DocRagError  (base -- catch-all for any docrag error)
    +-- ConfigurationError            (startup / invalid settings)
    |   +-- ChunkingConfigError       (overlap >= chunk size, bad sizes)
    +-- ExtractionError               (stage 1: bytes-to-text)
    |   +-- EmptyDocumentError        (document yielded no usable chunks)
    +-- EmbeddingError                (stage 3: provider call, timeout, bad vectors)
    +-- StoreError                    (stage 4: persistence failure)
    +-- DatasetNotFoundError          (operation on an unknown dataset id)
    +-- InvalidStatusTransitionError  (dataset lifecycle violation)
    +-- UploadRejectedError           (upload refused before a dataset exists)

Failures inside an ingestion run are converted into a ``failed`` dataset
status by the ingestion service.  Synchronous calls (retrieval, listing,
deletion) let these propagate so the transport layer can map them.
"""


class DocRagError(Exception):
    """Base exception for all docrag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai_embedding] Request timed out``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(DocRagError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ChunkingConfigError(ConfigurationError):
    """Raised when a chunker is constructed with sizes that cannot advance."""

    def __init__(
        self,
        message: str = "Chunk overlap must be smaller than the chunk size",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class ExtractionError(DocRagError):
    """Raised when an uploaded file cannot be turned into usable text."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyDocumentError(ExtractionError):
    """Raised when a document produces no chunk above the minimum length."""

    def __init__(
        self,
        message: str = "Document contains no usable text",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(DocRagError):
    """Raised when an embedding call fails, times out or returns bad vectors."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StoreError(DocRagError):
    """Raised when the dataset store cannot persist or read data."""

    def __init__(
        self,
        message: str = "Dataset store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Dataset lifecycle errors
# ---------------------------------------------------------------------------

class DatasetNotFoundError(DocRagError):
    """Raised when an operation references a dataset id that does not exist."""

    def __init__(
        self,
        dataset_id: int,
        provider_name: str | None = None,
    ) -> None:
        self._dataset_id = dataset_id
        super().__init__(
            message=f"Dataset {dataset_id} not found",
            provider_name=provider_name,
        )

    @property
    def dataset_id(self) -> int:
        return self._dataset_id


class InvalidStatusTransitionError(DocRagError):
    """Raised when a dataset status change would leave a terminal state."""

    def __init__(
        self,
        message: str = "Invalid dataset status transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UploadRejectedError(DocRagError):
    """Raised when an upload is refused (too large, unsupported media type)."""

    def __init__(
        self,
        message: str = "Upload rejected",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
