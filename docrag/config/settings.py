"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# This class uses pydantic-settings to read configuration from TWO
# sources (in priority order):
#
#   1. **Environment variables** -- e.g., OPENAI_API_KEY=sk-abc123
#   2. **.env file** -- key=value lines in the project root .env file
#
# Field name `chunk_size` maps to env var `CHUNK_SIZE`.  List fields such
# as `allowed_mime_types` are given as JSON, e.g.
# ALLOWED_MIME_TYPES='["text/plain", "application/pdf"]'.
#
# Defaults are used when neither an env var nor .env entry exists.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docrag application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Embedding Providers ===
    # "auto" picks OpenAI when a key is configured, otherwise Nomic via Ollama.
    embedding_provider: str = "auto"
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_embedding_model: str = ""  # Empty = text-embedding-3-small
    # Required for models missing from the built-in dimension table.
    openai_embedding_dimensions: int | None = Field(default=None, ge=1)
    ollama_base_url: str = "http://localhost:11434"
    embedding_timeout_seconds: float = Field(default=30.0, gt=0)
    embedding_batch_size: int = Field(default=16, ge=1)
    embedding_concurrency: int = Field(default=4, ge=1)

    # === Chunking ===
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    min_chunk_length: int = Field(default=50, ge=1)

    # === Retrieval ===
    retrieval_top_k: int = Field(default=5, ge=1)

    # === Storage ===
    database_path: str = "data/knowledge.sqlite"
    upload_dir: str = "uploads"

    # === Upload acceptance ===
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "text/plain",
            "application/pdf",
            "text/csv",
            "text/markdown",
        ]
    )

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def resolve_embedding_provider(self) -> str:
        """Return the concrete provider name ``"openai"`` or ``"nomic"``."""
        choice = self.embedding_provider.strip().lower()
        if choice == "auto":
            return "openai" if self.openai_api_key else "nomic"
        return choice
