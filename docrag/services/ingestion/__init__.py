"""Document ingestion pipeline for the knowledge base.

Orchestrates the full pipeline: **extract -> chunk -> embed -> store**.

1. **Extract** (text_extractor.py / TextExtractor) -- Converts uploaded
   bytes (plain text, CSV, PDF) into a single text string.  Never raises;
   unreadable input degrades to a best-effort decode.

2. **Chunk** (chunker.py / TextChunker) -- Splits text into overlapping
   character windows, snapping each cut back to a nearby sentence or
   line boundary.

3. **Embed** (via IEmbeddingProvider) -- Generates one vector per chunk,
   in throttled batches with a per-call timeout.

4. **Store** (via IDatasetStore) -- Commits every chunk and vector of a
   dataset in one transaction, then marks the dataset ``completed``.

The IngestionService class drives all four stages and owns the dataset
status lifecycle (processing -> completed | failed).
"""

from docrag.services.ingestion.chunker import TextChunker
from docrag.services.ingestion.ingestion_service import IngestionService
from docrag.services.ingestion.text_extractor import TextExtractor

__all__ = [
    "IngestionService",
    "TextChunker",
    "TextExtractor",
]
