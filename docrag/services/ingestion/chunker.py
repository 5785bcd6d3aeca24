"""Text chunking with overlapping character windows and sentence snapping.

Splits extracted document text into segments sized for embedding models
(default 1000 characters with 200 characters of overlap).

The chunking strategy has two design goals:

1. **Sentence-aware cuts** -- When a window would end inside the text, the
   cut is moved back to just after the last sentence terminator or newline
   found in the final 100 characters of the window.  Chunks rarely stop
   mid-sentence, and a chunk never drifts more than 100 characters short
   of (or 1 character past) the configured size.

2. **Overlapping windows** -- Each window starts ``overlap`` characters
   before the previous one ended, so a concept spanning a cut is captured
   whole in at least one chunk.

Segments shorter than ``min_length`` characters after trimming are dropped;
they carry too little signal to embed.
"""

from __future__ import annotations

import structlog

from docrag.utils.errors import ChunkingConfigError

logger = structlog.get_logger(logger_name=__name__)

# Characters after which a window may be cut.
_BOUNDARY_CHARS = frozenset(".!?\n")

# How far back from the window edge to look for a boundary.
_SNAP_LOOKBACK = 100


class TextChunker:
    """Splits text into overlapping, bounded-size segments.

    Parameters
    ----------
    chunk_size:
        Target maximum characters per chunk (default 1000).
    overlap:
        Characters shared by consecutive chunks (default 200).  Must be
        strictly less than *chunk_size*, otherwise windows cannot advance.
    min_length:
        Segments shorter than this after trimming are discarded (default 50).

    Raises
    ------
    ChunkingConfigError
        If the sizes are non-positive or ``overlap >= chunk_size``.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 200, min_length: int = 50) -> None:
        if chunk_size <= 0:
            raise ChunkingConfigError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ChunkingConfigError(f"overlap must not be negative, got {overlap}")
        if overlap >= chunk_size:
            raise ChunkingConfigError(
                f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        if min_length < 0:
            raise ChunkingConfigError(f"min_length must not be negative, got {min_length}")

        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_length = min_length

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    @property
    def min_length(self) -> int:
        return self._min_length

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[str]:
        """Split *text* into trimmed, overlapping segments in document order.

        Empty or whitespace-only input returns an empty list.  Input shorter
        than ``chunk_size`` yields one segment, or none if it is below
        ``min_length``.
        """
        if not text or not text.strip():
            return []

        chunks: list[str] = []
        for start, end in self.spans(text):
            segment = text[start:end].strip()
            if len(segment) >= self._min_length:
                chunks.append(segment)

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            text_length=len(text),
            avg_chars=sum(len(c) for c in chunks) // len(chunks) if chunks else 0,
        )
        return chunks

    def spans(self, text: str) -> list[tuple[int, int]]:
        """Return the ``(start, end)`` character window of every raw segment.

        Windows are returned before trimming and before the minimum-length
        filter.  Consecutive windows overlap by exactly ``overlap``
        characters, and the last window always ends at ``len(text)``.
        """
        spans: list[tuple[int, int]] = []
        length = len(text)
        start = 0

        while start < length:
            edge = start + self._chunk_size
            if edge >= length:
                spans.append((start, length))
                break

            end = self._snap_to_boundary(text, start, edge)
            spans.append((start, end))
            if end >= length:
                break
            start = end - self._overlap

        return spans

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snap_to_boundary(self, text: str, start: int, edge: int) -> int:
        """Return the cut position for a window ``[start, edge)``.

        Scans backward from *edge* (inclusive) to ``edge - 100`` for the
        last boundary character and cuts just after it.  The scan stops at
        ``start + overlap`` so the next window always starts after this
        one did.
        """
        lowest = max(edge - _SNAP_LOOKBACK, start + self._overlap)
        for pos in range(edge, lowest - 1, -1):
            if text[pos] in _BOUNDARY_CHARS:
                return pos + 1
        return edge
