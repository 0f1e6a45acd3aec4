"""
Fixed-Window Text Chunker

Splits extracted case-document text into overlapping windows for embedding.

Strategy:
- Windows of `chunk_size` characters
- When a window does not reach the end of the text, prefer to end it at the
  last sentence break ('.' or newline) if that break lies in the final 30%
  of the window; the next window then starts right after the break
- Otherwise the window is kept whole and the next one starts `overlap`
  characters before its end
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """A chunk of document text ready for embedding."""
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    start_char: int = 0

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "start_char": self.start_char,
        }


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    chunk_size: int = 1000  # characters per window
    overlap: int = 200  # characters shared between consecutive windows
    min_break_ratio: float = 0.7  # sentence break must lie past this share of the window


class TextChunker:
    """
    Splits text into overlapping fixed-size windows.

    Usage:
        chunker = TextChunker()
        pieces = chunker.split(text)
        chunks = chunker.chunk_document(document_id, text)
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()
        if self.config.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.config.overlap < 0 or self.config.overlap >= self.config.chunk_size:
            raise ValueError(
                f"overlap must be in [0, chunk_size), got overlap={self.config.overlap} "
                f"chunk_size={self.config.chunk_size}"
            )

    def _windows(self, text: str) -> list[tuple[int, str]]:
        """Return (start offset, raw window text) pairs covering the text."""
        size = self.config.chunk_size
        overlap = self.config.overlap
        threshold = size * self.config.min_break_ratio
        windows = []
        start = 0

        while start < len(text):
            end = min(start + size, len(text))
            window = text[start:end]
            window_start = start

            if end < len(text):
                break_point = max(window.rfind("."), window.rfind("\n"))
                if break_point > threshold:
                    window = window[:break_point + 1]
                    start = start + break_point + 1
                else:
                    start = end - overlap
            else:
                start = end

            windows.append((window_start, window))

        return windows

    def split(self, text: str) -> list[str]:
        """
        Split text into trimmed, non-empty chunks.

        Args:
            text: Full document text

        Returns:
            List of chunk strings in document order
        """
        if not text:
            return []
        return [w.strip() for _, w in self._windows(text) if w.strip()]

    def chunk_document(self, document_id: str, text: str) -> list[Chunk]:
        """
        Split a document and wrap each piece as a Chunk.

        Chunk ids follow the `{document_id}_chunk_{i}` convention used as
        vector ids in the index.
        """
        chunks = []
        for start, window in self._windows(text or ""):
            content = window.strip()
            if not content:
                continue
            index = len(chunks)
            chunks.append(Chunk(
                chunk_id=f"{document_id}_chunk_{index}",
                document_id=document_id,
                chunk_index=index,
                content=content,
                start_char=start + (len(window) - len(window.lstrip())),
            ))

        logger.debug(f"Split document {document_id} into {len(chunks)} chunks")
        return chunks
