"""
Tests for execution/doculaw/chunker.py

Covers: ChunkConfig validation, fixed windows with overlap, sentence-break
        snapping, chunk ids and offsets.
"""

import pytest


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestChunkConfig:
    """Tests for ChunkConfig defaults and validation."""

    def test_defaults(self):
        from execution.doculaw.chunker import ChunkConfig
        cfg = ChunkConfig()
        assert cfg.chunk_size == 1000
        assert cfg.overlap == 200
        assert cfg.min_break_ratio == 0.7

    def test_overlap_must_be_smaller_than_chunk_size(self):
        from execution.doculaw.chunker import TextChunker, ChunkConfig
        with pytest.raises(ValueError, match="overlap"):
            TextChunker(ChunkConfig(chunk_size=100, overlap=100))

    def test_chunk_size_must_be_positive(self):
        from execution.doculaw.chunker import TextChunker, ChunkConfig
        with pytest.raises(ValueError):
            TextChunker(ChunkConfig(chunk_size=0, overlap=0))


# ---------------------------------------------------------------------------
# split()
# ---------------------------------------------------------------------------

class TestSplit:
    """Tests for TextChunker.split."""

    def test_empty_text(self):
        from execution.doculaw.chunker import TextChunker
        assert TextChunker().split("") == []

    def test_short_text_single_chunk(self):
        from execution.doculaw.chunker import TextChunker
        assert TextChunker().split("  The defendant ran a red light.  ") == ["The defendant ran a red light."]

    def test_whitespace_only_text(self):
        from execution.doculaw.chunker import TextChunker
        assert TextChunker().split("   \n  \n ") == []

    def test_windows_overlap_without_breaks(self):
        from execution.doculaw.chunker import TextChunker
        text = "a" * 2500
        chunks = TextChunker().chunk_document("doc", text)
        assert [c.start_char for c in chunks] == [0, 800, 1600]
        assert len(chunks[0].content) == 1000
        assert len(chunks[-1].content) == 900

    def test_snaps_to_late_sentence_break(self):
        from execution.doculaw.chunker import TextChunker
        text = "A" * 799 + "." + "B" * 500
        pieces = TextChunker().split(text)
        assert pieces == ["A" * 799 + ".", "B" * 500]

    def test_early_break_is_ignored(self):
        from execution.doculaw.chunker import TextChunker
        text = "A" * 100 + "." + "B" * 1399
        chunks = TextChunker().chunk_document("doc", text)
        assert len(chunks) == 2
        assert len(chunks[0].content) == 1000
        assert chunks[1].start_char == 800

    def test_newline_counts_as_break(self):
        from execution.doculaw.chunker import TextChunker
        text = "A" * 900 + "\n" + "B" * 300
        pieces = TextChunker().split(text)
        assert pieces[0] == "A" * 900
        assert pieces[1] == "B" * 300

    def test_covers_entire_text(self):
        from execution.doculaw.chunker import TextChunker, ChunkConfig
        text = " ".join(f"Sentence number {i}." for i in range(300))
        chunker = TextChunker(ChunkConfig(chunk_size=200, overlap=50))
        pieces = chunker.split(text)
        assert pieces[0].startswith("Sentence number 0.")
        assert pieces[-1].endswith("Sentence number 299.")
        assert all(len(p) <= 200 for p in pieces)


# ---------------------------------------------------------------------------
# chunk_document()
# ---------------------------------------------------------------------------

class TestChunkDocument:
    """Tests for Chunk ids and indexes."""

    def test_chunk_ids_follow_document(self):
        from execution.doculaw.chunker import TextChunker
        chunks = TextChunker().chunk_document("doc-42", "x" * 1500)
        assert [c.chunk_id for c in chunks] == ["doc-42_chunk_0", "doc-42_chunk_1"]
        assert [c.chunk_index for c in chunks] == [0, 1]
        assert all(c.document_id == "doc-42" for c in chunks)

    def test_none_text(self):
        from execution.doculaw.chunker import TextChunker
        assert TextChunker().chunk_document("doc", None) == []

    def test_to_dict(self):
        from execution.doculaw.chunker import TextChunker
        chunk = TextChunker().chunk_document("d", "Hello.")[0]
        assert chunk.to_dict() == {
            "chunk_id": "d_chunk_0",
            "document_id": "d",
            "chunk_index": 0,
            "content": "Hello.",
            "start_char": 0,
        }
