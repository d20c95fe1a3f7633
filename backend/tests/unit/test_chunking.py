"""
Unit Tests — Sliding-Window Chunker
═══════════════════════════════════

Coverage targets:
  ✅ 1800 characters at size 800 / overlap 150 → three windows
  ✅ Windows overlap and together cover the whole preprocessed text
  ✅ Break preference: paragraph → sentence → word → hard cut
  ✅ Indices contiguous from 0; metadata carries offsets and source
  ✅ Text shorter than min_chunk_chars → no chunks
  ✅ max_chunks cap
  ✅ Invalid size / overlap → ValueError (overlap must stay below half the size)
  ✅ Dense paragraph breaks still move every window forward
"""

from __future__ import annotations

import pytest

from docproc.processing.chunking import chunk_text, preprocess


@pytest.mark.unit
@pytest.mark.processing
class TestChunkWindows:

    def test_three_windows_for_1800_chars(self, long_text):
        chunks = chunk_text(long_text, 800, 150)

        assert len(chunks) == 3
        assert [(c.start_index, c.end_index) for c in chunks] == [
            (0, 800), (650, 1450), (1300, 1799),
        ]

    def test_indices_are_contiguous(self, long_text):
        chunks = chunk_text(long_text, 300, 50)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_windows_overlap_and_cover_text(self, long_text):
        text = preprocess(long_text)
        chunks = chunk_text(long_text, 300, 50)

        assert chunks[0].start_index == 0
        assert chunks[-1].end_index == len(text)
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_index < previous.end_index
            assert current.start_index > previous.start_index

    def test_chunks_never_exceed_size(self, long_text):
        for chunk in chunk_text(long_text, 500, 100):
            assert chunk.end_index - chunk.start_index <= 500
            assert chunk.chunk_size <= 500


@pytest.mark.unit
@pytest.mark.processing
class TestBreakPoints:

    def test_prefers_paragraph_break(self):
        first = ("word " * 100).strip()
        text = first + "\n\n" + "next " * 100

        chunks = chunk_text(text, 800, 150)

        assert chunks[0].content == first
        assert chunks[0].end_index == len(first) + 2

    def test_falls_back_to_sentence_end(self):
        text = "Sentence number one is here. " * 40

        chunks = chunk_text(text, 800, 150)

        assert chunks[0].end_index == 783
        assert chunks[0].content.endswith("here.")

    def test_hard_cut_without_spaces(self):
        chunks = chunk_text("x" * 2000, 800, 150)

        assert chunks[0].chunk_size == 800
        assert [(c.start_index, c.end_index) for c in chunks] == [
            (0, 800), (650, 1450), (1300, 2000),
        ]


@pytest.mark.unit
@pytest.mark.processing
class TestChunkLimitsAndMetadata:

    def test_short_text_yields_no_chunks(self):
        assert chunk_text("tiny text", 800, 150) == []

    def test_min_chunk_chars_is_configurable(self):
        chunks = chunk_text("tiny text", 800, 150, min_chunk_chars=5)
        assert len(chunks) == 1
        assert chunks[0].content == "tiny text"

    def test_max_chunks_cap(self, long_text):
        chunks = chunk_text(long_text, 800, 150, max_chunks=2)
        assert len(chunks) == 2

    def test_metadata_fields(self, long_text):
        chunk = chunk_text(long_text, 800, 150, source="ocr")[1]

        meta = chunk.metadata
        assert meta["start_index"] == 650
        assert meta["end_index"] == 1450
        assert meta["chunk_size"] == len(chunk.content)
        assert meta["word_count"] == len(chunk.content.split())
        assert meta["source"] == "ocr"
        assert "created_at" in meta

    def test_line_endings_and_blank_runs_preprocessed(self):
        assert preprocess("  one\r\ntwo\r\n\r\n\r\n\r\nthree  ") == "one\ntwo\n\nthree"

    @pytest.mark.parametrize("size, overlap", [(0, 0), (100, 100), (100, 150), (100, -1), (300, 150), (300, 200)])
    def test_invalid_parameters(self, size, overlap):
        with pytest.raises(ValueError):
            chunk_text("some text that is long enough", size, overlap)

    def test_overlap_limit_names_both_values(self):
        with pytest.raises(ValueError, match="overlap=200, chunk_size=300"):
            chunk_text("some text that is long enough", 300, 200)


@pytest.mark.unit
@pytest.mark.processing
class TestWindowProgress:

    def test_dense_paragraph_breaks_keep_windows_advancing(self):
        text = "\n\n".join(("word " * 20).strip() for _ in range(120))

        chunks = chunk_text(text, 300, 140)

        steps = [b.start_index - a.start_index for a, b in zip(chunks, chunks[1:])]
        assert min(steps) > 300 * 0.5 - 140
        assert len(chunks) < 250
        assert chunks[-1].end_index == len(text)
