"""
Tests for the sliding-window chunker and its parameter validation.
"""

import pytest

from rag_pipeline.errors import ValidationError
from rag_pipeline.utils import chunk_text, content_hash, html_to_text, make_snippet, page_title


def _reassemble(chunks, step):
    """Rebuild text from windows that start every `step` characters."""
    out = ""
    for i, c in enumerate(chunks):
        out = out[: i * step] + c if i else c
    return out


def _covered_positions(text, chunks, size, step):
    """Positions of text covered by the chunks, checking each sits inside its own window."""
    starts = [s for s in range(0, len(text), step) if text[s : s + size].strip()]
    assert len(starts) == len(chunks)
    covered = set()
    for start, chunk in zip(starts, chunks):
        offset = text.index(chunk, start)
        assert offset + len(chunk) <= start + size
        covered.update(range(offset, offset + len(chunk)))
    return covered


class TestChunkText:
    def test_windows_start_every_size_minus_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(250))
        chunks = chunk_text(text, 100, 20)

        assert len(chunks) == 4
        assert chunks[0] == text[0:100]
        assert chunks[1] == text[80:180]
        assert chunks[2] == text[160:250]
        assert chunks[3] == text[240:250]
        assert all(len(c) <= 100 for c in chunks)

    def test_overlap_reassembles_original(self):
        text = "x" * 37 + "y" * 61 + "z" * 45
        chunks = chunk_text(text, 30, 10)

        assert _reassemble(chunks, 20) == text

    def test_interior_spaces_survive_reassembly(self):
        text = "ab cd ef gh"
        chunks = chunk_text(text, 4, 1)

        assert chunks == ["ab c", "cd e", "ef g", "gh"]
        assert _reassemble(chunks, 3) == text

    @pytest.mark.parametrize("size,overlap", [(17, 5), (40, 12), (9, 0)])
    def test_interior_whitespace_keeps_every_character_covered(self, size, overlap):
        text = "  alpha beta\ngamma  delta epsilon\tzeta   eta\n\ntheta " * 4
        chunks = chunk_text(text, size, overlap)

        covered = _covered_positions(text, chunks, size, size - overlap)

        assert all(i in covered for i, ch in enumerate(text) if not ch.isspace())
        assert all(c == c.strip() and c for c in chunks)
        assert any(" " in c for c in chunks)

    def test_short_text_is_one_trimmed_chunk(self):
        assert chunk_text("   hello world  ", 100, 20) == ["hello world"]

    def test_whitespace_windows_dropped_and_ordinals_contiguous(self):
        text = "a" * 10 + " " * 30 + "b" * 10
        chunks = chunk_text(text, 10, 0)

        assert chunks == ["a" * 10, "b" * 10]

    def test_empty_text_yields_no_chunks(self):
        assert chunk_text("", 100, 20) == []

    def test_zero_overlap(self):
        assert chunk_text("abcdef", 2, 0) == ["ab", "cd", "ef"]


class TestChunkValidation:
    @pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (1, 1)])
    def test_overlap_not_smaller_than_size_rejected(self, size, overlap):
        with pytest.raises(ValidationError):
            chunk_text("some text", size, overlap)

    @pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10001, 0), (100, -1)])
    def test_out_of_range_parameters_rejected(self, size, overlap):
        with pytest.raises(ValidationError):
            chunk_text("some text", size, overlap)

    def test_non_integer_size_rejected(self):
        with pytest.raises(ValidationError):
            chunk_text("some text", 10.5, 2)


class TestTextHelpers:
    def test_content_hash_is_sha256_hex(self):
        h = content_hash("hello")
        assert h == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

    def test_snippet_collapses_whitespace_and_truncates(self):
        snippet = make_snippet("a  b\n\nc " + "d" * 400, limit=20)
        assert snippet.startswith("a b c ")
        assert snippet.endswith("...")
        assert len(snippet) <= 23

    def test_html_to_text_keeps_blocks_and_drops_scripts(self):
        html = (
            "<html><head><title> Guide </title><script>var x = 1;</script></head>"
            "<body><h1>Intro</h1><p>First   paragraph.</p><ul><li>Item</li></ul></body></html>"
        )
        assert html_to_text(html) == "Intro\nFirst paragraph.\nItem"
        assert page_title(html) == "Guide"
