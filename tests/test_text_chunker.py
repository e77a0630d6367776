"""Tests for splitting uploaded text into call-sized parts."""

import pytest

from aiwriter.utils.text_chunker import split_into_chunks


class TestSplitIntoChunks:
    def test_short_text_is_one_part(self) -> None:
        assert split_into_chunks("Tides are caused by the moon.", 100) == [
            "Tides are caused by the moon."
        ]

    def test_empty_text_is_one_part(self) -> None:
        assert split_into_chunks("", 100) == [""]

    def test_prefers_paragraph_breaks(self) -> None:
        text = "\n\n".join(letter * 60 for letter in "abc")
        assert split_into_chunks(text, 100) == ["a" * 60, "b" * 60, "c" * 60]

    def test_sentence_break_keeps_period(self) -> None:
        text = "Tides rise. " * 20
        chunks = split_into_chunks(text, 100)

        assert all(len(c) <= 100 for c in chunks)
        assert chunks[0].endswith("rise.")
        assert not chunks[1].startswith(" ")

    def test_word_break_when_no_sentences(self) -> None:
        chunks = split_into_chunks("word " * 2400, 8000)

        assert len(chunks) == 2
        assert len(chunks[0]) == 7999
        assert chunks[0].endswith("word")
        assert chunks[1].startswith("word")

    def test_hard_cut_without_any_break(self) -> None:
        chunks = split_into_chunks("x" * 250, 100)
        assert chunks == ["x" * 100, "x" * 100, "x" * 50]

    def test_early_break_is_ignored(self) -> None:
        """A break in the first half of the window would leave a tiny part."""
        text = "ab\n\n" + "x" * 200
        assert split_into_chunks(text, 100)[0] == text[:100]

    def test_no_text_is_lost(self) -> None:
        text = "\n".join(f"Line {i} of the uploaded report." for i in range(200))
        chunks = split_into_chunks(text, 500)
        assert "".join(chunks).replace("\n", "") == text.replace("\n", "")

    def test_non_positive_size_rejected(self) -> None:
        with pytest.raises(ValueError):
            split_into_chunks("text", 0)
