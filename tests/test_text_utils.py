"""Tests for tokenization, keyword extraction and FNV hashing."""

from cortex.rag.text_utils import extract_keywords, fnv1a_64, tokenize


class TestTokenize:
    def test_lowercases_and_drops_punctuation(self):
        assert tokenize("Hello, World! 42x") == ["hello", "world", "42x"]

    def test_empty_text_has_no_tokens(self):
        assert tokenize("  ... !!") == []


class TestExtractKeywords:
    def test_most_frequent_first(self):
        assert extract_keywords("b a b c a b", limit=2) == ["b", "a"]

    def test_ties_keep_first_occurrence_order(self):
        assert extract_keywords("zeta alpha") == ["zeta", "alpha"]


class TestFnv1a64:
    def test_offset_basis_for_empty_input(self):
        assert fnv1a_64("") == 0xCBF29CE484222325

    def test_known_vector(self):
        assert fnv1a_64("a") == 0xAF63DC4C8601EC8C

    def test_result_fits_64_bits(self):
        assert 0 <= fnv1a_64("some longer text with unicode é") < 2**64
