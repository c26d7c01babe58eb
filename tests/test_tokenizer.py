# File: tests/test_tokenizer.py
"""
Tests for transcript segmentation into dictionary words.
"""

import pytest

from speech_aligner.errors import SymbolLookupError, TranscriptError
from speech_aligner.tokenizer import WordSegmenter, parse_transcript
from tests import make_symbols, make_word_table


class TestWordSegmenter:

    @pytest.fixture
    def segmenter(self):
        return WordSegmenter(make_symbols())

    def test_whole_token_hit(self, segmenter):
        assert segmenter.segment(["HELLO"]) == (["HELLO"], [5])

    def test_case_folding(self, segmenter):
        assert segmenter.segment(["hello"]) == (["HELLO"], [5])

    def test_case_folding_leaves_non_ascii_letters(self):
        words = make_word_table()
        words["STRAßE"] = 50
        segmenter = WordSegmenter(make_symbols(words))
        assert segmenter.segment(["straße"]) == (["STRAßE"], [50])

    def test_case_sensitive_spelling_needs_lowercase_letters(self):
        segmenter = WordSegmenter(make_symbols(), case_sensitive=True)
        with pytest.raises(SymbolLookupError):
            segmenter.segment(["hello"])

    def test_mixed_script_token(self, segmenter):
        words, ids = segmenter.segment(["你好HELLO世界"])
        assert words == ["你好", "HELLO", "世界"]
        assert ids == [1, 5, 4]

    def test_dictionary_words_survive_surrounding_oov(self, segmenter):
        words, ids = segmenter.segment(["人你好人"])
        assert words == ["<UNK>", "你好", "<UNK>"]
        assert ids == [0, 1, 0]

    def test_latin_oov_is_spelled(self, segmenter):
        words, ids = segmenter.segment(["你好XYZ"])
        assert words == ["你好", "X", "Y", "Z"]
        assert ids == [1, 123, 124, 125]

    def test_latin_oov_without_spelling_is_one_unk(self):
        segmenter = WordSegmenter(make_symbols(), spell_oov=False)
        words, ids = segmenter.segment(["你好XYZ"])
        assert words == ["你好", "<UNK>"]
        assert ids == [1, 0]

    def test_latin_run_is_never_sub_split(self, segmenter):
        # HELLO is known, but the run HELLOX is taken as a whole
        words, _ = segmenter.segment(["HELLOX"])
        assert words == list("HELLOX")

    def test_longest_match_wins(self, segmenter):
        words, ids = segmenter.segment(["中国人民"])
        assert words == ["中国人", "<UNK>"]
        assert ids == [8, 0]

    def test_shrinks_to_shorter_match(self):
        words = make_word_table()
        del words["中国人"]
        segmenter = WordSegmenter(make_symbols(words))
        assert segmenter.segment(["中国人"]) == (["中国", "<UNK>"], [6, 0])

    def test_max_word_len(self):
        segmenter = WordSegmenter(make_symbols(), max_word_len=2)
        assert segmenter.segment(["中国人民"])[0] == ["中国", "<UNK>", "<UNK>"]

    def test_single_trailing_letter(self, segmenter):
        assert segmenter.segment(["你好x"]) == (["你好", "X"], [1, 123])

    def test_unknown_single_character(self, segmenter):
        assert segmenter.segment(["你好!"]) == (["你好", "<UNK>"], [1, 0])

    def test_concatenates_tokens_in_order(self, segmenter):
        words, ids = segmenter.segment_line("你好  hello 世界")
        assert words == ["你好", "HELLO", "世界"]
        assert len(words) == len(ids)

    def test_missing_unk_is_fatal(self):
        words = make_word_table()
        del words["<UNK>"]
        segmenter = WordSegmenter(make_symbols(words))
        with pytest.raises(SymbolLookupError):
            segmenter.segment(["人"])


class TestParseTranscript:

    def test_strips_key(self):
        assert parse_transcript("U1 HELLO 世界\n", "U1") == ["HELLO", "世界"]

    def test_exhausted_source(self):
        with pytest.raises(TranscriptError, match="exhausted"):
            parse_transcript(None, "U1")

    def test_key_mismatch(self):
        with pytest.raises(TranscriptError, match="keys differ"):
            parse_transcript("U2 HELLO", "U1")

    def test_empty_transcript(self):
        with pytest.raises(TranscriptError, match="empty"):
            parse_transcript("U1", "U1")
        with pytest.raises(TranscriptError, match="empty"):
            parse_transcript("   \n", "U1")
