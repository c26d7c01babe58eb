'''
Transcript tokenizer.

Maps a transcript line, possibly mixing a character-based script (e.g. Chinese)
with Latin words, onto dictionary words. Tokens that are not in the dictionary
as a whole are segmented by forward maximum matching (FMM); Latin runs that are
still unknown are spelled letter by letter, or replaced with the <UNK> word.
'''

import logging
import re
import string

from .errors import TranscriptError

logger = logging.getLogger(__name__)

# ASCII only: a CJK character must never be taken for part of a Latin word
LATIN_WORD = re.compile(r"^\w+$", re.ASCII)

# only ASCII letters are folded, so a token keeps its length
ASCII_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)


class WordSegmenter:

    def __init__(self, symbols, case_sensitive=False, spell_oov=True, max_word_len=20):
        '''
        Args:
            symbols: SymbolContext holding the word table. The <UNK> word and every
                letter used for spelling must be present in it.
            case_sensitive: If False, ASCII letters of raw tokens are upper-cased before lookup.
            spell_oov: If True, unknown Latin words are spelled with one entry per
                letter, else they become a single <UNK>.
            max_word_len: Longest window (in characters) tried by FMM.
        '''
        self.symbols = symbols
        self.case_sensitive = case_sensitive
        self.spell_oov = spell_oov
        self.max_word_len = max_word_len

    def _emit(self, word, words, word_ids):
        words.append(word)
        word_ids.append(self.symbols.word_id(word))

    def _segment_fmm(self, token, words, word_ids):
        index, length = 0, len(token)
        while index < length:
            word_len = min(self.max_word_len, length - index)
            while word_len >= 1:
                cur = token[index:index + word_len]
                if word_len > 1 and LATIN_WORD.match(cur):
                    # Latin runs are atomic: known word, spelled, or one <UNK>
                    if cur in self.symbols:
                        self._emit(cur, words, word_ids)
                    elif self.spell_oov:
                        for letter in cur:
                            self._emit(letter, words, word_ids)
                    else:
                        self._emit(self.symbols.unk, words, word_ids)
                    break
                elif cur in self.symbols:
                    self._emit(cur, words, word_ids)
                    break
                elif word_len == 1:
                    logger.debug("Out of vocabulary character '%s'", cur)
                    self._emit(self.symbols.unk, words, word_ids)
                    break
                word_len -= 1
            index += word_len

    def segment(self, tokens):
        """
        Segment whitespace-delimited tokens into dictionary words.

        Args:
            tokens: Iterable of raw tokens (transcript key already removed).

        Returns:
            (words, word_ids): parallel lists covering every input character in order.
        """
        words, word_ids = [], []
        for token in tokens:
            if not self.case_sensitive:
                token = token.translate(ASCII_UPPER)
            if token in self.symbols:
                self._emit(token, words, word_ids)
            else:
                self._segment_fmm(token, words, word_ids)
        return words, word_ids

    def segment_line(self, line):
        return self.segment(line.split())


def parse_transcript(line, expected_key):
    """
    Split a `key word1 word2 ...` transcript line and check it belongs to `expected_key`.

    Returns the list of raw tokens after the key.
    """
    if line is None:
        raise TranscriptError(f"transcript source exhausted before utterance '{expected_key}'")
    items = line.split()
    if not items:
        raise TranscriptError(f"empty transcript line for utterance '{expected_key}'")
    if items[0] != expected_key:
        raise TranscriptError(
            f"wav and text keys differ: expected '{expected_key}', got '{items[0]}'")
    if len(items) < 2:
        raise TranscriptError(f"transcript is empty for utterance '{expected_key}'")
    return items[1:]
