'''
Word and phone symbol tables.

Both tables are loaded once per run and then shared read-only by the
tokenizer and the output writers through a SymbolContext.
'''

import logging
from types import MappingProxyType

from .errors import SymbolLookupError, SymbolTableError

logger = logging.getLogger(__name__)

UNK_WORD = "<UNK>"


def _parse_int(value, path, line_no):
    try:
        number = int(value)
    except ValueError:
        raise SymbolTableError(f"{path}:{line_no}: '{value}' is not an integer id") from None
    if number < 0:
        raise SymbolTableError(f"{path}:{line_no}: negative id {number}")
    return number


def _iter_fields(path):
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            items = line.split()
            if not items:
                continue
            if len(items) != 2:
                raise SymbolTableError(
                    f"{path}:{line_no}: expected 2 fields, got {len(items)}: {line.rstrip()!r}")
            yield line_no, items


def read_word_symbols(path):
    """Read a `word id` table into a dict."""
    word2id = {}
    for line_no, (word, value) in _iter_fields(path):
        if word in word2id:
            raise SymbolTableError(f"{path}:{line_no}: duplicate word '{word}'")
        word2id[word] = _parse_int(value, path, line_no)
    logger.debug("Read %d words from %s", len(word2id), path)
    return word2id


def read_phone_symbols(path):
    """
    Read a phone table into an `id -> label` dict.

    Lines are `id label`; the `label id` layout of Kaldi's phones.txt is
    accepted too, detected per line by which field is numeric.
    """
    id2phone = {}
    for line_no, (first, second) in _iter_fields(path):
        if first.lstrip("-").isdigit():
            phone_id, label = _parse_int(first, path, line_no), second
        else:
            phone_id, label = _parse_int(second, path, line_no), first
        if phone_id in id2phone:
            raise SymbolTableError(f"{path}:{line_no}: duplicate phone id {phone_id}")
        id2phone[phone_id] = label
    logger.debug("Read %d phones from %s", len(id2phone), path)
    return id2phone


class SymbolContext:
    """
    Read-only lookup context for one run: `word -> id` and `id -> phone`.
    """

    def __init__(self, word2id, id2phone, unk=UNK_WORD):
        self.word2id = MappingProxyType(dict(word2id))
        self.id2phone = MappingProxyType(dict(id2phone))
        phone2id = {}
        for phone_id, label in self.id2phone.items():
            phone2id.setdefault(label, phone_id)
        self.phone2id = MappingProxyType(phone2id)
        self.unk = unk

    @classmethod
    def from_files(cls, word_symbol_table, phone_symbol_table, unk=UNK_WORD):
        return cls(read_word_symbols(word_symbol_table), read_phone_symbols(phone_symbol_table), unk=unk)

    def __contains__(self, word):
        return word in self.word2id

    def word_id(self, word):
        try:
            return self.word2id[word]
        except KeyError:
            raise SymbolLookupError(f"word '{word}' is not in the word symbol table") from None

    def phone_label(self, phone_id):
        try:
            return self.id2phone[phone_id]
        except KeyError:
            raise SymbolLookupError(f"phone id {phone_id} is not in the phone symbol table") from None

    def phone_id(self, label):
        try:
            return self.phone2id[label]
        except KeyError:
            raise SymbolLookupError(f"phone '{label}' is not in the phone symbol table") from None
