# tests/__init__.py
"""
Test suite for Speech Aligner.

Shared factories for symbol tables, transition models and small synthetic
acoustic models used across the tests.
"""

import string

import torch

from speech_aligner.hmm import TransitionModel
from speech_aligner.symbols import SymbolContext

# Test configuration
TEST_CONFIG = {
    "sample_rate": 16000,
    "frame_shift": 0.01,
    "feature_dim": 4,
}

SIL, AH, B, K = 1, 2, 3, 7

PHONES = {0: "<eps>", SIL: "SIL", AH: "AH", B: "B", K: "K"}


def make_word_table():
    """Word table mixing Chinese words, an English word and single letters."""
    words = {"<UNK>": 0, "你好": 1, "你": 2, "好": 3, "世界": 4, "HELLO": 5, "中国": 6, "中": 7, "中国人": 8}
    for i, letter in enumerate(string.ascii_uppercase):
        words[letter] = 100 + i
    return words


def make_symbols(words=None, phones=None):
    return SymbolContext(words if words is not None else make_word_table(),
                         phones if phones is not None else PHONES)


def make_trans_model(num_pdf_classes=3, num_silence_classes=3):
    return TransitionModel.from_phone_table(PHONES, num_pdf_classes=num_pdf_classes,
                                            silence_phones=(SIL,), num_silence_classes=num_silence_classes)


def units_for(trans_model, phone, counts):
    """Unit path covering `phone` with counts[k] frames in its k-th sub-state."""
    units = trans_model.phone_units(phone)
    path = []
    for unit, count in zip(units, counts):
        path.extend([unit] * count)
    return path


class TableModel:
    """Acoustic model returning a fixed log-likelihood table, ignoring the features."""

    def __init__(self, log_likes):
        self.table = torch.as_tensor(log_likes, dtype=torch.float32)
        self.boosted = None

    def log_likelihoods(self, feats):
        return self.table[:feats.shape[0]]

    def boost_silence(self, pdfs, factor):
        self.boosted = (list(pdfs), factor)


def write_lines(path, lines):
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return str(path)
