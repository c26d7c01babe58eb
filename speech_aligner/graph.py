'''
Pronunciation lexicon and decoding-graph compiler.

A compiled graph is a left-to-right chain of phone HMMs for the word sequence,
with optional silence between words. The decoder only sees unit ids,
predecessor lists and the sets of initial/final states.
'''

import logging

from .errors import SymbolTableError

logger = logging.getLogger(__name__)


class Lexicon:
    """word id -> pronunciation (list of phone ids). Only the first pronunciation is kept."""

    def __init__(self, prons=None):
        self._prons = dict(prons or {})

    @classmethod
    def from_file(cls, path, symbols):
        '''
        Read a `word phone1 phone2 ...` lexicon.

        Args:
            path: Lexicon file.
            symbols: SymbolContext used to map words and phone labels to ids.
        '''
        prons = {}
        skipped = 0
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                items = line.split()
                if not items:
                    continue
                if len(items) < 2:
                    raise SymbolTableError(f"{path}:{line_no}: word '{items[0]}' has no pronunciation")
                word = items[0]
                if word not in symbols:
                    skipped += 1
                    continue
                word_id = symbols.word_id(word)
                if word_id in prons:
                    continue
                prons[word_id] = [symbols.phone_id(p) for p in items[1:]]
        if skipped:
            logger.debug("Skipped %d lexicon entries not in the word table", skipped)
        return cls(prons)

    def __len__(self):
        return len(self._prons)

    def release(self):
        """Hand the entries over to a new owner; the lexicon is empty afterwards."""
        prons, self._prons = self._prons, {}
        return prons


class DecodingGraph:
    """
    Linear decoding graph.

    units[s] is the unit emitted in state s, preds[s] the states (other than
    s itself) that can move into s.
    """

    def __init__(self, units=None, preds=None, initial=None, final=None, optional=None):
        self.units = list(units or [])
        self.preds = [list(p) for p in (preds or [])]
        self.initial = sorted(initial or [])
        self.final = sorted(final or [])
        self.optional = list(optional or [False] * len(self.units))

    def __len__(self):
        return len(self.units)

    def is_empty(self):
        return len(self.units) == 0 or not self.initial or not self.final

    def num_mandatory_states(self):
        return sum(1 for opt in self.optional if not opt)


class GraphCompiler:

    def __init__(self, trans_model, lexicon, silence_phone=None, opt_sil=True):
        '''
        Args:
            trans_model: TransitionModel with an HMM for every lexicon phone.
            lexicon: Lexicon, consumed by the compiler.
            silence_phone: Phone id used for optional silence.
            opt_sil: Insert optional silence at the edges and between words.
        '''
        self.trans_model = trans_model
        self._prons = lexicon.release()
        self.silence_phone = silence_phone
        self.opt_sil = opt_sil and silence_phone is not None

    @classmethod
    def from_lexicon_file(cls, path, symbols, trans_model, silence_phone=None, opt_sil=True):
        return cls(trans_model, Lexicon.from_file(path, symbols), silence_phone=silence_phone, opt_sil=opt_sil)

    def _phone_sequence(self, word_ids):
        """[(phone, optional)] for the whole utterance, or None when a word has no pronunciation."""
        seq = []
        if self.opt_sil:
            seq.append((self.silence_phone, True))
        for word_id in word_ids:
            pron = self._prons.get(word_id)
            if not pron:
                logger.warning("No pronunciation for word id %d", word_id)
                return None
            seq.extend((phone, False) for phone in pron)
            if self.opt_sil:
                seq.append((self.silence_phone, True))
        return seq

    def compile(self, word_ids):
        """Compile a word-id sequence; an empty graph signals failure."""
        if len(word_ids) == 0:
            return DecodingGraph()
        phones = self._phone_sequence(word_ids)
        if phones is None:
            return DecodingGraph()

        units, preds, optional = [], [], []
        # last states of the segments a new segment can follow
        entry_from = []
        may_start = True
        initial = []
        for phone, is_optional in phones:
            seg = self.trans_model.phone_units(phone)
            first = len(units)
            for k, unit in enumerate(seg):
                units.append(unit)
                optional.append(is_optional)
                preds.append(list(entry_from) if k == 0 else [first + k - 1])
            if may_start:
                initial.append(first)
            last = len(units) - 1
            if is_optional:
                entry_from = entry_from + [last]
            else:
                entry_from = [last]
                may_start = False

        return DecodingGraph(units, preds, initial, entry_from, optional)
