'''
Transition model: the frame-level units the decoder emits.

Every phone has a left-to-right chain of sub-states (pdf-classes). A unit
(transition id) is one (phone, pdf-class) pair; unit ids start at 1 and each
unit owns one pdf, pdf = unit - 1.
'''

from .errors import SymbolLookupError


class TransitionModel:

    def __init__(self, topology):
        '''
        Args:
            topology: dict or list of (phone_id, num_pdf_classes), in unit order.
        '''
        items = topology.items() if isinstance(topology, dict) else topology
        self._phone = [None]
        self._pdf_class = [None]
        self._phone_units = {}
        for phone, num_classes in items:
            if num_classes < 1:
                raise ValueError(f"phone {phone} needs at least one pdf-class")
            units = []
            for pdf_class in range(num_classes):
                self._phone.append(phone)
                self._pdf_class.append(pdf_class)
                units.append(len(self._phone) - 1)
            self._phone_units[phone] = units

    @classmethod
    def from_phone_table(cls, id2phone, num_pdf_classes=3, silence_phones=(), num_silence_classes=5):
        """Build the model for every non-epsilon phone of a phone table."""
        topology = []
        for phone_id in sorted(id2phone):
            if phone_id == 0:
                continue
            n = num_silence_classes if phone_id in silence_phones else num_pdf_classes
            topology.append((phone_id, n))
        return cls(topology)

    @property
    def num_units(self):
        return len(self._phone) - 1

    @property
    def num_pdfs(self):
        return self.num_units

    @property
    def phones(self):
        return list(self._phone_units)

    def _check(self, trans_id):
        if not 0 < trans_id < len(self._phone):
            raise SymbolLookupError(f"transition id {trans_id} out of range [1, {self.num_units}]")

    def transition_id_to_phone(self, trans_id):
        self._check(trans_id)
        return self._phone[trans_id]

    def transition_id_to_pdf_class(self, trans_id):
        self._check(trans_id)
        return self._pdf_class[trans_id]

    def transition_id_to_pdf(self, trans_id):
        self._check(trans_id)
        return trans_id - 1

    def phone_units(self, phone):
        try:
            return list(self._phone_units[phone])
        except KeyError:
            raise SymbolLookupError(f"phone {phone} has no HMM in the transition model") from None

    def pdfs_for_phones(self, phones):
        """Pdfs used by `phones`. No pdf is shared between phones here."""
        pdfs = []
        for phone in phones:
            pdfs.extend(u - 1 for u in self.phone_units(phone))
        return sorted(pdfs)
