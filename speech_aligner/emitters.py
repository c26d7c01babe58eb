'''
Turn a frame-level unit path into phone segments and write them out.

Supported outputs:
    custom   utt id line, `start end phone` lines in seconds, `.` terminator
    mlf      HTK master label file with 100ns ticks and one line per sub-state
    ctm      `utt 1 start duration phone` lines
    lengths  keyed (phone, frames) pairs
    phones   keyed phone sequence, optionally one entry per frame

Each writer formats a whole utterance before writing it, so records of
different utterances never interleave on a shared stream.
'''

import logging
import math
from typing import NamedTuple, Tuple

from .config import OutputFormat
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class PhoneRun(NamedTuple):
    phone: int
    start: int          # first frame
    length: int         # number of frames, > 0
    units: Tuple[int, ...] = ()


class SubStateRun(NamedTuple):
    pdf_class: int
    length: int


def split_to_phones(path, trans_model):
    """
    Group a unit path into maximal runs of frames that map to the same phone.

    Given units mapping to phones [7,7,7,3,3,7], return runs
    (7, start=0, length=3), (3, 3, 2), (7, 5, 1).
    """
    if len(path) == 0:
        return []

    runs = []
    start = 0
    current = trans_model.transition_id_to_phone(path[0])
    for i in range(1, len(path)):
        phone = trans_model.transition_id_to_phone(path[i])
        if phone != current:
            runs.append(PhoneRun(current, start, i - start, tuple(path[start:i])))
            current, start = phone, i
    runs.append(PhoneRun(current, start, len(path) - start, tuple(path[start:])))
    return runs


def split_by_pdf_class(units, trans_model):
    """Maximal runs of consecutive units with the same pdf-class, as (pdf_class, frames)."""
    sub_runs = []
    last_pdf_class, count = None, 0
    for unit in units:
        pdf_class = trans_model.transition_id_to_pdf_class(unit)
        if pdf_class != last_pdf_class and count > 0:
            sub_runs.append(SubStateRun(last_pdf_class, count))
            count = 0
        last_pdf_class = pdf_class
        count += 1
    if count > 0:
        sub_runs.append(SubStateRun(last_pdf_class, count))
    return sub_runs


def round_half_away(value):
    return math.floor(value + 0.5) if value >= 0 else -math.floor(-value + 0.5)


def frames_to_ticks(num_frames, frame_shift):
    """HTK time in 100ns units: frames * round(frame_shift in ms) * 1e4."""
    return int(num_frames * round_half_away(frame_shift * 1e3) * 10000)


class AlignmentWriter:
    """Base writer: formats one utterance into a record and appends it to `stream`."""

    def __init__(self, stream, symbols, frame_shift, trans_model=None):
        if frame_shift <= 0:
            raise ConfigurationError(f"frame shift must be positive, got {frame_shift}")
        self.stream = stream
        self.symbols = symbols
        self.frame_shift = frame_shift
        self.trans_model = trans_model
        self.num_written = 0

    def format(self, utt, runs):
        raise NotImplementedError

    def write(self, utt, runs):
        if not runs:
            raise ValueError(f"no phone runs to write for utterance {utt}")
        self.stream.write(self.format(utt, runs))
        self.stream.flush()
        self.num_written += 1

    def close(self):
        self.stream.flush()


class CustomWriter(AlignmentWriter):

    def format(self, utt, runs):
        lines = [utt]
        st = et = 0.0
        for run in runs:
            phone = self.symbols.phone_label(run.phone)
            st = et
            et += run.length * self.frame_shift
            lines.append(f"{st:.3f} {et:.3f} {phone}")
        lines.append(".")
        return "\n".join(lines) + "\n"


class MlfWriter(AlignmentWriter):
    """
    HTK MLF. Sub-state lines are `start end s<pdf_class + 2>`; the phone label
    goes on the line of the first sub-state (pdf-class 0).
    """

    header = "#!MLF!#"

    def __init__(self, stream, symbols, frame_shift, trans_model=None):
        super().__init__(stream, symbols, frame_shift, trans_model)
        if trans_model is None:
            raise ConfigurationError("MLF output needs the transition model for pdf-classes")
        self._wrote_header = False

    def format(self, utt, runs):
        lines = []
        if not self._wrote_header:
            lines.append(self.header)
        lines.append(f'"*/{utt}.lab"')
        st = et = 0
        for run in runs:
            phone = self.symbols.phone_label(run.phone)
            for sub in split_by_pdf_class(run.units, self.trans_model):
                et += frames_to_ticks(sub.length, self.frame_shift)
                line = f"{st} {et} s{sub.pdf_class + 2}"
                if sub.pdf_class == 0:
                    line += f" {phone}"
                lines.append(line)
                st = et
        lines.append(".")
        return "\n".join(lines) + "\n"

    def write(self, utt, runs):
        super().write(utt, runs)
        self._wrote_header = True


class CtmWriter(AlignmentWriter):
    """One line per phone run: `utt 1 start duration phone_id`."""

    def __init__(self, stream, symbols, frame_shift, trans_model=None):
        super().__init__(stream, symbols, frame_shift, trans_model)
        self.precision = 2 if frame_shift >= 0.01 else 3

    def format(self, utt, runs):
        lines = []
        phone_start = 0.0
        for run in runs:
            duration = self.frame_shift * run.length
            lines.append(f"{utt} 1 {phone_start:.{self.precision}f} {duration:.{self.precision}f} {run.phone}")
            phone_start += duration
        return "\n".join(lines) + "\n"


class LengthsWriter(AlignmentWriter):
    """Keyed `(phone, frames)` pairs: `utt 7 12 ; 3 5`."""

    def values(self, runs):
        return [(run.phone, run.length) for run in runs]

    def format(self, utt, runs):
        pairs = " ; ".join(f"{phone} {length}" for phone, length in self.values(runs))
        return f"{utt} {pairs}\n"


class PhonesWriter(AlignmentWriter):
    """Keyed phone ids, one per run, or one per frame with `per_frame`."""

    def __init__(self, stream, symbols, frame_shift, trans_model=None, per_frame=False):
        super().__init__(stream, symbols, frame_shift, trans_model)
        self.per_frame = per_frame

    def values(self, runs):
        phones = []
        for run in runs:
            if self.per_frame:
                phones.extend([run.phone] * run.length)
            else:
                phones.append(run.phone)
        return phones

    def format(self, utt, runs):
        return f"{utt} {' '.join(str(p) for p in self.values(runs))}\n"


WRITERS = {
    OutputFormat.CUSTOM: CustomWriter,
    OutputFormat.MLF: MlfWriter,
    OutputFormat.CTM: CtmWriter,
    OutputFormat.LENGTHS: LengthsWriter,
    OutputFormat.PHONES: PhonesWriter,
}


def make_writer(output_format, stream, symbols, frame_shift, trans_model=None, per_frame=False):
    """Create the writer for the single active output format."""
    output_format = OutputFormat(output_format)
    if output_format is OutputFormat.PHONES:
        return PhonesWriter(stream, symbols, frame_shift, trans_model, per_frame=per_frame)
    if per_frame:
        logger.warning("per-frame only applies to the phones output, ignored for %s", output_format.value)
    return WRITERS[output_format](stream, symbols, frame_shift, trans_model)
