'''
Aligner options and output-format selection.
'''

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class OutputFormat(Enum):
    CUSTOM = "custom"
    MLF = "mlf"
    CTM = "ctm"
    LENGTHS = "lengths"
    PHONES = "phones"


def resolve_output_format(custom=False, mlf=False, ctm=False, write_lengths=False):
    """
    Map the legacy per-format switches onto a single OutputFormat.

    At most one switch may be on; none selects the plain phone sequence.
    """
    selected = [fmt for fmt, on in ((OutputFormat.CUSTOM, custom), (OutputFormat.MLF, mlf),
                                    (OutputFormat.CTM, ctm), (OutputFormat.LENGTHS, write_lengths)) if on]
    if len(selected) > 1:
        raise ConfigurationError(
            "only one output format can be selected, got: " + ", ".join(f.value for f in selected))
    return selected[0] if selected else OutputFormat.PHONES


@dataclass
class AlignerOptions:
    # features
    sample_frequency: int = 16000
    frame_shift: float = 0.01           # seconds
    frame_length: float = 0.025         # seconds
    num_ceps: int = 13
    subtract_mean: bool = False
    vtln_warp: float = 1.0
    vtln_map: Optional[str] = None
    utt2spk: Optional[str] = None
    channel: int = -1
    min_duration: float = 0.0
    length_tolerance: int = 0
    use_pitch: bool = True
    norm_vars: bool = False
    norm_means: bool = True
    delta_order: int = 2

    # graph
    word_symbol_table: Optional[str] = None
    phone_symbol_table: Optional[str] = None
    lexicon: Optional[str] = None
    lexicon_no_opt_sil: Optional[str] = None
    opt_sil: bool = True
    model: Optional[str] = None
    num_pdf_classes: int = 3
    num_silence_classes: int = 5
    silence_phones: Tuple[int, ...] = field(default_factory=lambda: (1,))

    # alignment
    acoustic_scale: float = 0.1
    beam: float = 200.0
    retry_beam: float = 0.0
    boost_sil: float = 1.0

    # text
    text_case_sensitive: bool = False
    spell_en_oov: bool = True

    # output
    output_format: OutputFormat = OutputFormat.CUSTOM
    per_frame: bool = False

    def __post_init__(self):
        self.output_format = OutputFormat(self.output_format)
        if isinstance(self.silence_phones, str):
            self.silence_phones = tuple(int(p) for p in self.silence_phones.replace(",", ":").split(":") if p)
        self.silence_phones = tuple(self.silence_phones)

    @property
    def lexicon_path(self):
        return self.lexicon if self.opt_sil else (self.lexicon_no_opt_sil or self.lexicon)

    def validate(self):
        if self.norm_vars and not self.norm_means:
            raise ConfigurationError("You cannot normalize the variance but not the mean.")
        if self.utt2spk and not self.vtln_map:
            raise ConfigurationError("the utt2spk option is only needed if the vtln-map option is used.")
        if self.length_tolerance < 0:
            raise ConfigurationError(f"length tolerance must be non-negative, got {self.length_tolerance}")
        if self.frame_shift <= 0:
            raise ConfigurationError(f"frame shift must be positive, got {self.frame_shift}")
        if self.min_duration < 0:
            raise ConfigurationError(f"min duration must be non-negative, got {self.min_duration}")
        if self.channel < -1:
            raise ConfigurationError(f"channel must be -1, 0 or a channel index, got {self.channel}")
        return self

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]


def _parse_bool(value):
    lowered = value.lower()
    if lowered in ("true", "t", "1", "yes"):
        return True
    if lowered in ("false", "f", "0", "no"):
        return False
    raise ConfigurationError(f"invalid boolean value '{value}'")


def read_config_file(path):
    """
    Read a Kaldi style config file: one `--name=value` per line, `#` comments.

    A bare `--name` means true. Dashes in names become underscores.
    Returns a dict of raw string values (booleans already converted).
    """
    options = {}
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            if not line.startswith("--"):
                raise ConfigurationError(f"{path}:{line_no}: expected --name=value, got '{line}'")
            name, sep, value = line[2:].partition("=")
            name = name.strip().replace("-", "_")
            if not sep:
                options[name] = True
                continue
            value = value.strip()
            if value.lower() in ("true", "false"):
                options[name] = _parse_bool(value)
            else:
                options[name] = value
    logger.debug("Read %d options from %s", len(options), path)
    return options
