"""
Speech Aligner - forced alignment of utterances against known transcripts.

Produces phone-level segmentations in custom text, HTK MLF, CTM, or keyed
phone/length archives.
"""

__version__ = "0.1.0"

from .config import AlignerOptions, OutputFormat
from .core import SkipReason, SpeechAligner
from .emitters import make_writer, split_to_phones
from .features import append_feats
from .tokenizer import WordSegmenter

__all__ = [
    "AlignerOptions",
    "OutputFormat",
    "SkipReason",
    "SpeechAligner",
    "WordSegmenter",
    "append_feats",
    "make_writer",
    "split_to_phones",
    "__version__"
]
