'''
Exceptions raised by the aligner.

Fatal errors abort a whole run. Per-utterance problems are not exceptions at
the batch level: they are turned into a SkipReason by the driver.
'''


class AlignerError(Exception):
    """Base class for all aligner errors."""


class ConfigurationError(AlignerError):
    """Invalid or contradictory options."""


class SymbolTableError(AlignerError):
    """Malformed word or phone symbol table."""


class SymbolLookupError(AlignerError, KeyError):
    """A symbol required at runtime is missing from a table."""

    def __str__(self):
        return Exception.__str__(self)


class TranscriptError(AlignerError):
    """Transcript source out of step with the audio source, or empty."""


class FeatureExtractionError(AlignerError):
    """Feature or pitch extraction failed for one utterance."""


class AlignmentError(AlignerError):
    """The decoder could not produce a complete path."""
