'''
Speech aligner: batch forced alignment of utterances against known transcripts.

Per utterance: transcript line -> word ids -> decoding graph; audio -> MFCC
(+ pitch) -> fused, normalised features -> Viterbi unit path -> phone runs ->
one output record.

Inputs: a wav.scp (`utt path` per line) and a transcript file (`utt words...`)
in the same order.
Outputs: one of custom / MLF / CTM / lengths / phones, see emitters.py.
'''

import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import torchaudio

from .acoustic import DiagGaussianModel
from .emitters import make_writer, split_to_phones
from .errors import AlignmentError, ConfigurationError, FeatureExtractionError
from .features import MfccExtractor, PitchExtractor, add_deltas, append_feats, apply_cmvn, subtract_mean
from .forced_alignment import ViterbiAligner
from .graph import GraphCompiler
from .hmm import TransitionModel
from .symbols import SymbolContext
from .tokenizer import WordSegmenter, parse_transcript

logger = logging.getLogger(__name__)


class SkipReason(Enum):
    TOO_SHORT = "audio shorter than min-duration"
    BAD_CHANNEL = "requested channel not present"
    NO_WARP = "no vtln-map entry"
    FEATURE_FAILURE = "feature extraction failed"
    PITCH_FAILURE = "pitch extraction failed"
    FUSION_FAILURE = "mfcc and pitch lengths differ beyond tolerance"
    EMPTY_GRAPH = "empty decoding graph"
    ZERO_LENGTH = "zero-length features"
    ALIGNMENT_FAILURE = "alignment failed"


@dataclass
class UtteranceResult:
    utt: str
    path: List[int] = field(default_factory=list)
    runs: list = field(default_factory=list)
    score: float = 0.0
    skip_reason: Optional[SkipReason] = None

    @property
    def ok(self):
        return self.skip_reason is None


@dataclass
class BatchSummary:
    num_utts: int = 0
    num_success: int = 0
    skipped: Counter = field(default_factory=Counter)
    tot_like: float = 0.0
    frame_count: int = 0

    @property
    def num_err(self):
        return sum(self.skipped.values())

    @property
    def exit_code(self):
        return 0 if self.num_success != 0 else 1


def read_wav_scp(path):
    """Yield (utt, wav_path) from a `utt path` list."""
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            parts = line.split(maxsplit=1)
            if len(parts) != 2:
                raise ConfigurationError(f"{path}:{line_no}: no audio path for utterance '{parts[0]}'")
            utt, wav_path = parts
            if wav_path.endswith("|"):
                raise ConfigurationError(f"{path}:{line_no}: piped wav.scp entries are not supported")
            yield utt, wav_path


def load_audio(audio_path):
    """Load an audio file as a [channels, samples] tensor and its sample rate."""
    wav, sr = torchaudio.load(audio_path, normalize=True)
    return wav, sr


def iter_wav_scp(path):
    for utt, wav_path in read_wav_scp(path):
        wav, sr = load_audio(wav_path)
        yield utt, wav, sr


def read_float_map(path):
    table = {}
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            items = line.split()
            if not items:
                continue
            if len(items) != 2:
                raise ConfigurationError(f"{path}:{line_no}: expected `key value`, got {line.rstrip()!r}")
            table[items[0]] = float(items[1])
    return table


def read_utt2spk(path):
    table = {}
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            items = line.split()
            if not items:
                continue
            if len(items) != 2:
                raise ConfigurationError(f"{path}:{line_no}: expected `utt speaker`, got {line.rstrip()!r}")
            table[items[0]] = items[1]
    return table


class SpeechAligner:
    """
    Forced aligner for a batch of utterances.

    All collaborators are passed in ready to use; `from_options` builds them
    from files.
    """

    def __init__(self, options, symbols, trans_model, compiler, acoustic_model, decoder=None,
                 mfcc=None, pitch=None, vtln_map=None, utt2spk=None):
        '''
        Args:
            options: AlignerOptions.
            symbols: SymbolContext with the word and phone tables.
            trans_model: TransitionModel, unit -> phone / pdf-class.
            compiler: GraphCompiler for word-id sequences.
            acoustic_model: Object with `log_likelihoods(feats) -> [T, pdfs]`.
            decoder: ViterbiAligner; built from the options if None.
            mfcc: MfccExtractor; built from the options if None.
            pitch: PitchExtractor; built from the options if None and pitch is enabled.
            vtln_map: dict utterance-or-speaker id -> warp factor.
            utt2spk: dict utterance id -> speaker id, used to look up `vtln_map`.
        '''
        self.options = options.validate()
        self.symbols = symbols
        self.trans_model = trans_model
        self.compiler = compiler
        self.acoustic_model = acoustic_model
        self.decoder = decoder or ViterbiAligner(
            acoustic_scale=options.acoustic_scale, beam=options.beam, retry_beam=options.retry_beam)

        frame_shift_ms = options.frame_shift * 1000
        frame_length_ms = options.frame_length * 1000
        self.mfcc = mfcc or MfccExtractor(
            sample_frequency=options.sample_frequency, frame_shift_ms=frame_shift_ms,
            frame_length_ms=frame_length_ms, num_ceps=options.num_ceps)
        if options.use_pitch:
            self.pitch = pitch or PitchExtractor(
                sample_frequency=options.sample_frequency, frame_shift_ms=frame_shift_ms,
                frame_length_ms=frame_length_ms)
        else:
            self.pitch = None

        self.vtln_map = vtln_map
        self.utt2spk = utt2spk
        self.segmenter = WordSegmenter(
            symbols, case_sensitive=options.text_case_sensitive, spell_oov=options.spell_en_oov)

        if options.boost_sil != 1.0:
            pdfs = trans_model.pdfs_for_phones(options.silence_phones)
            self.acoustic_model.boost_silence(pdfs, options.boost_sil)

    @classmethod
    def from_options(cls, options):
        """Load symbol tables, lexicon, model and warps named in `options`."""
        options.validate()
        required = {"word_symbol_table": options.word_symbol_table,
                    "phone_symbol_table": options.phone_symbol_table,
                    "lexicon": options.lexicon_path,
                    "model": options.model}
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError("missing required option(s): " + ", ".join(missing))

        symbols = SymbolContext.from_files(options.word_symbol_table, options.phone_symbol_table)
        trans_model = TransitionModel.from_phone_table(
            symbols.id2phone, num_pdf_classes=options.num_pdf_classes,
            silence_phones=options.silence_phones, num_silence_classes=options.num_silence_classes)
        silence_phone = options.silence_phones[0] if options.silence_phones else None
        compiler = GraphCompiler.from_lexicon_file(
            options.lexicon_path, symbols, trans_model, silence_phone=silence_phone, opt_sil=options.opt_sil)
        acoustic_model = DiagGaussianModel.load(options.model)
        if acoustic_model.num_pdfs != trans_model.num_pdfs:
            raise ConfigurationError(
                f"model has {acoustic_model.num_pdfs} pdfs but the phone table needs {trans_model.num_pdfs}")

        vtln_map = read_float_map(options.vtln_map) if options.vtln_map else None
        utt2spk = read_utt2spk(options.utt2spk) if options.utt2spk else None
        return cls(options, symbols, trans_model, compiler, acoustic_model, vtln_map=vtln_map, utt2spk=utt2spk)

    def _select_channel(self, utt, waveform):
        """Return the 1-D signal to process, or None when the channel is missing."""
        if waveform.dim() == 1:
            waveform = waveform.unsqueeze(0)
        num_chan = waveform.shape[0]
        channel = self.options.channel
        if channel == -1:
            if num_chan != 1:
                logger.warning("Channel not specified but you have data with %d channels; defaulting to zero", num_chan)
            return waveform[0]
        if channel >= num_chan:
            logger.warning("File with id %s has %d channels but you specified channel %d, producing no output.",
                           utt, num_chan, channel)
            return None
        return waveform[channel]

    def _warp_factor(self, utt):
        if self.vtln_map is None:
            return self.options.vtln_warp
        key = self.utt2spk.get(utt, utt) if self.utt2spk else utt
        if key not in self.vtln_map:
            logger.warning("No vtln-map entry for utterance-id (or speaker-id) %s", utt)
            return None
        return self.vtln_map[key]

    def compute_features(self, utt, waveform, sample_rate):
        """
        Features for one utterance.

        Returns:
            (features tensor, None) on success, (None, SkipReason) otherwise.
        """
        duration = waveform.shape[-1] / sample_rate
        if duration < self.options.min_duration:
            logger.warning("File: %s is too short (%.3f sec): producing no output.", utt, duration)
            return None, SkipReason.TOO_SHORT

        signal = self._select_channel(utt, waveform)
        if signal is None:
            return None, SkipReason.BAD_CHANNEL

        warp = self._warp_factor(utt)
        if warp is None:
            return None, SkipReason.NO_WARP

        try:
            mfcc_feats = self.mfcc.compute(signal, sample_rate, warp)
        except FeatureExtractionError as e:
            logger.warning("Failed to compute features for utterance %s: %s", utt, e)
            return None, SkipReason.FEATURE_FAILURE
        if self.options.subtract_mean and mfcc_feats.shape[0] > 0:
            mfcc_feats = subtract_mean(mfcc_feats)

        if self.pitch is not None:
            try:
                pitch_feats = self.pitch.compute(signal, sample_rate)
            except FeatureExtractionError as e:
                logger.warning("Failed to compute pitch for utterance %s: %s", utt, e)
                return None, SkipReason.PITCH_FAILURE
            base_feats = append_feats([mfcc_feats, pitch_feats], self.options.length_tolerance, utt)
            if base_feats is None:
                logger.warning("Failed to combine mfcc and pitch for utterance %s", utt)
                return None, SkipReason.FUSION_FAILURE
        else:
            base_feats = mfcc_feats

        if self.options.norm_means:
            base_feats = apply_cmvn(base_feats, self.options.norm_vars)
        return add_deltas(base_feats, order=self.options.delta_order), None

    def align_utterance(self, utt, waveform, sample_rate, word_ids):
        """
        Align one utterance against its word-id sequence.

        Returns:
            UtteranceResult, with `skip_reason` set when the utterance produced no alignment.
        """
        features, reason = self.compute_features(utt, waveform, sample_rate)
        if reason is not None:
            return UtteranceResult(utt, skip_reason=reason)

        graph = self.compiler.compile(word_ids)
        if graph.is_empty():
            logger.warning("Empty decoding graph for utterance %s", utt)
            return UtteranceResult(utt, skip_reason=SkipReason.EMPTY_GRAPH)

        if features.shape[0] == 0:
            logger.warning("Zero-length utterance: %s", utt)
            return UtteranceResult(utt, skip_reason=SkipReason.ZERO_LENGTH)

        log_likes = self.acoustic_model.log_likelihoods(features)
        try:
            path, score = self.decoder.align(log_likes, graph, self.trans_model, utt)
        except AlignmentError as e:
            logger.warning("Alignment failed for utterance %s: %s", utt, e)
            return UtteranceResult(utt, skip_reason=SkipReason.ALIGNMENT_FAILURE)

        runs = split_to_phones(path, self.trans_model)
        return UtteranceResult(utt, path=path, runs=runs, score=score)

    def run(self, utterances, transcript_lines, writer):
        """
        Align a stream of utterances, writing one record per success.

        Args:
            utterances: Iterable of (utt, waveform, sample_rate), in transcript order.
            transcript_lines: Iterable of `utt word...` lines, one per utterance.
            writer: AlignmentWriter for the active output format.
        Returns:
            BatchSummary
        """
        summary = BatchSummary()
        lines = iter(transcript_lines)

        for utt, waveform, sample_rate in utterances:
            summary.num_utts += 1
            logger.debug("Aligning %s", utt)

            # transcript problems are fatal and raise before anything is written
            tokens = parse_transcript(next(lines, None), utt)
            words, word_ids = self.segmenter.segment(tokens)
            logger.debug("%s: %s", utt, " ".join(words))

            result = self.align_utterance(utt, waveform, sample_rate, word_ids)
            if result.ok and result.path:
                writer.write(utt, result.runs)
                summary.num_success += 1
                summary.tot_like += result.score
                summary.frame_count += len(result.path)
            else:
                summary.skipped[result.skip_reason] += 1

            if summary.num_utts % 10 == 0:
                logger.info("Processed %d utterances", summary.num_utts)

        writer.close()
        for reason, count in summary.skipped.items():
            logger.info("Skipped %d utterance(s): %s", count, reason.value)
        if summary.frame_count > 0:
            logger.info("Overall log-likelihood per frame is %.4f over %d frames.",
                        summary.tot_like / summary.frame_count, summary.frame_count)
        logger.info("Done %d out of %d utterances.", summary.num_success, summary.num_utts)
        return summary

    def process_files(self, wav_scp, text_path, output_path):
        """Align every entry of `wav_scp` against `text_path` and write to `output_path` ('-' for stdout)."""
        out = sys.stdout if output_path == "-" else open(output_path, "w", encoding="utf-8")
        try:
            writer = make_writer(self.options.output_format, out, self.symbols, self.options.frame_shift,
                                 trans_model=self.trans_model, per_frame=self.options.per_frame)
            with open(text_path, "r", encoding="utf-8") as text:
                return self.run(iter_wav_scp(wav_scp), text, writer)
        finally:
            if out is not sys.stdout:
                out.close()
