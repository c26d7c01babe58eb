# File: tests/test_core.py
"""
Tests for the batch driver: pairing audio with transcripts, skip handling,
output records and the run summary.
"""

import io
import logging

import pytest
import torch

from speech_aligner import core
from speech_aligner.acoustic import DiagGaussianModel
from speech_aligner.config import AlignerOptions, OutputFormat
from speech_aligner.core import BatchSummary, SkipReason, SpeechAligner, read_float_map, read_utt2spk, read_wav_scp
from speech_aligner.emitters import CustomWriter
from speech_aligner.errors import ConfigurationError, FeatureExtractionError, TranscriptError
from speech_aligner.graph import GraphCompiler, Lexicon
from tests import AH, B, K, SIL, TEST_CONFIG, PHONES, TableModel, make_symbols, make_trans_model, write_lines

SR = TEST_CONFIG["sample_rate"]
HOP = int(SR * TEST_CONFIG["frame_shift"])


class FrameCounter:
    """MFCC stand-in: one all-zero row per 10 ms of audio."""

    def compute(self, waveform, sample_rate, vtln_warp=1.0):
        return torch.zeros(waveform.shape[-1] // HOP, TEST_CONFIG["feature_dim"])


class PitchTrack:
    """Pitch stand-in: MFCC frame count plus the next offset, three columns."""

    def __init__(self, offsets):
        self.offsets = iter(offsets)

    def compute(self, waveform, sample_rate):
        return torch.zeros(waveform.shape[-1] // HOP + next(self.offsets), 3)


class BrokenExtractor:

    def compute(self, waveform, sample_rate, vtln_warp=1.0):
        raise FeatureExtractionError("no frames")


def audio(num_frames, channels=1):
    return torch.zeros(channels, num_frames * HOP)


def k_table(num_frames, trans_model, miss=-10.0):
    """Log-likelihoods that favour K's sub-states, split 3/4/3 over 10 frames."""
    k_pdfs = [u - 1 for u in trans_model.phone_units(K)]
    log_likes = torch.full((num_frames, trans_model.num_pdfs), miss)
    for t in range(num_frames):
        log_likes[t, k_pdfs[0 if t < 3 else 1 if t < 7 else 2]] = 0.0
    return log_likes


@pytest.fixture
def trans_model():
    return make_trans_model()


def build_aligner(trans_model, log_likes=None, mfcc=None, pitch=None, **overrides):
    options = AlignerOptions(use_pitch=pitch is not None, **overrides)
    # 你好 -> B AH, HELLO -> K; 世界 has no pronunciation
    compiler = GraphCompiler(trans_model, Lexicon({1: [B, AH], 5: [K]}), silence_phone=SIL)
    model = TableModel(log_likes if log_likes is not None else k_table(10, trans_model))
    return SpeechAligner(options, make_symbols(), trans_model, compiler, model,
                         mfcc=mfcc or FrameCounter(), pitch=pitch)


class TestSpeechAligner:

    def test_single_utterance_custom_record(self, trans_model):
        aligner = build_aligner(trans_model)
        out = io.StringIO()
        summary = aligner.run([("U1", audio(10), SR)], ["U1 hello\n"], CustomWriter(out, aligner.symbols, 0.01))
        assert out.getvalue() == "U1\n0.000 0.100 K\n.\n"
        assert summary.num_utts == 1
        assert summary.num_success == 1
        assert summary.frame_count == 10
        assert summary.exit_code == 0

    def test_skips_are_counted_not_written(self, trans_model):
        aligner = build_aligner(trans_model)
        out = io.StringIO()
        utterances = [("U1", audio(10), SR), ("U2", audio(10), SR), ("U3", audio(10), SR)]
        text = ["U1 HELLO", "U2 世界", "U3 HELLO"]
        summary = aligner.run(utterances, text, CustomWriter(out, aligner.symbols, 0.01))
        assert out.getvalue() == "U1\n0.000 0.100 K\n.\nU3\n0.000 0.100 K\n.\n"
        assert summary.num_utts == 3
        assert summary.num_success == 2
        assert summary.num_err == 1
        assert summary.skipped[SkipReason.EMPTY_GRAPH] == 1

    def test_all_skipped_is_an_error_exit(self, trans_model):
        aligner = build_aligner(trans_model, min_duration=1.0)
        out = io.StringIO()
        summary = aligner.run([("U1", audio(10), SR)], ["U1 HELLO"], CustomWriter(out, aligner.symbols, 0.01))
        assert out.getvalue() == ""
        assert summary.skipped[SkipReason.TOO_SHORT] == 1
        assert summary.exit_code == 1

    def test_transcript_exhausted_before_audio(self, trans_model):
        aligner = build_aligner(trans_model)
        out = io.StringIO()
        utterances = [("U1", audio(10), SR), ("U2", audio(10), SR)]
        with pytest.raises(TranscriptError):
            aligner.run(utterances, ["U1 HELLO"], CustomWriter(out, aligner.symbols, 0.01))
        # nothing is written for the utterance without a transcript
        assert out.getvalue() == "U1\n0.000 0.100 K\n.\n"

    def test_key_mismatch_is_fatal(self, trans_model):
        aligner = build_aligner(trans_model)
        with pytest.raises(TranscriptError):
            aligner.run([("U1", audio(10), SR)], ["U9 HELLO"], CustomWriter(io.StringIO(), aligner.symbols, 0.01))

    def test_missing_channel(self, trans_model):
        aligner = build_aligner(trans_model, channel=1)
        result = aligner.align_utterance("U1", audio(10), SR, [5])
        assert result.skip_reason is SkipReason.BAD_CHANNEL
        assert not result.ok

    def test_stereo_channel_selection(self, trans_model):
        aligner = build_aligner(trans_model, channel=1)
        assert aligner.align_utterance("U1", audio(10, channels=2), SR, [5]).ok

    def test_missing_warp(self, trans_model):
        aligner = build_aligner(trans_model)
        aligner.vtln_map = {"spk2": 0.9}
        aligner.utt2spk = {"U1": "spk1"}
        assert aligner.align_utterance("U1", audio(10), SR, [5]).skip_reason is SkipReason.NO_WARP
        aligner.utt2spk = {"U1": "spk2"}
        assert aligner.align_utterance("U1", audio(10), SR, [5]).ok

    def test_too_few_frames_for_graph(self, trans_model):
        aligner = build_aligner(trans_model)
        result = aligner.align_utterance("U1", audio(2), SR, [5])
        assert result.skip_reason is SkipReason.ALIGNMENT_FAILURE

    def test_zero_length_features(self, trans_model):
        aligner = build_aligner(trans_model)
        result = aligner.align_utterance("U1", torch.zeros(1, HOP - 1), SR, [5])
        assert result.skip_reason is SkipReason.ZERO_LENGTH

    def test_boost_silence(self, trans_model):
        aligner = build_aligner(trans_model, boost_sil=2.0)
        assert aligner.acoustic_model.boosted == ([0, 1, 2], 2.0)

    def test_progress_and_summary_logging(self, trans_model, caplog):
        aligner = build_aligner(trans_model)
        utterances = [(f"U{i}", audio(10), SR) for i in range(10)]
        text = [f"U{i} HELLO" for i in range(10)]
        with caplog.at_level(logging.INFO):
            aligner.run(utterances, text, CustomWriter(io.StringIO(), aligner.symbols, 0.01))
        assert "Processed 10 utterances" in caplog.text
        assert "Done 10 out of 10 utterances." in caplog.text

    def test_invalid_options(self, trans_model):
        with pytest.raises(ConfigurationError):
            build_aligner(trans_model, norm_vars=True, norm_means=False)


class TestFeaturePipeline:

    def test_pitch_is_appended(self, trans_model):
        aligner = build_aligner(trans_model, pitch=PitchTrack([0]))
        features, reason = aligner.compute_features("U1", audio(10), SR)
        assert reason is None
        # (4 mfcc + 3 pitch) with deltas and delta-deltas
        assert features.shape == (10, 21)

    def test_fusion_failure_skips_only_that_utterance(self, trans_model):
        aligner = build_aligner(trans_model, pitch=PitchTrack([3, 0]))
        out = io.StringIO()
        utterances = [("U1", audio(10), SR), ("U2", audio(10), SR)]
        summary = aligner.run(utterances, ["U1 HELLO", "U2 HELLO"], CustomWriter(out, aligner.symbols, 0.01))
        assert out.getvalue() == "U2\n0.000 0.100 K\n.\n"
        assert summary.skipped[SkipReason.FUSION_FAILURE] == 1
        assert summary.num_success == 1

    def test_mismatch_within_tolerance_keeps_shortest(self, trans_model):
        aligner = build_aligner(trans_model, pitch=PitchTrack([-2]), length_tolerance=2)
        out = io.StringIO()
        summary = aligner.run([("U1", audio(10), SR)], ["U1 HELLO"], CustomWriter(out, aligner.symbols, 0.01))
        assert out.getvalue() == "U1\n0.000 0.080 K\n.\n"
        assert summary.frame_count == 8

    def test_mfcc_failure(self, trans_model):
        aligner = build_aligner(trans_model, mfcc=BrokenExtractor())
        result = aligner.align_utterance("U1", audio(10), SR, [5])
        assert result.skip_reason is SkipReason.FEATURE_FAILURE

    def test_pitch_failure(self, trans_model):
        aligner = build_aligner(trans_model, pitch=BrokenExtractor())
        result = aligner.align_utterance("U1", audio(10), SR, [5])
        assert result.skip_reason is SkipReason.PITCH_FAILURE


class TestProcessFiles:

    def test_writes_selected_format(self, trans_model, tmp_path, monkeypatch):
        monkeypatch.setattr(core, "load_audio", lambda path: (audio(10), SR))
        wav_scp = write_lines(tmp_path / "wav.scp", ["U1 /data/u1.wav", "U2 /data/u2.wav"])
        text = write_lines(tmp_path / "text", ["U1 HELLO", "U2 hello"])
        out_path = tmp_path / "out.lengths"

        aligner = build_aligner(trans_model, output_format=OutputFormat.LENGTHS)
        summary = aligner.process_files(wav_scp, text, str(out_path))
        assert summary.num_success == 2
        assert out_path.read_text(encoding="utf-8") == f"U1 {K} 10\nU2 {K} 10\n"

    def test_from_options(self, tmp_path):
        words = write_lines(tmp_path / "words.txt", ["<UNK> 0", "HELLO 5"])
        phones = write_lines(tmp_path / "phones.txt", [f"{label} {i}" for i, label in PHONES.items()])
        lexicon = write_lines(tmp_path / "lexicon.txt", ["HELLO K"])
        DiagGaussianModel(torch.zeros(12, 39), torch.ones(12, 39)).save(tmp_path / "final.pt")
        options = AlignerOptions(word_symbol_table=words, phone_symbol_table=phones, lexicon=lexicon,
                                 model=str(tmp_path / "final.pt"), num_silence_classes=3)
        aligner = SpeechAligner.from_options(options)
        assert aligner.trans_model.num_pdfs == 12
        assert aligner.symbols.phone_label(K) == "K"

    def test_model_must_match_phone_table(self, tmp_path):
        words = write_lines(tmp_path / "words.txt", ["<UNK> 0", "HELLO 5"])
        phones = write_lines(tmp_path / "phones.txt", [f"{i} {label}" for i, label in PHONES.items()])
        lexicon = write_lines(tmp_path / "lexicon.txt", ["HELLO K"])
        DiagGaussianModel(torch.zeros(10, 39), torch.ones(10, 39)).save(tmp_path / "final.pt")
        options = AlignerOptions(word_symbol_table=words, phone_symbol_table=phones, lexicon=lexicon,
                                 model=str(tmp_path / "final.pt"), num_silence_classes=3)
        with pytest.raises(ConfigurationError, match="pdfs"):
            SpeechAligner.from_options(options)

    def test_missing_required_files(self):
        with pytest.raises(ConfigurationError, match="word_symbol_table"):
            SpeechAligner.from_options(AlignerOptions())


class TestInputLists:

    def test_read_wav_scp(self, tmp_path):
        path = write_lines(tmp_path / "wav.scp", ["U1 a.wav", "", "U2  dir/b c.wav"])
        assert list(read_wav_scp(path)) == [("U1", "a.wav"), ("U2", "dir/b c.wav")]

    def test_tab_separated_wav_scp(self, tmp_path):
        path = write_lines(tmp_path / "wav.scp", ["U1\t/data/u1.wav", "U2 \t /data/u2.wav"])
        assert list(read_wav_scp(path)) == [("U1", "/data/u1.wav"), ("U2", "/data/u2.wav")]

    def test_wav_scp_without_path(self, tmp_path):
        path = write_lines(tmp_path / "wav.scp", ["U1"])
        with pytest.raises(ConfigurationError, match="U1"):
            list(read_wav_scp(path))

    def test_read_utt2spk(self, tmp_path):
        path = write_lines(tmp_path / "utt2spk", ["U1 spk1", "", "U2\tspk2"])
        assert read_utt2spk(path) == {"U1": "spk1", "U2": "spk2"}

    def test_malformed_utt2spk(self, tmp_path):
        path = write_lines(tmp_path / "utt2spk", ["U1 spk1", "U2"])
        with pytest.raises(ConfigurationError, match=":2:"):
            read_utt2spk(path)

    def test_piped_entries_are_rejected(self, tmp_path):
        path = write_lines(tmp_path / "wav.scp", ["U1 sox a.wav -t wav - |"])
        with pytest.raises(ConfigurationError):
            list(read_wav_scp(path))

    def test_read_float_map(self, tmp_path):
        path = write_lines(tmp_path / "vtln", ["spk1 0.95", "spk2 1.05"])
        assert read_float_map(path) == {"spk1": 0.95, "spk2": 1.05}

    def test_batch_summary_exit_code(self):
        assert BatchSummary().exit_code == 1
        assert BatchSummary(num_utts=3, num_success=1).exit_code == 0
