'''
Acoustic features for alignment.

Feature streams are torch tensors shaped [frames, dims]. The MFCC and pitch
extractors are thin wrappers; `append_feats` fuses streams of slightly
different lengths into a single matrix.
'''

import logging
import math

import torch
import torchaudio

from .errors import ConfigurationError, FeatureExtractionError

logger = logging.getLogger(__name__)


def append_feats(streams, tolerance, utt=""):
    """
    Concatenate frame-synchronous feature streams along the feature axis.

    Streams are trimmed to the shortest one, as long as the longest is at most
    `tolerance` frames longer.

    Args:
        streams: Sequence of [frames, dims] tensors, in output column order.
        tolerance: Maximum allowed difference in frame counts.
        utt: Utterance id, only used in log messages.

    Returns:
        [min_frames, total_dims] tensor, or None if the lengths differ by more
        than `tolerance` or any stream is empty.
    """
    if len(streams) == 0:
        raise ValueError("append_feats needs at least one feature stream")

    lengths = [int(s.shape[0]) for s in streams]
    min_len, max_len = min(lengths), max(lengths)
    tot_dim = sum(int(s.shape[1]) for s in streams)
    for_utt = f" for utt {utt}" if utt else ""

    if max_len - min_len > tolerance or min_len == 0:
        logger.warning("Length mismatch %d vs. %d%s exceeds tolerance %d", max_len, min_len, for_utt, tolerance)
        return None
    if max_len - min_len > 0:
        logger.debug("Length mismatch %d vs. %d%s within tolerance %d", max_len, min_len, for_utt, tolerance)

    out = torch.empty((min_len, tot_dim), dtype=streams[0].dtype)
    dim_offset = 0
    for s in streams:
        this_dim = int(s.shape[1])
        out[:, dim_offset:dim_offset + this_dim] = s[:min_len]
        dim_offset += this_dim
    return out


def num_frames(num_samples, window_size, window_shift):
    # snip-edges framing, same as Kaldi and torchaudio.compliance.kaldi
    if num_samples < window_size:
        return 0
    return 1 + (num_samples - window_size) // window_shift


class MfccExtractor:
    """Kaldi-compatible MFCCs through torchaudio.compliance.kaldi."""

    def __init__(self, sample_frequency=16000, frame_shift_ms=10.0, frame_length_ms=25.0,
                 num_ceps=13, num_mel_bins=23, dither=0.0):
        self.sample_frequency = sample_frequency
        self.frame_shift_ms = frame_shift_ms
        self.frame_length_ms = frame_length_ms
        self.num_ceps = num_ceps
        self.num_mel_bins = num_mel_bins
        self.dither = dither

    def compute(self, waveform, sample_rate, vtln_warp=1.0):
        '''
        Args:
            waveform: 1-D float tensor in [-1, 1].
            sample_rate: Sampling rate of `waveform`.
            vtln_warp: VTLN warp factor.
        Returns:
            [frames, num_ceps] tensor
        '''
        try:
            # Kaldi works on 16-bit sample values
            wav = waveform.reshape(1, -1).to(torch.float32) * 32768.0
            return torchaudio.compliance.kaldi.mfcc(
                wav,
                sample_frequency=float(sample_rate),
                frame_shift=self.frame_shift_ms,
                frame_length=self.frame_length_ms,
                num_ceps=self.num_ceps,
                num_mel_bins=self.num_mel_bins,
                dither=self.dither,
                vtln_warp=vtln_warp,
                snip_edges=True,
            )
        except Exception as e:
            raise FeatureExtractionError(f"mfcc computation failed: {e}") from e


class PitchExtractor:
    """
    Frame-level pitch features: [voicing strength, log-pitch, delta log-pitch].

    Frames use the same window and shift as the MFCCs so that both streams
    can be fused.
    """

    def __init__(self, sample_frequency=16000, frame_shift_ms=10.0, frame_length_ms=25.0,
                 min_f0=50.0, max_f0=400.0):
        self.sample_frequency = sample_frequency
        self.frame_shift_ms = frame_shift_ms
        self.frame_length_ms = frame_length_ms
        self.min_f0 = min_f0
        self.max_f0 = max_f0

    def compute(self, waveform, sample_rate):
        if sample_rate != self.sample_frequency:
            raise ConfigurationError(
                f"Sample frequency mismatch: you specified {self.sample_frequency} but data has {sample_rate}")
        window_size = int(sample_rate * self.frame_length_ms / 1000)
        window_shift = int(sample_rate * self.frame_shift_ms / 1000)
        n_frames = num_frames(waveform.shape[-1], window_size, window_shift)
        if n_frames == 0:
            return torch.zeros((0, 3))

        try:
            frames = waveform.reshape(-1).to(torch.float32).unfold(0, window_size, window_shift)
            frames = frames - frames.mean(dim=1, keepdim=True)

            # autocorrelation through the power spectrum, normalised by lag 0
            spec = torch.fft.rfft(frames, n=2 * window_size)
            acf = torch.fft.irfft(spec.abs() ** 2)[:, :window_size]
            energy = acf[:, :1].clamp_min(1e-10)
            nacf = acf / energy

            min_lag = max(1, int(sample_rate / self.max_f0))
            max_lag = min(window_size - 1, int(math.ceil(sample_rate / self.min_f0)))
            strength, best = nacf[:, min_lag:max_lag + 1].max(dim=1)
            lag = (best + min_lag).to(torch.float32)

            log_pitch = torch.log(sample_rate / lag)
            log_pitch = log_pitch - log_pitch.mean()
            delta = torchaudio.functional.compute_deltas(log_pitch.reshape(1, 1, -1), win_length=5).reshape(-1)
        except Exception as e:
            raise FeatureExtractionError(f"pitch computation failed: {e}") from e

        return torch.stack([strength.clamp(-1.0, 1.0), log_pitch, delta], dim=1)


def subtract_mean(feats):
    return feats - feats.mean(dim=0, keepdim=True)


def apply_cmvn(feats, norm_vars=False):
    """Per-utterance cepstral mean (and optionally variance) normalisation."""
    if feats.shape[0] == 0:
        return feats
    feats = subtract_mean(feats)
    if norm_vars:
        std = feats.std(dim=0, unbiased=False, keepdim=True).clamp_min(1e-10)
        feats = feats / std
    return feats


def add_deltas(feats, order=2, window=2):
    """Append delta features up to `order`, like Kaldi's add-deltas."""
    if feats.shape[0] == 0:
        return feats.new_zeros((0, feats.shape[1] * (order + 1)))
    blocks = [feats]
    cur = feats.t().unsqueeze(0)
    for _ in range(order):
        cur = torchaudio.functional.compute_deltas(cur, win_length=2 * window + 1)
        blocks.append(cur.squeeze(0).t())
    return torch.cat(blocks, dim=1)
