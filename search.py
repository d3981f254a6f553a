# Candidate search for WSPR signals
import logging
from typing import List, Tuple

import numpy as np

from utils import (
    RealSamples,
    SAMPLE_RATE_IN_HZ,
    SNR_THRESHOLD_DB,
    SYMBOL_LENGTH,
    SYNC_VECTOR,
    TONE_SPACING_IN_HZ,
    WSPR_SYMBOLS_PER_MESSAGE,
)
from utils.dsp import band_pass, fft
from utils.prof import PROFILER

logger = logging.getLogger(__name__)

# Points in the spectrum used for peak detection (≈2.7 s of audio).
SPECTRUM_FFT_SIZE = 32768
# Half-width of the band searched around the configured center frequency.
SEARCH_HALF_WIDTH_HZ = 200.0
# Minimum width of a spectral peak; narrower peaks are treated as spurs.
MIN_PEAK_WIDTH_HZ = 4.0
# Peaks are measured out to where the spectrum drops below this multiple of
# the noise floor.
PEAK_EDGE_FACTOR = 1.5

# Number of FFT bins per tone spacing in the sync score map.  With ``2`` each
# tone lies on every other bin.
FREQ_SEARCH_OVERSAMPLING_RATIO = 2
# Number of candidate start offsets evaluated per symbol period.
TIME_SEARCH_OVERSAMPLING_RATIO = 8
# Frames transformed per batch when building the score map.
_FRAME_BATCH = 128

_SYNC_SIGN = 2.0 * np.asarray(SYNC_VECTOR, dtype=float) - 1.0


def _hamming(n: int) -> np.ndarray:
    if n <= 1:
        return np.ones(n)
    return 0.54 - 0.46 * np.cos(2.0 * np.pi * np.arange(n) / (n - 1))


def compute_spectrum(
    samples: np.ndarray,
    sample_rate: int = SAMPLE_RATE_IN_HZ,
    fft_size: int = SPECTRUM_FFT_SIZE,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(power, freqs)`` for the first ``fft_size`` samples.

    The samples are Hamming windowed and zero padded to ``fft_size``.  Only
    the lower half of the spectrum is returned.
    """
    samples = np.asarray(samples, dtype=float)
    n = min(len(samples), fft_size)
    buf = np.zeros(fft_size)
    buf[:n] = samples[:n] * _hamming(n)
    with PROFILER.section("search.fft"):
        spec = fft(buf)[: fft_size // 2]
    power = spec.real ** 2 + spec.imag ** 2
    freqs = np.arange(fft_size // 2) * (sample_rate / fft_size)
    return power, freqs


def noise_floor(power: np.ndarray) -> float:
    """Median of the power spectrum."""
    return float(np.sort(power)[len(power) // 2])


def _parabolic_offset(y1: float, y2: float, y3: float) -> float:
    denom = y1 - 2.0 * y2 + y3
    if abs(denom) < 1e-18:
        return 0.0
    return float(np.clip(0.5 * (y1 - y3) / denom, -0.5, 0.5))


def find_candidates(
    samples_in: RealSamples,
    center_freq: float,
    threshold: float,
    max_candidates: int,
) -> List[Tuple[float, float]]:
    """Search for spectral peaks that may be WSPR signals.

    The audio is band-limited to ±200 Hz around ``center_freq`` and the
    spectrum of its first 32768 samples is scanned for runs of bins above
    ``noise * (1 + threshold)``.  The largest bin of each run is a peak; it is
    kept when it stays above ``1.5 * noise`` for at least 4 Hz and its SNR
    exceeds -25 dB.

    Parameters
    ----------
    samples_in:
        Audio at the WSPR sample rate.
    center_freq:
        Nominal audio frequency of the WSPR band.
    threshold:
        Relative detection threshold above the noise floor.
    max_candidates:
        Maximum number of peaks to return.

    Returns
    -------
    List[Tuple[float, float]]
        ``(frequency_hz, snr_db)`` tuples sorted by descending SNR.
    """
    sample_rate = samples_in.sample_rate_in_hz
    lower = max(center_freq - SEARCH_HALF_WIDTH_HZ, 1.0)
    upper = center_freq + SEARCH_HALF_WIDTH_HZ
    with PROFILER.section("search.band_pass"):
        filtered = band_pass(samples_in.samples, lower, upper, sample_rate)
    power, freqs = compute_spectrum(filtered, sample_rate)
    noise = noise_floor(power)
    if noise <= 0.0:
        logger.debug("Silent input, no candidates")
        return []

    bin_hz = sample_rate / SPECTRUM_FFT_SIZE
    last = len(power) - 1
    min_bin = int(np.clip(int(lower / bin_hz), 0, last))
    max_bin = int(np.clip(int(upper / bin_hz), 0, last))
    min_width = int(MIN_PEAK_WIDTH_HZ / bin_hz)
    level = noise * (1.0 + threshold)
    edge = noise * PEAK_EDGE_FACTOR

    peaks: List[Tuple[float, float]] = []
    i = min_bin
    while i <= max_bin:
        if power[i] <= level:
            i += 1
            continue
        run_end = i
        while run_end < max_bin and power[run_end + 1] > level:
            run_end += 1
        peak = i + int(np.argmax(power[i : run_end + 1]))

        lo = peak
        while lo > min_bin and power[lo] > edge:
            lo -= 1
        hi = peak
        while hi < max_bin and power[hi] > edge:
            hi += 1

        if hi - lo >= min_width:
            snr_db = 10.0 * np.log10(power[peak] / noise)
            if snr_db > SNR_THRESHOLD_DB:
                frac = 0.0
                if 0 < peak < last:
                    frac = _parabolic_offset(power[peak - 1], power[peak], power[peak + 1])
                peaks.append((float(freqs[peak] + frac * bin_hz), float(snr_db)))
        i = max(run_end, hi) + 1

    peaks.sort(key=lambda p: p[1], reverse=True)
    logger.debug("Found %d spectral peaks, noise floor %.3g", len(peaks), noise)
    return peaks[:max_candidates]


def estimate_snr(samples_in: RealSamples, freq: float) -> float:
    """Return the spectral SNR in dB of the strongest bin near ``freq``."""
    power, freqs = compute_spectrum(samples_in.samples, samples_in.sample_rate_in_hz)
    noise = noise_floor(power)
    sel = np.abs(freqs - freq) <= 2.0 * TONE_SPACING_IN_HZ
    if noise <= 0.0 or not np.any(sel):
        return 0.0
    return float(10.0 * np.log10(max(power[sel].max(), 1e-30) / noise))


def sync_score_map(
    samples_in: RealSamples,
    low_freq: float,
    high_freq: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return sync scores over start offsets and tone-0 frequencies.

    Every symbol-length window (stepped by 1/8 symbol) is transformed with a
    2x zero padded FFT so that each tone falls on every other bin.  For a
    start offset and a tone-0 bin the score is

        sum_i sign_i * ((P1 + P3) - (P0 + P2)) / sum_i (P0 + P1 + P2 + P3)

    where ``sign_i`` is ``+1`` where the sync vector is one and ``-1`` where
    it is zero.  The transmitted tone always carries the sync bit in its low
    bit, so the score does not depend on the data and lies in ``[-1, 1]``.

    Returns
    -------
    (scores, starts, freqs):
        ``scores`` has shape ``(len(starts), len(freqs))``.  ``starts`` are
        sample offsets and ``freqs`` the tone-0 frequencies in Hz.
    """
    samples = samples_in.samples
    sample_rate = samples_in.sample_rate_in_hz
    sym_len = SYMBOL_LENGTH
    fft_len = sym_len * FREQ_SEARCH_OVERSAMPLING_RATIO
    step = sym_len // TIME_SEARCH_OVERSAMPLING_RATIO
    bin_hz = sample_rate / fft_len
    tone_bins = FREQ_SEARCH_OVERSAMPLING_RATIO

    first_bin = max(int(np.floor(low_freq / bin_hz)), 0)
    last_bin = min(int(np.ceil(high_freq / bin_hz)) + 3 * tone_bins, fft_len // 2)
    n_bins = last_bin - first_bin + 1

    # Pad one symbol so a transmission that ends exactly with the buffer
    # still gets a frame at its last symbol.
    padded = np.concatenate([samples, np.zeros(sym_len)])
    frames = np.lib.stride_tricks.sliding_window_view(padded, sym_len)[::step]
    span = TIME_SEARCH_OVERSAMPLING_RATIO * (WSPR_SYMBOLS_PER_MESSAGE - 1)
    n_starts = frames.shape[0] - span
    if n_starts <= 0 or n_bins <= 3 * tone_bins:
        return np.empty((0, 0)), np.empty(0, dtype=int), np.empty(0)

    with PROFILER.section("search.score_map.rfft"):
        pwr = np.empty((frames.shape[0], n_bins))
        for k in range(0, frames.shape[0], _FRAME_BATCH):
            spec = np.fft.rfft(frames[k : k + _FRAME_BATCH], n=fft_len, axis=1)
            sel = spec[:, first_bin : last_bin + 1]
            pwr[k : k + _FRAME_BATCH] = sel.real ** 2 + sel.imag ** 2

    n_freqs = n_bins - 3 * tone_bins
    p0 = pwr[:, 0:n_freqs]
    p1 = pwr[:, tone_bins : tone_bins + n_freqs]
    p2 = pwr[:, 2 * tone_bins : 2 * tone_bins + n_freqs]
    p3 = pwr[:, 3 * tone_bins : 3 * tone_bins + n_freqs]
    diff = (p1 + p3) - (p0 + p2)
    total = p0 + p1 + p2 + p3

    with PROFILER.section("search.score_map.correlate"):
        num = np.zeros((n_starts, n_freqs))
        den = np.zeros((n_starts, n_freqs))
        for i, sign in enumerate(_SYNC_SIGN):
            row = i * TIME_SEARCH_OVERSAMPLING_RATIO
            num += sign * diff[row : row + n_starts]
            den += total[row : row + n_starts]
        scores = num / (den + 1e-12)

    starts = np.arange(n_starts) * step
    freqs = (first_bin + np.arange(n_freqs)) * bin_hz
    return scores, starts, freqs


def coarse_sync(
    score_map: Tuple[np.ndarray, np.ndarray, np.ndarray],
    peak_freq: float,
    margin_hz: float = TONE_SPACING_IN_HZ,
) -> Tuple[float, int, float] | None:
    """Return ``(score, start, center_freq)`` of the best sync near ``peak_freq``.

    A spectral peak may sit on any of the four tones, so tone-0 frequencies
    from three tone spacings below the peak up to the peak are searched,
    widened by ``margin_hz`` on both sides.
    """
    scores, starts, freqs = score_map
    if scores.size == 0:
        return None
    lo = peak_freq - 3.0 * TONE_SPACING_IN_HZ - margin_hz
    hi = peak_freq + margin_hz
    cols = np.nonzero((freqs >= lo) & (freqs <= hi))[0]
    if cols.size == 0:
        return None
    sub = scores[:, cols]
    t, c = np.unravel_index(int(np.argmax(sub)), sub.shape)
    center = float(freqs[cols[c]] + 1.5 * TONE_SPACING_IN_HZ)
    return float(sub[t, c]), int(starts[t]), center
