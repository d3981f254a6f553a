import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.signal import oaconvolve

from utils import (
    DEFAULT_CENTER_FREQUENCY_HZ,
    ENCODED_BITS,
    RealSamples,
    SYMBOL_LENGTH,
    SYNC_VECTOR,
    TONE_SPACING_IN_HZ,
    WSPR_BANDWIDTH_HZ,
    WSPR_SYMBOLS_PER_MESSAGE,
    tone_frequencies,
)
from utils.dsp import band_pass, tone_bases, tone_energies
from utils.fec import DEFAULT_FEC_DECODER, deinterleave, get_fec_decoder
from utils.pack import MessageFormatError, unpack_message
from utils.prof import PROFILER

from search import (
    SEARCH_HALF_WIDTH_HZ,
    coarse_sync,
    estimate_snr,
    find_candidates,
    sync_score_map,
)

logger = logging.getLogger(__name__)

# Normalised sync correlation required to accept a candidate.
SYNC_THRESHOLD = 0.15
# Offsets searched by :func:`synchronize`, in samples.
SYNC_SEARCH_SPAN = 2 * SYMBOL_LENGTH
# Demodulated frames disagreeing with the sync vector in more positions are
# rejected before FEC decoding.
MAX_SYNC_ERRORS = 40
# Fine frequency search around the coarse estimate.
FINE_FREQ_SPAN_HZ = 0.8
FINE_FREQ_STEP_HZ = 0.1
# SNR values at or below this are not printed.
_SNR_UNKNOWN = -99.0

_SYNC = np.asarray(SYNC_VECTOR, dtype=int)


@dataclass(frozen=True)
class DecodedMessage:
    """One decoded WSPR spot."""

    callsign: str
    grid: str
    power_dbm: int
    snr_db: float
    frequency_hz: float
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_line(self, report_snr: bool = True) -> str:
        """Return ``"CALL GRID PdBm SNR: X.X dB F.F Hz"``."""
        snr = ""
        if report_snr and self.snr_db > _SNR_UNKNOWN:
            snr = f" SNR: {self.snr_db:.1f} dB"
        return f"{self.callsign} {self.grid} {self.power_dbm}dBm{snr} {self.frequency_hz:.1f} Hz"

    def __str__(self) -> str:
        return self.to_line()


def _symbol_matrix(samples: np.ndarray, start: int) -> np.ndarray:
    """Return the 162 symbols starting at ``start`` as a ``(162, 8192)`` matrix.

    Missing samples past the end of ``samples`` read as zero.
    """
    n = WSPR_SYMBOLS_PER_MESSAGE * SYMBOL_LENGTH
    seg = samples[start : start + n]
    if seg.shape[0] < n:
        seg = np.pad(seg, (0, n - seg.shape[0]))
    return seg.reshape(WSPR_SYMBOLS_PER_MESSAGE, SYMBOL_LENGTH)


def symbol_energies(samples_in: RealSamples, start: int, freq: float) -> np.ndarray:
    """Return the ``(162, 4)`` matrix of tone energies per symbol."""
    seg = _symbol_matrix(samples_in.samples, start)
    return tone_energies(seg, tone_frequencies(freq), samples_in.sample_rate_in_hz)


def sync_template(freq: float, sample_rate: int) -> np.ndarray:
    """Noiseless sync-only reference: the tone of each symbol is its sync bit."""
    t = np.arange(SYMBOL_LENGTH) / sample_rate
    tones = np.sin(2 * np.pi * tone_frequencies(freq)[:2, None] * t)
    return tones[_SYNC].reshape(-1)


def synchronize(
    samples_in: RealSamples,
    freq: float,
    *,
    start: int = 0,
    span: int = SYNC_SEARCH_SPAN,
) -> Optional[Tuple[int, float]]:
    """Locate the symbol boundaries of a signal at ``freq``.

    The sync-only template is cross-correlated with the audio for offsets
    ``start .. start + span`` and the best offset kept.  Its correlation is
    normalised by ``sqrt(signal_energy * template_energy)`` using the energy
    of the whole input.

    Returns
    -------
    Optional[Tuple[int, float]]
        ``(offset, quality)``, or ``None`` when no offset fits or the quality
        does not exceed :data:`SYNC_THRESHOLD`.
    """
    samples = samples_in.samples
    sample_rate = samples_in.sample_rate_in_hz
    tmpl_len = WSPR_SYMBOLS_PER_MESSAGE * SYMBOL_LENGTH
    start = max(int(start), 0)
    last = min(start + span, len(samples) - tmpl_len + 1)
    if last <= start:
        return None

    # The template repeats two tone segments, so correlate against each
    # segment once and sum per symbol instead of correlating the full
    # template.
    t = np.arange(SYMBOL_LENGTH) / sample_rate
    kernels = np.sin(2 * np.pi * tone_frequencies(freq)[:2, None] * t)
    region = samples[start : last - 1 + tmpl_len]
    n_off = last - start
    with PROFILER.section("sync.correlate"):
        partial = [oaconvolve(region, k[::-1], mode="valid") for k in kernels]
        corr = np.zeros(n_off)
        for i, s in enumerate(_SYNC):
            off = i * SYMBOL_LENGTH
            corr += partial[s][off : off + n_off]

    best = int(np.argmax(corr))
    signal_energy = float(np.dot(samples, samples))
    template_energy = float(
        np.count_nonzero(_SYNC == 0) * np.dot(kernels[0], kernels[0])
        + np.count_nonzero(_SYNC == 1) * np.dot(kernels[1], kernels[1])
    )
    if signal_energy <= 0.0:
        return None
    quality = float(corr[best] / np.sqrt(signal_energy * template_energy))
    if quality <= SYNC_THRESHOLD:
        logger.debug("Sync at %.2f Hz rejected, quality %.3f", freq, quality)
        return None
    return start + best, quality


def refine_frequency(
    samples_in: RealSamples,
    start: int,
    freq: float,
    span_hz: float = FINE_FREQ_SPAN_HZ,
    step_hz: float = FINE_FREQ_STEP_HZ,
) -> float:
    """Return ``freq`` adjusted to maximise the energy in sync-consistent tones.

    For every trial offset the energy of tones ``s`` and ``s + 2`` (``s`` the
    sync bit) is summed over all symbols; the best offset is refined by
    parabolic interpolation.
    """
    sample_rate = samples_in.sample_rate_in_hz
    seg = _symbol_matrix(samples_in.samples, start)
    offsets = np.arange(-span_hz, span_hz + step_hz / 2, step_hz)
    # (n_offsets * 4) trial tones in one matrix product.
    trial = (freq + offsets)[:, None] + (np.arange(4) - 1.5) * TONE_SPACING_IN_HZ
    bases = tone_bases(trial.reshape(-1), SYMBOL_LENGTH, sample_rate)
    with PROFILER.section("align.fine_freq"):
        resp = np.abs(seg @ bases.T) ** 2
    resp = resp.reshape(WSPR_SYMBOLS_PER_MESSAGE, len(offsets), 4)
    rows = np.arange(WSPR_SYMBOLS_PER_MESSAGE)
    energies = resp[rows, :, _SYNC].sum(axis=0) + resp[rows, :, _SYNC + 2].sum(axis=0)

    best = int(np.argmax(energies))
    frac = 0.0
    if 0 < best < len(energies) - 1:
        y1, y2, y3 = energies[best - 1], energies[best], energies[best + 1]
        denom = y1 - 2.0 * y2 + y3
        if abs(denom) > 1e-18:
            frac = float(np.clip(0.5 * (y1 - y3) / denom, -0.5, 0.5))
    return float(freq + offsets[best] + frac * step_hz)


def demodulate_symbols(energies: np.ndarray) -> np.ndarray:
    """Hard decisions: the strongest tone of every symbol."""
    return np.argmax(energies, axis=1).astype(np.uint8)


def soft_bits(energies: np.ndarray) -> np.ndarray:
    """Return log-likelihood ratios for the 100 interleaved code bits.

    With the sync bit ``s`` known, a data bit selects between tones ``s`` and
    ``s + 2``.  The energy difference is scaled by the mean energy of the two
    tones that cannot carry signal, which estimates the noise per tone.
    Positive values favour a one.
    """
    rows = np.arange(WSPR_SYMBOLS_PER_MESSAGE)
    on = energies[rows, _SYNC + 2]
    off = energies[rows, _SYNC]
    noise = float(np.mean(energies[rows, 1 - _SYNC] + energies[rows, 3 - _SYNC]) / 2.0)
    scale = max(noise, 1e-12)
    return ((on - off) / scale)[:ENCODED_BITS]


def decode_signal(
    samples_in: RealSamples,
    freq: float,
    snr_db: float,
    *,
    fec_decoder: str = DEFAULT_FEC_DECODER,
    score_map: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = None,
) -> Optional[DecodedMessage]:
    """Decode one candidate signal near ``freq``.

    Returns ``None`` when the candidate does not synchronise, the frame is
    inconsistent with the sync vector, FEC decoding fails or the decoded bits
    do not form a valid message.
    """
    decoder = get_fec_decoder(fec_decoder)
    if score_map is None:
        with PROFILER.section("search.score_map"):
            score_map = sync_score_map(
                samples_in,
                freq - 4.0 * TONE_SPACING_IN_HZ,
                freq + 2.0 * TONE_SPACING_IN_HZ,
            )

    coarse = coarse_sync(score_map, freq)
    if coarse is None:
        start, center = 0, freq
    else:
        score, start, center = coarse
        logger.debug(
            "Coarse sync near %.2f Hz: score %.3f, start %d, center %.2f Hz",
            freq, score, start, center,
        )

    center = refine_frequency(samples_in, start, center)

    with PROFILER.section("decode.band_pass"):
        filtered = RealSamples(
            band_pass(
                samples_in.samples,
                center - WSPR_BANDWIDTH_HZ / 2,
                center + WSPR_BANDWIDTH_HZ / 2,
                samples_in.sample_rate_in_hz,
            ),
            samples_in.sample_rate_in_hz,
        )

    sync = synchronize(filtered, center, start=start - SYMBOL_LENGTH)
    if sync is None:
        return None
    offset, quality = sync
    logger.debug("Synchronized at %.2f Hz, quality %.3f, start %d", center, quality, offset)

    with PROFILER.section("demod.energies"):
        energies = symbol_energies(filtered, offset, center)
    symbols = demodulate_symbols(energies)
    sync_errors = int(np.count_nonzero((symbols & 1) != _SYNC))
    if sync_errors > MAX_SYNC_ERRORS:
        logger.debug("Frame at %.2f Hz has %d sync errors", center, sync_errors)
        return None

    llrs = deinterleave(soft_bits(energies))
    with PROFILER.section("fec.decode"):
        bits = decoder(llrs)
    if bits is None:
        return None
    try:
        callsign, grid, power = unpack_message(bits)
    except MessageFormatError as e:
        logger.debug("Inconsistent frame at %.2f Hz: %s", center, e)
        return None
    return DecodedMessage(callsign, grid, power, snr_db, center)


def _dedup_decodes(messages: List[DecodedMessage]) -> List[DecodedMessage]:
    """Keep the highest-SNR copy of every distinct message."""
    best: Dict[Tuple[str, str, int], DecodedMessage] = {}
    for msg in messages:
        key = (msg.callsign, msg.grid, msg.power_dbm)
        if key not in best or msg.snr_db > best[key].snr_db:
            best[key] = msg
    return sorted(best.values(), key=lambda m: m.snr_db, reverse=True)


def decode_full_period(
    samples_in: RealSamples,
    *,
    center_freq: float = DEFAULT_CENTER_FREQUENCY_HZ,
    threshold: float = 0.1,
    max_decodes: int = 5,
    multi_decoder: bool = True,
    fec_decoder: str = DEFAULT_FEC_DECODER,
) -> List[DecodedMessage]:
    """Decode all WSPR signals in one transmission period of audio.

    With ``multi_decoder`` the band around ``center_freq`` is searched for
    spectral peaks and up to ``max_decodes`` of them are decoded; otherwise a
    single signal at ``center_freq`` is attempted.  Candidates that fail are
    skipped.

    Returns
    -------
    List[DecodedMessage]
        Distinct decodes sorted by descending SNR.
    """
    get_fec_decoder(fec_decoder)
    if multi_decoder:
        with PROFILER.section("search.find_candidates"):
            candidates = find_candidates(samples_in, center_freq, threshold, max_decodes)
        logger.debug("Detected %d potential WSPR signals", len(candidates))
    else:
        candidates = [(center_freq, estimate_snr(samples_in, center_freq))]
    if not candidates:
        return []

    with PROFILER.section("search.score_map"):
        score_map = sync_score_map(
            samples_in,
            center_freq - SEARCH_HALF_WIDTH_HZ - 4.0 * TONE_SPACING_IN_HZ,
            center_freq + SEARCH_HALF_WIDTH_HZ + 2.0 * TONE_SPACING_IN_HZ,
        )

    results: List[DecodedMessage] = []
    for freq, snr_db in candidates:
        try:
            with PROFILER.section("decode.candidate"):
                msg = decode_signal(
                    samples_in, freq, snr_db, fec_decoder=fec_decoder, score_map=score_map
                )
        except Exception:
            logger.debug("Error decoding WSPR signal at %.1f Hz", freq, exc_info=True)
            continue
        if msg is not None:
            logger.debug("Decoded WSPR message: %s", msg)
            results.append(msg)
    return _dedup_decodes(results)
