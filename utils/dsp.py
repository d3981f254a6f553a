"""Signal processing primitives used by the encoder and decoder."""
import math

import numpy as np
from scipy.signal import lfilter

from . import PCM_FULL_SCALE, bytes_to_samples

# Transform sizes at or below this are computed with an explicit DFT matrix.
_DFT_CUTOFF = 16


def _is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def _fft_rec(x: np.ndarray) -> np.ndarray:
    n = x.shape[0]
    if n <= _DFT_CUTOFF:
        k = np.arange(n)
        return np.exp(-2j * np.pi * np.outer(k, k) / n) @ x
    even = _fft_rec(x[0::2])
    odd = _fft_rec(x[1::2])
    twiddled = np.exp(-2j * np.pi * np.arange(n // 2) / n) * odd
    return np.concatenate([even + twiddled, even - twiddled])


def fft(samples) -> np.ndarray:
    """Return the discrete Fourier transform of ``samples``.

    Recursive radix-2 Cooley-Tukey.  The input length must be a power of two;
    callers zero-pad as needed.
    """
    x = np.asarray(samples, dtype=complex)
    if not _is_power_of_two(x.shape[0]):
        raise ValueError(f"FFT input length must be a power of 2, got {x.shape[0]}")
    return _fft_rec(x)


def rc_constant(cutoff_hz: float) -> float:
    """Return the RC time constant ``1/(2*pi*fc)`` for ``cutoff_hz``."""
    if cutoff_hz <= 0:
        raise ValueError("cutoff frequency must be positive")
    return 1.0 / (2.0 * math.pi * cutoff_hz)


def low_pass(samples, cutoff_hz: float, sample_rate: int) -> np.ndarray:
    """Single-pole IIR low-pass ``y[n] = a*x[n] + (1-a)*y[n-1]``.

    The filter state is seeded with the first sample so a constant input
    passes through unchanged.
    """
    x = np.asarray(samples, dtype=float)
    if x.size == 0:
        return x
    dt = 1.0 / sample_rate
    alpha = dt / (rc_constant(cutoff_hz) + dt)
    zi = np.array([(1.0 - alpha) * x[0]])
    y, _ = lfilter([alpha], [1.0, -(1.0 - alpha)], x, zi=zi)
    return y


def high_pass(samples, cutoff_hz: float, sample_rate: int) -> np.ndarray:
    """Single-pole IIR high-pass ``y[n] = a*(y[n-1] + x[n] - x[n-1])`` from rest."""
    x = np.asarray(samples, dtype=float)
    if x.size == 0:
        return x
    rc = rc_constant(cutoff_hz)
    alpha = rc / (rc + 1.0 / sample_rate)
    return lfilter([alpha, -alpha], [1.0, -alpha], x)


def band_pass(samples, low_hz: float, high_hz: float, sample_rate: int) -> np.ndarray:
    """Low-pass at ``high_hz`` followed by high-pass at ``low_hz``."""
    if low_hz <= 0:
        return low_pass(samples, high_hz, sample_rate)
    return high_pass(low_pass(samples, high_hz, sample_rate), low_hz, sample_rate)


def rms_level(samples) -> float:
    """Return the RMS of 16-bit ``samples`` normalised to 0.0-1.0."""
    x = np.asarray(samples, dtype=float)
    if x.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(x * x)) / PCM_FULL_SCALE)


def peak_level(samples) -> float:
    """Return the largest absolute 16-bit sample normalised to 0.0-1.0."""
    x = np.asarray(samples, dtype=float)
    if x.size == 0:
        return 0.0
    return float(np.max(np.abs(x)) / PCM_FULL_SCALE)


def rms_level_from_bytes(data: bytes) -> float:
    return rms_level(bytes_to_samples(data))


def peak_level_from_bytes(data: bytes) -> float:
    return peak_level(bytes_to_samples(data))


def tone_bases(freqs, sym_len: int, sample_rate: int) -> np.ndarray:
    """Return a ``(len(freqs), sym_len)`` matrix of complex reference tones.

    Time restarts at zero for every symbol, matching the transmitter.
    """
    t = np.arange(sym_len) / sample_rate
    return np.exp(-2j * np.pi * np.asarray(freqs, dtype=float)[:, None] * t)


def tone_energy(samples, freq_hz: float, sample_rate: int) -> float:
    """Return the matched-filter energy of ``samples`` at ``freq_hz``.

    The squared magnitude of the correlation with a complex tone, divided by
    the window length.
    """
    x = np.asarray(samples, dtype=float)
    if x.size == 0:
        return 0.0
    basis = tone_bases([freq_hz], x.shape[0], sample_rate)[0]
    return float(np.abs(basis @ x) ** 2 / x.shape[0])


def tone_energies(symbols: np.ndarray, freqs, sample_rate: int) -> np.ndarray:
    """Return tone energies for every row of the symbol matrix ``symbols``.

    ``symbols`` has shape ``(n_symbols, sym_len)``; the result has shape
    ``(n_symbols, len(freqs))``.
    """
    sym_len = symbols.shape[1]
    bases = tone_bases(freqs, sym_len, sample_rate)
    return np.abs(symbols @ bases.T) ** 2 / sym_len


__all__ = [
    "fft",
    "rc_constant",
    "low_pass",
    "high_pass",
    "band_pass",
    "rms_level",
    "peak_level",
    "rms_level_from_bytes",
    "peak_level_from_bytes",
    "tone_bases",
    "tone_energy",
    "tone_energies",
]
