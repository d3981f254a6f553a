import numpy as np

from . import (
    ENCODED_BITS,
    PCM_MAX,
    SAMPLE_RATE_IN_HZ,
    SYMBOL_LENGTH,
    SYNC_VECTOR,
    WSPR_SYMBOLS_PER_MESSAGE,
    clip_to_int16,
    tone_frequencies,
)

# Fraction of the first and last symbol covered by the amplitude ramp.
RAMP_FRACTION = 0.1


def bits_to_symbols(interleaved_bits) -> np.ndarray:
    """Return the 162 channel symbols for 100 interleaved code bits.

    Each symbol is ``(data_bit << 1) | sync_bit``; positions past the code
    bits carry a zero data bit.
    """
    bits = np.asarray(interleaved_bits, dtype=np.uint8)
    if bits.shape[0] > WSPR_SYMBOLS_PER_MESSAGE:
        raise ValueError("too many bits for one WSPR frame")
    data = np.zeros(WSPR_SYMBOLS_PER_MESSAGE, dtype=np.uint8)
    data[: bits.shape[0]] = bits
    return (data << 1) | np.asarray(SYNC_VECTOR, dtype=np.uint8)


def symbols_to_bits(symbols) -> np.ndarray:
    """Return the data bits carried by ``symbols`` (the first 100)."""
    symbols = np.asarray(symbols, dtype=np.uint8)
    return (symbols[:ENCODED_BITS] >> 1) & 1


def _ramp(sym_len: int) -> tuple[np.ndarray, np.ndarray]:
    j = np.arange(sym_len, dtype=float)
    width = sym_len * RAMP_FRACTION
    up = np.minimum(1.0, j / width)
    down = np.minimum(1.0, (sym_len - j) / width)
    return up, down


def synth_waveform(
    symbols,
    center_freq: float,
    sample_rate: int = SAMPLE_RATE_IN_HZ,
    amplitude: float = 1.0,
    ramp: bool = True,
    sym_len: int = SYMBOL_LENGTH,
) -> np.ndarray:
    """Return a float waveform in ``[-1, 1]`` for the 4-FSK ``symbols``.

    The phase restarts at zero for every symbol.  With ``ramp`` the first and
    last symbols are faded in and out over 10 % of their length.
    """
    symbols = np.asarray(symbols, dtype=int)
    t = np.arange(sym_len) / sample_rate
    # One precomputed period of each tone; symbols index into it.
    tones = np.sin(2 * np.pi * tone_frequencies(center_freq)[:, None] * t)
    wave = amplitude * tones[symbols]
    if ramp and len(symbols):
        up, down = _ramp(sym_len)
        wave[0] *= up
        wave[-1] *= down
    return wave.reshape(-1)


def waveform_to_pcm(wave: np.ndarray) -> np.ndarray:
    """Quantize a ``[-1, 1]`` waveform to saturated int16 samples."""
    return clip_to_int16(np.asarray(wave) * PCM_MAX)
