from dataclasses import dataclass
import wave
import numpy as np

# Sync vector merged into the least significant bit of every channel symbol.
# Copied from the WSJT-X sources; the receiver correlates against it to find
# symbol timing.
SYNC_VECTOR = [
    1, 1, 0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 1, 1, 1, 0, 0, 0, 1, 0,
    0, 1, 0, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0, 1, 0, 1,
    0, 0, 0, 0, 0, 0, 1, 0, 1, 1, 0, 0, 1, 1, 0, 1, 0, 0, 0, 1,
    1, 0, 1, 0, 0, 0, 0, 1, 1, 0, 1, 0, 1, 0, 1, 0, 1, 0, 0, 1,
    0, 0, 1, 0, 1, 1, 0, 0, 0, 1, 1, 0, 1, 0, 1, 0, 0, 0, 1, 0,
    0, 0, 0, 0, 1, 0, 0, 1, 0, 0, 1, 1, 1, 0, 1, 1, 0, 0, 1, 1,
    0, 1, 0, 0, 0, 1, 1, 1, 0, 0, 0, 0, 0, 1, 0, 1, 0, 0, 1, 1,
    0, 0, 0, 0, 0, 0, 0, 1, 1, 0, 1, 0, 1, 1, 0, 0, 0, 1, 1, 0,
    0, 0,
]

# Rate 1/2, constraint length 32 convolutional code taps.  ``POLY1[j]``
# multiplies the message bit ``j`` positions in the past.
POLY1 = [
    1, 1, 1, 1, 0, 0, 0, 1, 1, 0, 1, 1, 0, 0, 1, 0,
    1, 0, 1, 0, 0, 1, 1, 0, 1, 0, 0, 0, 0, 0, 0, 1,
]
POLY2 = [
    1, 0, 1, 1, 1, 1, 0, 0, 0, 1, 1, 0, 1, 1, 0, 0,
    1, 0, 1, 0, 1, 0, 0, 1, 1, 0, 1, 0, 0, 0, 0, 0,
]
CONSTRAINT_LENGTH = 32

# 8-bit bit-reversal permutation used by the interleaver.
BIT_REVERSAL_TABLE = [int(f"{i:08b}"[::-1], 2) for i in range(256)]

# Alphabet used when packing callsigns: digits map to 0-9, letters to 10-35
# and space to 36.
CALLSIGN_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ "

SAMPLE_RATE_IN_HZ = 12000
# Samples per channel symbol; the symbol rate is 12000/8192 ≈ 1.4648 baud.
SYMBOL_LENGTH = 8192
WSPR_SYMBOLS_PER_MESSAGE = 162
TONE_SPACING_IN_HZ = 1.4648
DEFAULT_CENTER_FREQUENCY_HZ = 1500.0
MESSAGE_BITS = 50
ENCODED_BITS = 2 * MESSAGE_BITS
CALLSIGN_BITS = 28
GRID_POWER_BITS = 22
# Samples in one complete transmission (≈110.6 s).
TRANSMISSION_SAMPLES = WSPR_SYMBOLS_PER_MESSAGE * SYMBOL_LENGTH
# Length of the transmit slot; transmissions start at even UTC minutes.
TRANSMISSION_PERIOD_SEC = 120
# Detection floor for candidate peaks.
SNR_THRESHOLD_DB = -25.0
# Occupied bandwidth of a single WSPR signal.
WSPR_BANDWIDTH_HZ = 6.0

PCM_FULL_SCALE = 32768.0
PCM_MAX = 32767
PCM_MIN = -32768


def tone_frequencies(center_frequency_hz: float) -> np.ndarray:
    """Return the four 4-FSK tone frequencies around ``center_frequency_hz``."""
    return center_frequency_hz + (np.arange(4) - 1.5) * TONE_SPACING_IN_HZ


def is_valid_grid(grid: str) -> bool:
    """Return ``True`` if ``grid`` is a 4-character Maidenhead locator.

    Field letters A-R come first, then the two square digits (``FN31``).
    """
    if len(grid) != 4:
        return False
    return (
        "A" <= grid[0] <= "R"
        and "A" <= grid[1] <= "R"
        and grid[2] in "0123456789"
        and grid[3] in "0123456789"
    )


def bytes_to_samples(data: bytes) -> np.ndarray:
    """Return little-endian 16-bit PCM ``data`` as an ``int16`` array.

    A trailing odd byte is ignored.
    """
    usable = len(data) - (len(data) % 2)
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.int16)


def samples_to_bytes(samples: np.ndarray) -> bytes:
    """Return ``samples`` as little-endian 16-bit PCM bytes."""
    return np.asarray(samples, dtype=np.int16).astype("<i2").tobytes()


def clip_to_int16(values: np.ndarray) -> np.ndarray:
    """Truncate ``values`` toward zero and saturate them to the int16 range."""
    values = np.asarray(values, dtype=float)
    return np.clip(np.trunc(values), PCM_MIN, PCM_MAX).astype(np.int16)


@dataclass
class RealSamples:
    """Simple container for real-valued samples and their sampling rate."""

    samples: np.ndarray
    sample_rate_in_hz: int

    def __post_init__(self) -> None:
        """Ensure that ``samples`` is a NumPy ``float`` array."""
        self.samples = np.asarray(self.samples, dtype=float)

    @classmethod
    def from_pcm(cls, data: bytes, sample_rate_in_hz: int = SAMPLE_RATE_IN_HZ) -> "RealSamples":
        """Build from raw PCM bytes, keeping the 16-bit sample scale."""
        return cls(bytes_to_samples(data), sample_rate_in_hz)


def read_wav(path: str) -> RealSamples:
    """Load mono 16-bit PCM WAV data and return a :class:`RealSamples` object.

    Samples keep their integer scale (-32768..32767) so they can be fed
    straight to the decoder.
    """
    with wave.open(path, "rb") as w:
        if w.getsampwidth() != 2:
            raise ValueError("Unsupported sample width")
        if w.getnchannels() != 1:
            raise ValueError("Only mono WAV files are supported")
        frames = w.readframes(w.getnframes())
        return RealSamples(bytes_to_samples(frames), w.getframerate())


def write_wav(path: str, pcm: bytes, sample_rate_in_hz: int = SAMPLE_RATE_IN_HZ) -> None:
    """Write mono 16-bit little-endian ``pcm`` bytes to ``path``."""
    with wave.open(path, "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(sample_rate_in_hz)
        w.writeframes(pcm)


__all__ = [
    "RealSamples",
    "read_wav",
    "write_wav",
    "bytes_to_samples",
    "samples_to_bytes",
    "clip_to_int16",
    "tone_frequencies",
    "is_valid_grid",
    "SYNC_VECTOR",
    "POLY1",
    "POLY2",
    "CONSTRAINT_LENGTH",
    "BIT_REVERSAL_TABLE",
    "CALLSIGN_ALPHABET",
    "SAMPLE_RATE_IN_HZ",
    "SYMBOL_LENGTH",
    "WSPR_SYMBOLS_PER_MESSAGE",
    "TONE_SPACING_IN_HZ",
    "DEFAULT_CENTER_FREQUENCY_HZ",
    "MESSAGE_BITS",
    "ENCODED_BITS",
    "CALLSIGN_BITS",
    "GRID_POWER_BITS",
    "TRANSMISSION_SAMPLES",
    "TRANSMISSION_PERIOD_SEC",
    "SNR_THRESHOLD_DB",
    "WSPR_BANDWIDTH_HZ",
    "PCM_FULL_SCALE",
]
