import numpy as np

from utils import SAMPLE_RATE_IN_HZ, RealSamples, clip_to_int16, samples_to_bytes
from utils.tx import generate_wspr_samples

# Epsilon for validating decoded frequency in tests (Hz)
DEFAULT_FREQ_EPS = 1.0
# Noise level used by the noisy round trips, in 16-bit sample units.
DEFAULT_NOISE_SIGMA = 3000.0


def make_transmission(
    callsign: str,
    grid: str,
    power_dbm: int,
    freq: float = 1500.0,
    lead_samples: int = 0,
    tail_samples: int = 0,
    noise_sigma: float = 0.0,
    seed: int = 0,
) -> RealSamples:
    """Synthesize one transmission, optionally delayed and with white noise."""
    tx = generate_wspr_samples(callsign, grid, power_dbm, center_freq=freq).samples
    audio = np.concatenate([np.zeros(lead_samples), tx, np.zeros(tail_samples)])
    if noise_sigma > 0:
        rng = np.random.default_rng(seed)
        audio = audio + rng.normal(0.0, noise_sigma, size=audio.shape[0])
    return RealSamples(clip_to_int16(audio), SAMPLE_RATE_IN_HZ)


def to_pcm(audio: RealSamples) -> bytes:
    return samples_to_bytes(clip_to_int16(audio.samples))


def spots(messages):
    """Return ``(callsign, grid, power)`` of every decoded message."""
    return [(m.callsign, m.grid, m.power_dbm) for m in messages]
