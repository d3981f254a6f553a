import logging

import numpy as np

from . import DEFAULT_CENTER_FREQUENCY_HZ, SAMPLE_RATE_IN_HZ, RealSamples, samples_to_bytes
from .fec import conv_encode, interleave
from .pack import pack_grid_and_power, pack_message, pack_raw_message, validate_power
from .waveform import bits_to_symbols, synth_waveform, waveform_to_pcm

logger = logging.getLogger(__name__)


def message_symbols(
    callsign: str, grid: str, power_dbm: int, *, encoded_callsign: bool = True
) -> np.ndarray:
    """Return the 162 channel symbols for one message.

    Packs the message, applies the convolutional code, interleaves the code
    bits and merges them with the sync vector.
    """
    if encoded_callsign:
        msg_bits = pack_message(callsign, grid, power_dbm)
    else:
        # Raw mode still validates grid and power.
        validate_power(power_dbm)
        pack_grid_and_power(grid, power_dbm)
        msg_bits = pack_raw_message(callsign.strip().upper(), grid.strip().upper(), power_dbm)
    return bits_to_symbols(interleave(conv_encode(msg_bits)))


def generate_wspr_samples(
    callsign: str,
    grid: str,
    power_dbm: int,
    *,
    center_freq: float = DEFAULT_CENTER_FREQUENCY_HZ,
    amplitude: float = 0.9,
    ramp: bool = True,
    encoded_callsign: bool = True,
) -> RealSamples:
    """Return one complete transmission as 16-bit scaled samples.

    The transmission is 162 symbols of 8192 samples at 12 kHz.
    """
    symbols = message_symbols(callsign, grid, power_dbm, encoded_callsign=encoded_callsign)
    wave = synth_waveform(symbols, center_freq, amplitude=amplitude, ramp=ramp)
    return RealSamples(waveform_to_pcm(wave), SAMPLE_RATE_IN_HZ)


def generate_wspr_pcm(callsign: str, grid: str, power_dbm: int, **kwargs) -> bytes:
    """Return one transmission as little-endian 16-bit PCM bytes.

    Keyword arguments are passed to :func:`generate_wspr_samples`.
    """
    logger.debug(
        "Generating WSPR audio for callsign=%s, grid=%s, power=%ddBm",
        callsign,
        grid,
        power_dbm,
    )
    samples = generate_wspr_samples(callsign, grid, power_dbm, **kwargs)
    return samples_to_bytes(samples.samples)
