import numpy as np
import pytest

from utils import (
    SYMBOL_LENGTH,
    SYNC_VECTOR,
    TRANSMISSION_SAMPLES,
    WSPR_SYMBOLS_PER_MESSAGE,
    tone_frequencies,
)
from utils.dsp import tone_energies
from utils.fec import conv_encode, interleave
from utils.pack import MessageFormatError, pack_message
from utils.tx import generate_wspr_pcm, generate_wspr_samples, message_symbols
from utils.waveform import bits_to_symbols, symbols_to_bits, synth_waveform, waveform_to_pcm


def test_symbols_carry_sync_in_low_bit():
    symbols = message_symbols("W1AW", "FN31", 10)
    assert symbols.shape == (WSPR_SYMBOLS_PER_MESSAGE,)
    assert symbols.max() <= 3
    assert np.array_equal(symbols & 1, np.asarray(SYNC_VECTOR))


def test_symbols_carry_interleaved_code_bits():
    symbols = message_symbols("W1AW", "FN31", 10)
    code = interleave(conv_encode(pack_message("W1AW", "FN31", 10)))
    assert np.array_equal(symbols_to_bits(symbols), code)
    # Positions past the code bits carry only sync.
    assert not (symbols[len(code):] >> 1).any()


def test_bits_to_symbols_rejects_overflow():
    with pytest.raises(ValueError):
        bits_to_symbols(np.zeros(WSPR_SYMBOLS_PER_MESSAGE + 1))


def test_transmission_length(w1aw_pcm, w1aw_audio):
    assert len(w1aw_pcm) == 2 * TRANSMISSION_SAMPLES == 2_654_208
    assert w1aw_audio.samples.shape == (TRANSMISSION_SAMPLES,)


def test_each_symbol_is_its_tone(w1aw_audio):
    symbols = message_symbols("W1AW", "FN31", 10)
    seg = w1aw_audio.samples.reshape(WSPR_SYMBOLS_PER_MESSAGE, SYMBOL_LENGTH)
    e = tone_energies(seg, tone_frequencies(1500.0), w1aw_audio.sample_rate_in_hz)
    assert np.array_equal(np.argmax(e, axis=1), symbols)


def test_amplitude_and_saturation():
    wave = synth_waveform([0, 1, 2, 3], 1500.0, amplitude=0.5, ramp=False)
    assert np.max(np.abs(wave)) <= 0.5 + 1e-12
    pcm = waveform_to_pcm(np.array([2.0, -2.0, 0.99999, -0.5]))
    assert pcm.dtype == np.int16
    assert pcm.tolist() == [32767, -32768, 32766, -16383]


def test_ramp_fades_first_symbol():
    ramped = generate_wspr_samples("W1AW", "FN31", 10).samples
    flat = generate_wspr_samples("W1AW", "FN31", 10, ramp=False).samples
    assert np.max(np.abs(ramped[:100])) < 4000
    assert np.max(np.abs(flat[:100])) > 20000
    assert np.max(np.abs(ramped[-100:])) < 4000
    mid = slice(10 * SYMBOL_LENGTH, 11 * SYMBOL_LENGTH)
    assert np.array_equal(ramped[mid], flat[mid])


def test_center_frequency_moves_tones():
    audio = generate_wspr_samples("W1AW", "FN31", 10, center_freq=1400.0)
    seg = audio.samples.reshape(WSPR_SYMBOLS_PER_MESSAGE, SYMBOL_LENGTH)
    e = tone_energies(seg, tone_frequencies(1400.0), audio.sample_rate_in_hz)
    assert np.array_equal(np.argmax(e, axis=1), message_symbols("W1AW", "FN31", 10))


def test_raw_message_mode():
    raw = message_symbols("W1AW", "FN31", 10, encoded_callsign=False)
    std = message_symbols("W1AW", "FN31", 10)
    assert np.array_equal(raw & 1, std & 1)
    assert not np.array_equal(raw, std)
    with pytest.raises(MessageFormatError):
        message_symbols("W1AW", "FN3", 10, encoded_callsign=False)


@pytest.mark.parametrize(
    "callsign, grid, power",
    [("W1AW", "ZZ99", 10), ("W1AW", "FN31", 61), ("TOOLONGCALL", "FN31", 10)],
)
def test_invalid_messages_raise(callsign, grid, power):
    with pytest.raises(MessageFormatError):
        generate_wspr_pcm(callsign, grid, power)
