import numpy as np
import pytest

from demod import (
    DecodedMessage,
    _dedup_decodes,
    decode_full_period,
    decode_signal,
    demodulate_symbols,
    refine_frequency,
    soft_bits,
    symbol_energies,
    synchronize,
)
from utils import SAMPLE_RATE_IN_HZ, SYNC_VECTOR, RealSamples
from utils.fec import conv_encode, deinterleave
from utils.pack import pack_message
from utils.tx import message_symbols
from tests.utils import DEFAULT_FREQ_EPS, DEFAULT_NOISE_SIGMA, make_transmission, spots


def test_symbol_energies_recover_symbols(w1aw_audio):
    e = symbol_energies(w1aw_audio, 0, 1500.0)
    assert e.shape == (162, 4)
    assert np.array_equal(demodulate_symbols(e), message_symbols("W1AW", "FN31", 10))


def test_soft_bits_signs_match_code_bits(w1aw_audio):
    llrs = deinterleave(soft_bits(symbol_energies(w1aw_audio, 0, 1500.0)))
    code = conv_encode(pack_message("W1AW", "FN31", 10))
    assert np.array_equal((llrs > 0).astype(np.uint8), code)


@pytest.mark.parametrize("lead", [0, 3000])
def test_synchronize_finds_offset(lead):
    audio = make_transmission("W1AW", "FN31", 10, lead_samples=lead)
    sync = synchronize(audio, 1500.0)
    assert sync is not None
    offset, quality = sync
    # Shifting by one carrier period costs very little correlation.
    assert abs(offset - lead) <= 16
    assert 0.5 < quality <= 1.0


def test_synchronize_rejects_wrong_frequency(w1aw_audio):
    assert synchronize(w1aw_audio, 1300.0) is None


def test_synchronize_needs_full_transmission():
    short = RealSamples(np.ones(1000), SAMPLE_RATE_IN_HZ)
    assert synchronize(short, 1500.0) is None


def test_refine_frequency():
    audio = make_transmission("W1AW", "FN31", 10, freq=1500.3)
    assert refine_frequency(audio, 0, 1500.0) == pytest.approx(1500.3, abs=0.1)


def test_decode_signal_clean(w1aw_audio):
    msg = decode_signal(w1aw_audio, 1500.0, 20.0)
    assert msg is not None
    assert (msg.callsign, msg.grid, msg.power_dbm) == ("W1AW", "FN31", 10)
    assert msg.snr_db == 20.0
    assert abs(msg.frequency_hz - 1500.0) < DEFAULT_FREQ_EPS


def test_decode_full_period_clean(w1aw_audio):
    results = decode_full_period(w1aw_audio)
    assert spots(results) == [("W1AW", "FN31", 10)]
    assert abs(results[0].frequency_hz - 1500.0) < DEFAULT_FREQ_EPS


def test_decode_offset_in_time_and_frequency():
    audio = make_transmission("K1ABC", "FN42", 36, freq=1523.0, lead_samples=6000)
    results = decode_full_period(audio)
    assert spots(results) == [("K1ABC", "FN42", 36)]
    assert abs(results[0].frequency_hz - 1523.0) < DEFAULT_FREQ_EPS


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_decode_in_noise(seed, wsprr_metrics):
    audio = make_transmission(
        "VK2ABC", "QF56", 30, freq=1480.0, lead_samples=2000, tail_samples=4000,
        noise_sigma=DEFAULT_NOISE_SIGMA, seed=seed,
    )
    results = decode_full_period(audio)
    wsprr_metrics["total"] += 1
    if spots(results) == [("VK2ABC", "QF56", 30)]:
        wsprr_metrics["decoded"] += 1
    assert spots(results) == [("VK2ABC", "QF56", 30)]


def test_single_decoder_mode(w1aw_audio):
    results = decode_full_period(w1aw_audio, multi_decoder=False)
    assert spots(results) == [("W1AW", "FN31", 10)]


def test_noise_only_decodes_nothing():
    rng = np.random.default_rng(7)
    audio = RealSamples(rng.normal(0.0, 1000.0, size=162 * 8192), SAMPLE_RATE_IN_HZ)
    assert decode_full_period(audio) == []


def test_silence_decodes_nothing():
    assert decode_full_period(RealSamples(np.zeros(162 * 8192), SAMPLE_RATE_IN_HZ)) == []


def test_majority_decoder_only_returns_valid_messages(w1aw_audio):
    results = decode_full_period(w1aw_audio, fec_decoder="majority")
    for msg in results:
        assert 0 <= msg.power_dbm <= 60
        assert msg.callsign


def test_unknown_fec_decoder(w1aw_audio):
    with pytest.raises(ValueError):
        decode_full_period(w1aw_audio, fec_decoder="nope")


def test_decoded_message_lines():
    msg = DecodedMessage("W1AW", "FN31", 10, -12.34, 1500.04, timestamp=0)
    assert msg.to_line() == "W1AW FN31 10dBm SNR: -12.3 dB 1500.0 Hz"
    assert msg.to_line(report_snr=False) == "W1AW FN31 10dBm 1500.0 Hz"
    assert str(msg) == msg.to_line()
    unknown = DecodedMessage("W1AW", "FN31", 10, -99.0, 1500.0, timestamp=0)
    assert unknown.to_line() == "W1AW FN31 10dBm 1500.0 Hz"
    assert DecodedMessage("W1AW", "FN31", 10, 0.0, 1500.0).timestamp > 0


def test_dedup_keeps_strongest():
    a = DecodedMessage("W1AW", "FN31", 10, -5.0, 1500.0, timestamp=0)
    b = DecodedMessage("W1AW", "FN31", 10, 3.0, 1500.2, timestamp=0)
    c = DecodedMessage("K1ABC", "FN42", 37, 0.0, 1450.0, timestamp=0)
    assert _dedup_decodes([a, c, b]) == [b, c]


def test_sync_vector_length():
    assert len(SYNC_VECTOR) == 162
