import logging

import pytest

from config import DecoderConfig, EncoderConfig, as_dict


def test_defaults():
    enc = EncoderConfig()
    assert enc.use_encoded_callsigns and enc.apply_ramp_up_down
    assert enc.amplitude_scaling == 0.9
    assert enc.center_frequency_hz == 1500.0
    dec = DecoderConfig()
    assert dec.signal_threshold == 0.1
    assert dec.max_decodes == 5
    assert dec.multi_decoder_enabled and dec.report_snr
    assert dec.fec_decoder == "sequential"


@pytest.mark.parametrize("value, expected", [(5.0, 1.0), (0.0, 0.01), (0.5, 0.5)])
def test_amplitude_is_clamped(value, expected):
    assert EncoderConfig(amplitude_scaling=value).amplitude_scaling == expected


def test_decoder_ranges_are_clamped(caplog):
    with caplog.at_level(logging.WARNING, logger="config"):
        cfg = DecoderConfig(signal_threshold=2.0, max_decodes=50)
    assert cfg.signal_threshold == 0.99
    assert cfg.max_decodes == 20
    assert "out of range" in caplog.text
    assert DecoderConfig(signal_threshold=0.0, max_decodes=0).max_decodes == 1


def test_invalid_values_raise():
    with pytest.raises(ValueError):
        DecoderConfig(fec_decoder="turbo")
    with pytest.raises(ValueError):
        DecoderConfig(center_frequency_hz=0)
    with pytest.raises(ValueError):
        EncoderConfig(center_frequency_hz=-10)


def test_updated_revalidates():
    cfg = DecoderConfig().updated(max_decodes=99, report_snr=False)
    assert cfg.max_decodes == 20
    assert not cfg.report_snr
    assert EncoderConfig().updated(amplitude_scaling=3).amplitude_scaling == 1.0


def test_from_env(monkeypatch):
    monkeypatch.setenv("WSPRR_CENTER_FREQ", "1400")
    monkeypatch.setenv("WSPRR_MAX_DECODES", "3")
    monkeypatch.setenv("WSPRR_MULTI_DECODE", "false")
    monkeypatch.setenv("WSPRR_FEC_DECODER", "majority")
    monkeypatch.setenv("WSPRR_AMPLITUDE", "0.5")
    monkeypatch.setenv("WSPRR_RAMP", "0")
    dec = DecoderConfig.from_env()
    assert dec.center_frequency_hz == 1400.0
    assert dec.max_decodes == 3
    assert not dec.multi_decoder_enabled
    assert dec.fec_decoder == "majority"
    enc = EncoderConfig.from_env()
    assert enc.amplitude_scaling == 0.5
    assert not enc.apply_ramp_up_down
    assert enc.center_frequency_hz == 1400.0


def test_from_env_ignores_garbage(monkeypatch):
    monkeypatch.setenv("WSPRR_MAX_DECODES", "many")
    monkeypatch.setenv("WSPRR_THRESHOLD", "")
    cfg = DecoderConfig.from_env()
    assert cfg.max_decodes == 5
    assert cfg.signal_threshold == 0.1


def test_as_dict():
    d = as_dict(EncoderConfig())
    assert d == {
        "use_encoded_callsigns": True,
        "apply_ramp_up_down": True,
        "amplitude_scaling": 0.9,
        "center_frequency_hz": 1500.0,
    }
