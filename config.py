"""Typed encoder and decoder settings.

Values outside their valid range are clamped when the settings object is
created, with a warning, so codecs never see an invalid configuration.
Every field can also be taken from a ``WSPRR_*`` environment variable via
``from_env``.
"""
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict

from utils import DEFAULT_CENTER_FREQUENCY_HZ
from utils.fec import DEFAULT_FEC_DECODER, FEC_DECODERS

logger = logging.getLogger(__name__)

_ENV_PREFIX = "WSPRR_"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Ignoring invalid integer in %s", name)
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Ignoring invalid number in %s", name)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip() not in ("0", "false", "False", "no", "off")


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "").strip()
    return raw or default


def _clamp(name: str, value, lo, hi):
    if value < lo or value > hi:
        clamped = min(max(value, lo), hi)
        logger.warning("%s=%s out of range [%s, %s], using %s", name, value, lo, hi, clamped)
        return clamped
    return value


def _check_frequency(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return float(value)


@dataclass(frozen=True)
class EncoderConfig:
    use_encoded_callsigns: bool = True
    apply_ramp_up_down: bool = True
    amplitude_scaling: float = 0.9
    center_frequency_hz: float = DEFAULT_CENTER_FREQUENCY_HZ

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "amplitude_scaling",
            float(_clamp("amplitude_scaling", float(self.amplitude_scaling), 0.01, 1.0)),
        )
        object.__setattr__(
            self,
            "center_frequency_hz",
            _check_frequency("center_frequency_hz", self.center_frequency_hz),
        )

    @classmethod
    def from_env(cls) -> "EncoderConfig":
        """Build from ``WSPRR_ENCODED_CALLSIGNS``, ``WSPRR_RAMP``,
        ``WSPRR_AMPLITUDE`` and ``WSPRR_CENTER_FREQ``."""
        d = cls()
        return cls(
            use_encoded_callsigns=_env_bool(_ENV_PREFIX + "ENCODED_CALLSIGNS", d.use_encoded_callsigns),
            apply_ramp_up_down=_env_bool(_ENV_PREFIX + "RAMP", d.apply_ramp_up_down),
            amplitude_scaling=_env_float(_ENV_PREFIX + "AMPLITUDE", d.amplitude_scaling),
            center_frequency_hz=_env_float(_ENV_PREFIX + "CENTER_FREQ", d.center_frequency_hz),
        )

    def updated(self, **changes: Any) -> "EncoderConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class DecoderConfig:
    """Decoder settings.

    ``expected_start_time_epoch_ms`` of zero disables the timing check.
    ``fec_decoder`` names an entry of ``utils.fec.FEC_DECODERS``.
    """

    center_frequency_hz: float = DEFAULT_CENTER_FREQUENCY_HZ
    signal_threshold: float = 0.1
    multi_decoder_enabled: bool = True
    max_decodes: int = 5
    report_snr: bool = True
    expected_start_time_epoch_ms: int = 0
    fec_decoder: str = DEFAULT_FEC_DECODER

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "signal_threshold",
            float(_clamp("signal_threshold", float(self.signal_threshold), 0.01, 0.99)),
        )
        object.__setattr__(
            self, "max_decodes", int(_clamp("max_decodes", int(self.max_decodes), 1, 20))
        )
        object.__setattr__(
            self,
            "center_frequency_hz",
            _check_frequency("center_frequency_hz", self.center_frequency_hz),
        )
        object.__setattr__(
            self, "expected_start_time_epoch_ms", int(self.expected_start_time_epoch_ms)
        )
        if self.fec_decoder not in FEC_DECODERS:
            raise ValueError(
                f"Unknown FEC decoder {self.fec_decoder!r}; choose from {sorted(FEC_DECODERS)}"
            )

    @classmethod
    def from_env(cls) -> "DecoderConfig":
        """Build from ``WSPRR_CENTER_FREQ``, ``WSPRR_THRESHOLD``,
        ``WSPRR_MULTI_DECODE``, ``WSPRR_MAX_DECODES``, ``WSPRR_REPORT_SNR``,
        ``WSPRR_EXPECTED_START_MS`` and ``WSPRR_FEC_DECODER``."""
        d = cls()
        return cls(
            center_frequency_hz=_env_float(_ENV_PREFIX + "CENTER_FREQ", d.center_frequency_hz),
            signal_threshold=_env_float(_ENV_PREFIX + "THRESHOLD", d.signal_threshold),
            multi_decoder_enabled=_env_bool(_ENV_PREFIX + "MULTI_DECODE", d.multi_decoder_enabled),
            max_decodes=_env_int(_ENV_PREFIX + "MAX_DECODES", d.max_decodes),
            report_snr=_env_bool(_ENV_PREFIX + "REPORT_SNR", d.report_snr),
            expected_start_time_epoch_ms=_env_int(
                _ENV_PREFIX + "EXPECTED_START_MS", d.expected_start_time_epoch_ms
            ),
            fec_decoder=_env_str(_ENV_PREFIX + "FEC_DECODER", d.fec_decoder),
        )

    def updated(self, **changes: Any) -> "DecoderConfig":
        return replace(self, **changes)


def as_dict(config) -> Dict[str, Any]:
    """Return the fields of ``config`` as a plain dictionary."""
    return {f.name: getattr(config, f.name) for f in fields(config)}
