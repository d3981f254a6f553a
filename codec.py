"""Value-in/value-out WSPR codec.

``WsprEncoder`` turns a message into one transmission of 16-bit PCM,
``WsprDecoder`` turns PCM back into text, and ``WsprCodec`` bundles both
behind one configuration.  Codecs are plain objects owned by the caller;
the registry at the bottom only maps names to constructors.
"""
import logging
import time
from dataclasses import fields
from typing import Any, Callable, Dict, List, Optional

from config import DecoderConfig, EncoderConfig
from demod import DecodedMessage, decode_full_period
from utils import RealSamples, SAMPLE_RATE_IN_HZ, TRANSMISSION_SAMPLES, bytes_to_samples
from utils.pack import MessageFormatError
from utils.prof import PROFILER
from utils.timing import is_wspr_transmit_time, seconds_until_next_transmit_window
from utils.tx import generate_wspr_pcm

logger = logging.getLogger(__name__)

TOO_SHORT_MESSAGE = "Audio data too short for WSPR decoding"
NO_SIGNALS_MESSAGE = "No WSPR signals decoded"
ERROR_PREFIX = "Error decoding WSPR: "
# Tolerated distance between the expected and the actual start of decoding.
START_TIME_TOLERANCE_MS = 5000


def parse_payload(data: bytes) -> tuple[str, str, int]:
    """Split ``b"CALL|GRID|POWER"`` into its fields.

    A trailing ``dBm`` on the power is accepted.
    """
    parts = data.decode("utf-8").split("|")
    if len(parts) < 3:
        raise MessageFormatError("Input data must be in format 'CALLSIGN|GRID|POWER'")
    try:
        power = int(parts[2].replace("dBm", "").strip())
    except ValueError:
        raise MessageFormatError(f"Invalid power level: {parts[2]!r}") from None
    return parts[0], parts[1], power


class WsprEncoder:
    id = "wspr_encoder"
    name = "WSPR Encoder"
    description = "Encodes callsign, grid and power into WSPR audio"

    def __init__(self, config: Optional[EncoderConfig] = None) -> None:
        self.config = config or EncoderConfig()

    def configure(self, **changes: Any) -> None:
        self.config = self.config.updated(**changes)
        logger.debug("Encoder configured: %s", self.config)

    def encode(self, callsign: str, grid: str, power_dbm: int) -> bytes:
        """Return one transmission as PCM bytes, or ``b""`` if the message is invalid."""
        cfg = self.config
        try:
            return generate_wspr_pcm(
                callsign,
                grid,
                power_dbm,
                center_freq=cfg.center_frequency_hz,
                amplitude=cfg.amplitude_scaling,
                ramp=cfg.apply_ramp_up_down,
                encoded_callsign=cfg.use_encoded_callsigns,
            )
        except MessageFormatError as e:
            logger.error("Invalid WSPR message: %s", e)
            return b""
        except Exception:
            logger.exception("Error encoding WSPR data")
            return b""

    def encode_payload(self, data: bytes) -> bytes:
        """Encode a ``b"CALL|GRID|POWER"`` payload."""
        try:
            callsign, grid, power = parse_payload(data)
        except (MessageFormatError, UnicodeDecodeError) as e:
            logger.error("Invalid WSPR payload: %s", e)
            return b""
        return self.encode(callsign, grid, power)


class WsprDecoder:
    id = "wspr_decoder"
    name = "WSPR Decoder"
    description = "Decodes Weak Signal Propagation Reporter (WSPR) signals"

    def __init__(self, config: Optional[DecoderConfig] = None) -> None:
        self.config = config or DecoderConfig()

    def configure(self, **changes: Any) -> None:
        self.config = self.config.updated(**changes)
        logger.debug("Decoder configured: %s", self.config)

    def _check_timing(self) -> None:
        expected = self.config.expected_start_time_epoch_ms
        if expected <= 0:
            return
        diff = abs(int(time.time() * 1000) - expected)
        if diff > START_TIME_TOLERANCE_MS:
            logger.warning("Audio data timing offset: %ds from expected start", diff // 1000)

    def decode_messages(self, pcm: bytes) -> List[DecodedMessage]:
        """Return every message decoded from ``pcm``.

        Raises ``ValueError`` if ``pcm`` holds less than one transmission.
        """
        samples = bytes_to_samples(pcm)
        if len(samples) < TRANSMISSION_SAMPLES:
            raise ValueError(
                f"{TOO_SHORT_MESSAGE}: {len(samples)} samples, need {TRANSMISSION_SAMPLES}"
            )
        self._check_timing()
        cfg = self.config
        with PROFILER.section("decode.total"):
            return decode_full_period(
                RealSamples(samples, SAMPLE_RATE_IN_HZ),
                center_freq=cfg.center_frequency_hz,
                threshold=cfg.signal_threshold,
                max_decodes=cfg.max_decodes,
                multi_decoder=cfg.multi_decoder_enabled,
                fec_decoder=cfg.fec_decoder,
            )

    def decode(self, pcm: bytes) -> str:
        """Return one line per decoded message, or a diagnostic string."""
        logger.debug("Starting WSPR decoding of %d bytes", len(pcm))
        if len(pcm) // 2 < TRANSMISSION_SAMPLES:
            logger.warning(
                "%s: %d samples, need %d", TOO_SHORT_MESSAGE, len(pcm) // 2, TRANSMISSION_SAMPLES
            )
            return TOO_SHORT_MESSAGE
        try:
            messages = self.decode_messages(pcm)
        except Exception as e:
            logger.exception("Error decoding WSPR data")
            return f"{ERROR_PREFIX}{e}"
        if not messages:
            logger.info(NO_SIGNALS_MESSAGE)
            return NO_SIGNALS_MESSAGE
        return "\n".join(m.to_line(self.config.report_snr) for m in messages)


_ENCODER_FIELDS = {f.name for f in fields(EncoderConfig)}
_DECODER_FIELDS = {f.name for f in fields(DecoderConfig)}


class WsprCodec:
    id = "wspr"
    name = "WSPR Codec"
    description = "Encodes and decodes Weak Signal Propagation Reporter (WSPR) signals."

    def __init__(
        self,
        encoder_config: Optional[EncoderConfig] = None,
        decoder_config: Optional[DecoderConfig] = None,
    ) -> None:
        self.encoder = WsprEncoder(encoder_config)
        self.decoder = WsprDecoder(decoder_config)

    def configure(self, **params: Any) -> None:
        """Update encoder and decoder settings by field name.

        ``center_frequency_hz`` applies to both.
        """
        unknown = set(params) - _ENCODER_FIELDS - _DECODER_FIELDS
        if unknown:
            raise ValueError(f"Unknown WSPR settings: {sorted(unknown)}")
        enc = {k: v for k, v in params.items() if k in _ENCODER_FIELDS}
        dec = {k: v for k, v in params.items() if k in _DECODER_FIELDS}
        if enc:
            self.encoder.configure(**enc)
        if dec:
            self.decoder.configure(**dec)

    def encode(self, callsign: str, grid: str, power_dbm: int) -> bytes:
        return self.encoder.encode(callsign, grid, power_dbm)

    def encode_payload(self, data: bytes) -> bytes:
        return self.encoder.encode_payload(data)

    def encode_wspr_message(self, callsign: str, grid: str, power_dbm: int) -> bytes:
        """Encode through the ``CALL|GRID|POWER`` payload form."""
        return self.encoder.encode_payload(f"{callsign}|{grid}|{power_dbm}".encode("utf-8"))

    def decode(self, pcm: bytes) -> str:
        return self.decoder.decode(pcm)

    def decode_messages(self, pcm: bytes) -> List[DecodedMessage]:
        return self.decoder.decode_messages(pcm)

    @staticmethod
    def is_wspr_transmit_time() -> bool:
        return is_wspr_transmit_time()

    @staticmethod
    def seconds_until_next_transmit_window() -> int:
        return seconds_until_next_transmit_window()


_CODECS: Dict[str, Callable[[], Any]] = {}


def register_codec(codec_id: str, factory: Callable[[], Any]) -> None:
    """Register ``factory`` as the constructor for ``codec_id``."""
    _CODECS[codec_id] = factory
    logger.debug("Registered codec %s", codec_id)


def create_codec(codec_id: str, **kwargs: Any):
    """Return a new codec instance for ``codec_id``."""
    try:
        factory = _CODECS[codec_id]
    except KeyError:
        raise KeyError(f"Codec not found: {codec_id}") from None
    return factory(**kwargs)


def available_codecs() -> List[str]:
    return sorted(_CODECS)


def codec_info(codec_id: str) -> Optional[Dict[str, str]]:
    """Return identifying details of ``codec_id``, or ``None`` if unknown."""
    if codec_id not in _CODECS:
        return None
    codec = _CODECS[codec_id]()
    return {
        "id": codec.id,
        "name": codec.name,
        "description": codec.description,
        "encoder_id": codec.encoder.id,
        "decoder_id": codec.decoder.id,
    }


register_codec(WsprCodec.id, WsprCodec)
