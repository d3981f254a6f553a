#!/usr/bin/env python3
"""Command line front end: encode a message to audio, decode audio, show timing."""
import argparse
import logging
import sys

from codec import NO_SIGNALS_MESSAGE, TOO_SHORT_MESSAGE, WsprCodec
from config import DecoderConfig, EncoderConfig
from utils import SAMPLE_RATE_IN_HZ, read_wav, samples_to_bytes, write_wav
from utils.fec import FEC_DECODERS
from utils.prof import PROFILER
from utils.stream import PcmStream, collect_pcm
from utils.timing import (
    is_wspr_transmit_time,
    seconds_until_next_transmit_window,
    transmission_duration_seconds,
)

# Bytes read per chunk from raw PCM input.
_READ_CHUNK = 65536


def _file_chunks(path: str):
    if path == "-":
        src = sys.stdin.buffer
        return iter(lambda: src.read(_READ_CHUNK), b"")

    def chunks():
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                yield chunk

    return chunks()


def _load_pcm(path: str, raw: bool) -> bytes:
    if raw:
        return collect_pcm(PcmStream(lambda: _file_chunks(path)), n_samples=None)
    samples = read_wav(path)
    if samples.sample_rate_in_hz != SAMPLE_RATE_IN_HZ:
        raise SystemExit(f"ERROR: expected {SAMPLE_RATE_IN_HZ} Hz audio, got {samples.sample_rate_in_hz} Hz")
    return samples_to_bytes(samples.samples)


def cmd_encode(args) -> int:
    cfg = EncoderConfig.from_env().updated(
        amplitude_scaling=args.amplitude,
        center_frequency_hz=args.freq,
        apply_ramp_up_down=not args.no_ramp,
        use_encoded_callsigns=not args.raw_message,
    )
    codec = WsprCodec(encoder_config=cfg)
    pcm = codec.encode(args.callsign, args.grid, args.power)
    if not pcm:
        print("ERROR: invalid WSPR message", file=sys.stderr)
        return 2
    if args.raw:
        with open(args.output, "wb") as f:
            f.write(pcm)
    else:
        write_wav(args.output, pcm)
    print(f"wrote {len(pcm) // 2} samples ({transmission_duration_seconds():.1f} s) to {args.output}")
    return 0


def cmd_decode(args) -> int:
    changes = {}
    if args.freq is not None:
        changes["center_frequency_hz"] = args.freq
    if args.threshold is not None:
        changes["signal_threshold"] = args.threshold
    if args.max_decodes is not None:
        changes["max_decodes"] = args.max_decodes
    if args.fec is not None:
        changes["fec_decoder"] = args.fec
    if args.single:
        changes["multi_decoder_enabled"] = False
    if args.no_snr:
        changes["report_snr"] = False
    cfg = DecoderConfig.from_env().updated(**changes)
    codec = WsprCodec(decoder_config=cfg)
    text = codec.decode(_load_pcm(args.input, args.raw))
    print(text)
    if text in (TOO_SHORT_MESSAGE, NO_SIGNALS_MESSAGE):
        return 1
    return 0


def cmd_window(args) -> int:
    if is_wspr_transmit_time():
        print("transmit window open")
    else:
        print(f"next transmit window in {seconds_until_next_transmit_window()} s")
    return 0


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="WSPR encoder/decoder")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="more logging (-vv for debug)")
    ap.add_argument("--profile", action="store_true", help="log time spent in each decoder stage")
    sub = ap.add_subparsers(dest="command", required=True)

    enc = sub.add_parser("encode", help="encode a message to 12 kHz audio")
    enc.add_argument("callsign")
    enc.add_argument("grid")
    enc.add_argument("power", type=int, help="power in dBm (0-60)")
    enc.add_argument("-o", "--output", required=True, help="output path")
    enc.add_argument("--raw", action="store_true", help="write raw 16-bit PCM instead of WAV")
    enc.add_argument("--freq", type=float, default=1500.0, help="audio center frequency in Hz")
    enc.add_argument("--amplitude", type=float, default=0.9, help="output level, 0.01-1.0")
    enc.add_argument("--no-ramp", action="store_true", help="disable the fade in/out")
    enc.add_argument("--raw-message", action="store_true", help="pack the message as ASCII (test mode)")
    enc.set_defaults(func=cmd_encode)

    dec = sub.add_parser("decode", help="decode WSPR audio")
    dec.add_argument("input", help="WAV file, or raw PCM with --raw ('-' for stdin)")
    dec.add_argument("--raw", action="store_true", help="input is raw 16-bit little-endian PCM")
    dec.add_argument("--freq", type=float, default=None, help="audio center frequency in Hz")
    dec.add_argument("--threshold", type=float, default=None, help="detection threshold, 0.01-0.99")
    dec.add_argument("--max-decodes", type=int, default=None)
    dec.add_argument("--fec", choices=sorted(FEC_DECODERS), default=None, help="FEC decoder")
    dec.add_argument("--single", action="store_true", help="decode only at the center frequency")
    dec.add_argument("--no-snr", action="store_true", help="omit SNR from the output")
    dec.set_defaults(func=cmd_decode)

    win = sub.add_parser("window", help="show the next transmit window")
    win.set_defaults(func=cmd_window)

    args = ap.parse_args(argv)
    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.profile:
        PROFILER.enabled = True
    try:
        return args.func(args)
    finally:
        if args.profile:
            logging.getLogger().setLevel(logging.INFO)
            PROFILER.log_summary()


if __name__ == "__main__":
    sys.exit(main())
