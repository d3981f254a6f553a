"""Source encoding of WSPR messages.

A standard message carries a callsign (28 bits) followed by a 4-character
Maidenhead locator and a power level (22 bits), 50 bits in total.
"""
import numpy as np

from . import (
    CALLSIGN_ALPHABET,
    CALLSIGN_BITS,
    GRID_POWER_BITS,
    MESSAGE_BITS,
    is_valid_grid,
)

C1 = CALLSIGN_ALPHABET                 # 37 symbols, space allowed
C2 = CALLSIGN_ALPHABET[:36]            # 0-9A-Z
C3 = CALLSIGN_ALPHABET[:10]            # digits
C4 = CALLSIGN_ALPHABET[10:]            # A-Z and space

MAXCALL = 37 * 36 * 10 * 27 * 27 * 27
MAXGRID4 = 18 * 18 * 10 * 10

MIN_POWER_DBM = 0
MAX_POWER_DBM = 60


class MessageFormatError(ValueError):
    """Raised when a message field cannot be represented in a WSPR frame."""


def normalize_callsign(callsign: str) -> str:
    """Return ``callsign`` laid out in the 6 packed character positions.

    Compound callsigns are reduced by dropping the ``/`` separators.  This is
    a simplification; portable prefixes and suffixes are not encoded the way
    type 2/3 WSPR messages do.
    """
    call = callsign.strip().upper().replace("/", "")
    # The packed form needs a digit in the third position; ``W1AW`` becomes
    # `` W1AW``.
    if len(call) >= 2 and call[1].isdigit() and (len(call) < 3 or not call[2].isdigit()):
        call = " " + call
    if len(call) > 6:
        raise MessageFormatError(f"Callsign too long: {callsign!r}")
    return call.ljust(6)


def pack_callsign(callsign: str) -> int:
    """Pack ``callsign`` into a 28-bit integer."""
    call = normalize_callsign(callsign)
    tables = (C1, C2, C3, C4, C4, C4)
    n = 0
    for pos, (ch, table) in enumerate(zip(call, tables)):
        idx = table.find(ch)
        if idx < 0:
            raise MessageFormatError(
                f"Character {ch!r} not allowed at position {pos} of callsign {callsign!r}"
            )
        n = n * len(table) + idx
    return n


def unpack_callsign(n: int) -> str:
    """Return the callsign packed in ``n``; the inverse of :func:`pack_callsign`."""
    if not 0 <= n < MAXCALL:
        raise MessageFormatError(f"Packed callsign out of range: {n}")
    i6 = n % 27
    n //= 27
    i5 = n % 27
    n //= 27
    i4 = n % 27
    n //= 27
    i3 = n % 10
    n //= 10
    i2 = n % 36
    i1 = n // 36
    s = C1[i1] + C2[i2] + C3[i3] + C4[i4] + C4[i5] + C4[i6]
    return s.strip()


def power_to_code(power_dbm: int) -> int:
    """Return the 6-bit power code for ``power_dbm``."""
    return int(min(max(int((power_dbm + 30) / 2.0 + 0.5), 0), 63))


def code_to_power(code: int) -> int:
    """Return the power in dBm carried by power code ``code``."""
    return code * 2 - 30


def pack_grid_and_power(grid: str, power_dbm: int) -> int:
    """Pack a 4-character locator and a power level into 22 bits."""
    grid = grid.strip().upper()
    if not is_valid_grid(grid):
        raise MessageFormatError(f"Invalid Maidenhead grid format: {grid!r}")
    n = ord(grid[0]) - ord("A")
    n = n * 18 + (ord(grid[1]) - ord("A"))
    n = n * 10 + int(grid[2])
    n = n * 10 + int(grid[3])
    return n * 64 + power_to_code(power_dbm)


def unpack_grid_and_power(n: int) -> tuple[str, int]:
    """Return ``(grid, power_dbm)`` packed in ``n``."""
    code = n % 64
    n //= 64
    if not 0 <= n < MAXGRID4:
        raise MessageFormatError(f"Packed grid out of range: {n}")
    j4 = n % 10
    n //= 10
    j3 = n % 10
    n //= 10
    j2 = n % 18
    j1 = n // 18
    grid = f"{chr(j1 + 65)}{chr(j2 + 65)}{j3}{j4}"
    return grid, code_to_power(code)


def _int_to_bits(value: int, width: int) -> np.ndarray:
    return np.array([(value >> (width - 1 - i)) & 1 for i in range(width)], dtype=np.uint8)


def _bits_to_int(bits) -> int:
    n = 0
    for b in bits:
        n = (n << 1) | int(b)
    return n


def validate_power(power_dbm: int) -> int:
    if not MIN_POWER_DBM <= power_dbm <= MAX_POWER_DBM:
        raise MessageFormatError(
            f"Power {power_dbm} dBm outside {MIN_POWER_DBM}..{MAX_POWER_DBM} dBm"
        )
    return power_dbm


def pack_message(callsign: str, grid: str, power_dbm: int) -> np.ndarray:
    """Return the 50 message bits for a standard WSPR message."""
    validate_power(power_dbm)
    ncall = pack_callsign(callsign)
    ngrid = pack_grid_and_power(grid, power_dbm)
    return np.concatenate(
        [_int_to_bits(ncall, CALLSIGN_BITS), _int_to_bits(ngrid, GRID_POWER_BITS)]
    )


def pack_raw_message(callsign: str, grid: str, power_dbm: int) -> np.ndarray:
    """Return the 50 message bits holding the ASCII text ``CALL|GRID|PdBm``.

    Only the first 50 bits of the text fit.  Used for test transmissions;
    receivers cannot recover such messages as WSPR spots.
    """
    text = f"{callsign}|{grid}|{power_dbm}dBm"
    bits = np.zeros(MESSAGE_BITS, dtype=np.uint8)
    for i, ch in enumerate(text.encode("ascii", errors="replace")):
        for j in range(8):
            k = i * 8 + j
            if k >= MESSAGE_BITS:
                return bits
            bits[k] = (ch >> (7 - j)) & 1
    return bits


def unpack_message(bits) -> tuple[str, str, int]:
    """Return ``(callsign, grid, power_dbm)`` from 50 message bits.

    Raises :class:`MessageFormatError` if the bits do not form a valid
    standard message.
    """
    if len(bits) != MESSAGE_BITS:
        raise ValueError(f"message must contain {MESSAGE_BITS} bits")
    ncall = _bits_to_int(bits[:CALLSIGN_BITS])
    ngrid = _bits_to_int(bits[CALLSIGN_BITS:])
    callsign = unpack_callsign(ncall)
    grid, power = unpack_grid_and_power(ngrid)
    if not callsign:
        raise MessageFormatError("Empty callsign")
    if not MIN_POWER_DBM <= power <= MAX_POWER_DBM:
        raise MessageFormatError(f"Power {power} dBm out of range")
    return callsign, grid, power
