"""Convolutional coding and bit interleaving for WSPR frames."""
import heapq
import logging
from typing import Callable, Dict, Optional

import numpy as np

from . import BIT_REVERSAL_TABLE, CONSTRAINT_LENGTH, MESSAGE_BITS, POLY1, POLY2

logger = logging.getLogger(__name__)

# Tap masks with bit ``j`` set when the polynomial uses the message bit ``j``
# positions in the past.
_MASK1 = sum(bit << j for j, bit in enumerate(POLY1))
_MASK2 = sum(bit << j for j, bit in enumerate(POLY2))
_STATE_MASK = (1 << CONSTRAINT_LENGTH) - 1

# Probability clamp applied before taking logs of soft bit estimates.
_P_MIN = 1e-6
# Code rate used as the Fano metric bias.
_RATE = 0.5
DEFAULT_NODE_BUDGET = 20000


def _parity(x: int) -> int:
    return bin(x).count("1") & 1


def conv_encode(bits) -> np.ndarray:
    """Return the rate 1/2 convolutional encoding of ``bits``.

    Each input bit produces the pair ``[parity1, parity2]``, so the output
    is twice as long as the input.
    """
    bits = np.asarray(bits, dtype=np.uint8)
    out = np.zeros(2 * len(bits), dtype=np.uint8)
    state = 0
    for i, b in enumerate(bits):
        state = ((state << 1) | int(b)) & _STATE_MASK
        out[2 * i] = _parity(state & _MASK1)
        out[2 * i + 1] = _parity(state & _MASK2)
    return out


def interleave_order(length: int) -> np.ndarray:
    """Return destination indices of the bit-reversal interleaver.

    The 256-entry table is walked in order and entries outside ``length``
    are skipped, which gives a permutation for any length up to 256.
    """
    if not 0 < length <= len(BIT_REVERSAL_TABLE):
        raise ValueError(f"interleaver length must be in 1..{len(BIT_REVERSAL_TABLE)}")
    return np.array([r for r in BIT_REVERSAL_TABLE if r < length], dtype=int)


def interleave(bits) -> np.ndarray:
    bits = np.asarray(bits)
    order = interleave_order(len(bits))
    out = np.empty_like(bits)
    out[order] = bits
    return out


def deinterleave(bits) -> np.ndarray:
    """Inverse of :func:`interleave`; also accepts soft values."""
    bits = np.asarray(bits)
    order = interleave_order(len(bits))
    return bits[order]


def _bit_metrics(llrs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return per code bit Fano metrics for hypotheses 0 and 1.

    Positive LLRs favour a one.
    """
    p1 = 1.0 / (1.0 + np.exp(-np.clip(llrs, -50.0, 50.0)))
    p1 = np.clip(p1, _P_MIN, 1.0 - _P_MIN)
    m1 = np.log2(2.0 * p1) - _RATE
    m0 = np.log2(2.0 * (1.0 - p1)) - _RATE
    return m0, m1


def sequential_decode(
    llrs,
    n_bits: int = MESSAGE_BITS,
    *,
    max_nodes: int = DEFAULT_NODE_BUDGET,
) -> Optional[np.ndarray]:
    """Stack-algorithm sequential decoding of ``2 * n_bits`` soft code bits.

    Parameters
    ----------
    llrs:
        Log-likelihood ratios ``log(P(1)/P(0))`` for every code bit in
        transmitted (deinterleaved) order.
    n_bits:
        Number of message bits.
    max_nodes:
        Number of path extensions allowed before giving up.

    Returns
    -------
    numpy.ndarray or None
        Decoded message bits, or ``None`` if the search ran out of budget or
        the best full-length path has a negative metric.
    """
    llrs = np.asarray(llrs, dtype=float)
    if llrs.shape[0] != 2 * n_bits:
        raise ValueError(f"expected {2 * n_bits} soft bits, got {llrs.shape[0]}")
    m0, m1 = _bit_metrics(llrs)
    metric = (m0, m1)

    # Heap entries: (-metric, -depth, state, path)
    heap = [(0.0, 0, 0, 0)]
    expanded = 0
    while heap:
        neg_metric, neg_depth, state, path = heapq.heappop(heap)
        depth = -neg_depth
        if depth == n_bits:
            if -neg_metric < 0:
                logger.debug("Sequential decode ended with negative metric %.2f", -neg_metric)
                return None
            return np.array(
                [(path >> (n_bits - 1 - i)) & 1 for i in range(n_bits)], dtype=np.uint8
            )
        expanded += 1
        if expanded > max_nodes:
            logger.debug("Sequential decode exhausted node budget of %d", max_nodes)
            return None
        for b in (0, 1):
            nstate = ((state << 1) | b) & _STATE_MASK
            p1 = _parity(nstate & _MASK1)
            p2 = _parity(nstate & _MASK2)
            branch = metric[p1][2 * depth] + metric[p2][2 * depth + 1]
            heapq.heappush(
                heap,
                (neg_metric - branch, neg_depth - 1, nstate, (path << 1) | b),
            )
    return None


def majority_vote_decode(encoded_bits, n_bits: int = MESSAGE_BITS) -> np.ndarray:
    """Tap-voting approximation of the convolutional decoder.

    For every message bit the ones among the code bits it feeds through a
    polynomial tap are counted; the bit is one if at least 32 such votes are
    seen.  This is not a maximum-likelihood decoder and fails on most frames;
    it is kept for compatibility with existing recordings and tests.
    """
    enc = np.asarray(encoded_bits)
    votes_needed = CONSTRAINT_LENGTH
    out = np.zeros(n_bits, dtype=np.uint8)
    for i in range(n_bits):
        votes = 0
        for j in range(CONSTRAINT_LENGTH):
            if i + j < len(enc) // 2:
                k = 2 * (i + j)
                if POLY1[j] == 1 and enc[k] == 1:
                    votes += 1
                if POLY2[j] == 1 and enc[k + 1] == 1:
                    votes += 1
        out[i] = 1 if votes >= votes_needed else 0
    return out


def _sequential_from_llrs(llrs: np.ndarray) -> Optional[np.ndarray]:
    return sequential_decode(llrs)


def _majority_from_llrs(llrs: np.ndarray) -> Optional[np.ndarray]:
    return majority_vote_decode((np.asarray(llrs) > 0).astype(np.uint8))


# Soft code bits in, message bits (or ``None``) out.
FEC_DECODERS: Dict[str, Callable[[np.ndarray], Optional[np.ndarray]]] = {
    "sequential": _sequential_from_llrs,
    "majority": _majority_from_llrs,
}
DEFAULT_FEC_DECODER = "sequential"


def get_fec_decoder(name: str) -> Callable[[np.ndarray], Optional[np.ndarray]]:
    try:
        return FEC_DECODERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown FEC decoder {name!r}; choose from {sorted(FEC_DECODERS)}"
        ) from None
