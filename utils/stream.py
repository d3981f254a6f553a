"""Pull-based PCM streams.

Capture code produces chunks of 16-bit PCM bytes; the decoder wants one
transmission's worth of audio.  The helpers here connect the two without
tying either side to a particular thread or event-loop model: consumers
simply iterate and the next chunk is produced when they ask for it.
"""
import logging
import threading
from typing import Callable, Iterable, Iterator, Optional

import numpy as np

from . import TRANSMISSION_SAMPLES, bytes_to_samples, samples_to_bytes
from .ringbuf import CircularBuffer

logger = logging.getLogger(__name__)

# Delay between polls of an empty buffer.
POLL_INTERVAL_SEC = 0.01
DEFAULT_CHUNK_SAMPLES = 4096


class PcmStream:
    """Lazy, restartable sequence of PCM byte chunks.

    ``factory`` is called once per iteration and must return a fresh
    iterable of ``bytes``; iterating the stream twice therefore replays the
    source from its beginning when the factory supports it.
    """

    def __init__(self, factory: Callable[[], Iterable[bytes]]) -> None:
        self._factory = factory

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._factory():
            if chunk:
                yield bytes(chunk)

    @classmethod
    def from_bytes(cls, data: bytes, chunk_size: int = 2 * DEFAULT_CHUNK_SAMPLES) -> "PcmStream":
        """Stream ``data`` in ``chunk_size`` byte pieces."""
        if chunk_size <= 0 or chunk_size % 2:
            raise ValueError("chunk_size must be a positive even number of bytes")

        def chunks():
            for i in range(0, len(data), chunk_size):
                yield data[i : i + chunk_size]

        return cls(chunks)


class BufferedPcmSource:
    """Drain int16 samples from a :class:`CircularBuffer` as byte chunks.

    Iteration polls the buffer every ``poll_interval`` seconds while it is
    empty and stops once :meth:`close` has been called and the buffer has
    been drained.
    """

    def __init__(
        self,
        buffer: CircularBuffer,
        chunk_samples: int = DEFAULT_CHUNK_SAMPLES,
        poll_interval: float = POLL_INTERVAL_SEC,
    ) -> None:
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be positive")
        self.buffer = buffer
        self.chunk_samples = chunk_samples
        self.poll_interval = poll_interval
        self._closed = threading.Event()

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, data: bytes) -> int:
        """Write PCM ``data`` into the buffer; returns the samples accepted."""
        written = self.buffer.write(bytes_to_samples(data))
        if written * 2 < len(data) - (len(data) % 2):
            logger.warning(
                "Ring buffer full, dropped %d samples", len(data) // 2 - written
            )
        return written

    def __iter__(self) -> Iterator[bytes]:
        dest = np.empty(self.chunk_samples, dtype=np.int16)
        while True:
            n = self.buffer.read(dest)
            if n:
                yield samples_to_bytes(dest[:n])
                continue
            if self._closed.is_set():
                # Samples pushed just before close are still drained.
                if self.buffer.is_empty():
                    return
                continue
            # ``wait`` returns early when the source is closed.
            self._closed.wait(self.poll_interval)


def collect_pcm(
    chunks: Iterable[bytes], n_samples: Optional[int] = TRANSMISSION_SAMPLES
) -> bytes:
    """Concatenate ``chunks`` until ``n_samples`` samples are gathered.

    Stops early when the source runs dry; the result may then be shorter
    than requested.  ``n_samples=None`` collects everything.
    """
    wanted = None if n_samples is None else 2 * n_samples
    parts = []
    total = 0
    for chunk in chunks:
        parts.append(chunk)
        total += len(chunk)
        if wanted is not None and total >= wanted:
            break
    data = b"".join(parts)
    if wanted is not None:
        data = data[:wanted]
    logger.debug("Collected %d bytes of PCM", len(data))
    return data
