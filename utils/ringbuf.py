"""Fixed-capacity ring buffer shared between one producer and one consumer."""
import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BufferConsistencyError(RuntimeError):
    """Raised when a caller reports consuming more elements than it was given."""


class BufferView(Generic[T]):
    """Read-only window over the readable part of a :class:`CircularBuffer`.

    ``first_segment`` runs from the read cursor towards the end of the backing
    array and ``second_segment`` holds the elements that wrapped around to
    its start.  Both are numpy views, not copies, and are only valid inside
    the callback they were passed to.
    """

    def __init__(self, first_segment: np.ndarray, second_segment: np.ndarray) -> None:
        self.first_segment = first_segment
        self.second_segment = second_segment

    def __len__(self) -> int:
        return len(self.first_segment) + len(self.second_segment)

    def get(self, index: int) -> T:
        if not 0 <= index < len(self):
            raise IndexError(f"index {index} out of range for view of {len(self)}")
        n1 = len(self.first_segment)
        if index < n1:
            return self.first_segment[index]
        return self.second_segment[index - n1]

    __getitem__ = get

    def as_list(self) -> List[T]:
        return list(self.first_segment) + list(self.second_segment)


class CircularBuffer(Generic[T]):
    """Thread-safe FIFO of at most ``capacity`` elements.

    Writes never block and never grow the buffer: whatever does not fit is
    rejected and the caller learns how much was accepted.  Reads likewise
    return what is available.  A single re-entrant lock guards all state, so
    callbacks passed to :meth:`process_in_place` may query the buffer.

    Parameters
    ----------
    capacity:
        Maximum number of stored elements.
    dtype:
        Optional numpy dtype for the backing array, e.g. ``np.int16`` for PCM.
        Arbitrary Python objects are stored when omitted.
    """

    def __init__(self, capacity: int, dtype=None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._buffer = np.empty(capacity, dtype=object if dtype is None else dtype)
        self._holds_objects = self._buffer.dtype == object
        self._read_pos = 0
        self._write_pos = 0
        self._available = 0
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return self._buffer.shape[0]

    def write(self, items, offset: int = 0, length: Optional[int] = None) -> int:
        """Append up to ``length`` elements of ``items`` starting at ``offset``.

        Returns the number of elements accepted, which is less than
        requested when the buffer fills up.
        """
        if length is None:
            length = len(items) - offset
        length = min(length, len(items) - offset)
        if length <= 0:
            return 0
        with self._lock:
            space = self.capacity - self._available
            if space <= 0:
                return 0
            count = min(length, space)
            chunk = items[offset : offset + count]
            if self._holds_objects:
                # Element-wise so that sequence items are not broadcast.
                for k in range(count):
                    self._buffer[(self._write_pos + k) % self.capacity] = chunk[k]
            else:
                first = min(count, self.capacity - self._write_pos)
                self._buffer[self._write_pos : self._write_pos + first] = chunk[:first]
                if count > first:
                    self._buffer[: count - first] = chunk[first:count]
            self._write_pos = (self._write_pos + count) % self.capacity
            self._available += count
            return count

    def read(self, dest, offset: int = 0, length: Optional[int] = None) -> int:
        """Move up to ``length`` elements into ``dest`` starting at ``offset``.

        Returns the number of elements copied; zero when the buffer is empty.
        """
        if length is None:
            length = len(dest) - offset
        length = min(length, len(dest) - offset)
        if length <= 0:
            return 0
        with self._lock:
            if self._available <= 0:
                return 0
            count = min(length, self._available)
            first = min(count, self.capacity - self._read_pos)
            head = self._buffer[self._read_pos : self._read_pos + first]
            tail = self._buffer[: count - first]
            if isinstance(dest, np.ndarray):
                dest[offset : offset + first] = head
                dest[offset + first : offset + count] = tail
            else:
                dest[offset : offset + count] = head.tolist() + tail.tolist()
            if self._holds_objects:
                head[:] = None
                tail[:] = None
            self._read_pos = (self._read_pos + count) % self.capacity
            self._available -= count
            return count

    def write_one(self, item: T) -> bool:
        with self._lock:
            if self._available >= self.capacity:
                return False
            self._buffer[self._write_pos] = item
            self._write_pos = (self._write_pos + 1) % self.capacity
            self._available += 1
            return True

    def read_one(self) -> Optional[T]:
        """Remove and return the oldest element, or ``None`` if empty."""
        with self._lock:
            if self._available <= 0:
                return None
            item = self._buffer[self._read_pos]
            if self._holds_objects:
                self._buffer[self._read_pos] = None
            self._read_pos = (self._read_pos + 1) % self.capacity
            self._available -= 1
            return item

    def peek(self) -> Optional[T]:
        """Return the oldest element without consuming it."""
        with self._lock:
            if self._available <= 0:
                return None
            return self._buffer[self._read_pos]

    def process_in_place(self, max_elements: int, fn: Callable[[BufferView[T]], int]) -> int:
        """Hand up to ``max_elements`` readable elements to ``fn`` without copying.

        ``fn`` receives a :class:`BufferView` and returns how many elements it
        consumed; exactly that many are then marked as read.

        Raises
        ------
        BufferConsistencyError
            If ``fn`` reports consuming more elements than it was offered, or
            a negative count.
        """
        with self._lock:
            count = min(max(max_elements, 0), self._available)
            first = min(count, self.capacity - self._read_pos)
            view: BufferView[T] = BufferView(
                self._buffer[self._read_pos : self._read_pos + first],
                self._buffer[: count - first],
            )
            consumed = int(fn(view))
            if consumed < 0 or consumed > count:
                raise BufferConsistencyError(
                    f"callback consumed {consumed} elements but only {count} were available"
                )
            if self._holds_objects and consumed:
                n1 = min(consumed, first)
                self._buffer[self._read_pos : self._read_pos + n1] = None
                self._buffer[: consumed - n1] = None
            self._read_pos = (self._read_pos + consumed) % self.capacity
            self._available -= consumed
            return consumed

    def available(self) -> int:
        with self._lock:
            return self._available

    def is_empty(self) -> bool:
        with self._lock:
            return self._available == 0

    def is_full(self) -> bool:
        with self._lock:
            return self._available == self.capacity

    def clear(self) -> None:
        with self._lock:
            if self._holds_objects:
                self._buffer[:] = None
            self._read_pos = 0
            self._write_pos = 0
            self._available = 0
        logger.debug("Cleared ring buffer of capacity %d", self.capacity)

    def __len__(self) -> int:
        return self.available()
