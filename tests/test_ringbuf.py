import threading

import numpy as np
import pytest

from utils.ringbuf import BufferConsistencyError, CircularBuffer


def test_write_is_partial_when_full():
    buf = CircularBuffer(8)
    assert buf.write(list(range(10))) == 8
    assert buf.is_full()
    assert buf.write([99]) == 0
    assert not buf.write_one(99)
    dest = [None] * 10
    assert buf.read(dest) == 8
    assert dest[:8] == list(range(8))
    assert buf.is_empty()
    assert buf.read(dest) == 0


def test_offset_and_length():
    buf = CircularBuffer(8)
    assert buf.write([1, 2, 3, 4, 5], offset=1, length=3) == 3
    dest = [0] * 6
    assert buf.read(dest, offset=2, length=2) == 2
    assert dest == [0, 0, 2, 3, 0, 0]
    assert buf.available() == 1
    assert buf.write([1, 2], offset=1, length=5) == 1


def test_wraparound_preserves_order():
    buf = CircularBuffer(5)
    buf.write([1, 2, 3, 4])
    dest = [0] * 3
    buf.read(dest)
    assert buf.write([5, 6, 7, 8]) == 4
    out = [0] * 5
    assert buf.read(out) == 5
    assert out == [4, 5, 6, 7, 8]


def test_single_element_ops():
    buf = CircularBuffer(2)
    assert buf.peek() is None
    assert buf.read_one() is None
    assert buf.write_one("a")
    assert buf.write_one("b")
    assert buf.peek() == "a"
    assert len(buf) == 2
    assert buf.read_one() == "a"
    assert buf.read_one() == "b"
    assert buf.read_one() is None


def test_stores_sequences_as_elements():
    buf = CircularBuffer(4)
    assert buf.write([(1, 2), (3, 4)]) == 2
    assert buf.read_one() == (1, 2)


def test_numpy_backing():
    buf = CircularBuffer(6, dtype=np.int16)
    assert buf.write(np.arange(4, dtype=np.int16)) == 4
    dest = np.zeros(3, dtype=np.int16)
    buf.read(dest)
    assert buf.write(np.array([10, 11, 12, 13, 14], dtype=np.int16)) == 5
    out = np.zeros(6, dtype=np.int16)
    assert buf.read(out) == 6
    assert out.tolist() == [3, 10, 11, 12, 13, 14]


def test_process_in_place_commits_consumed_count():
    buf = CircularBuffer(8)
    buf.write(list(range(6)))
    dest = [0] * 4
    buf.read(dest)
    buf.write([6, 7, 8, 9, 10])
    seen = []

    def consume(view):
        seen.append(view.as_list())
        assert len(view.first_segment) == 4
        assert len(view.second_segment) == 3
        assert view.get(4) == 8
        return 5

    assert buf.process_in_place(10, consume) == 5
    assert seen == [[4, 5, 6, 7, 8, 9, 10]]
    assert buf.available() == 2
    assert buf.read_one() == 9


def test_process_in_place_limits_view():
    buf = CircularBuffer(8)
    buf.write(list(range(5)))
    assert buf.process_in_place(2, lambda v: len(v)) == 2
    assert buf.peek() == 2


def test_process_in_place_rejects_over_consumption():
    buf = CircularBuffer(4)
    buf.write([1, 2])
    with pytest.raises(BufferConsistencyError):
        buf.process_in_place(4, lambda v: 3)
    assert buf.available() == 2


def test_view_index_out_of_range():
    buf = CircularBuffer(4)
    buf.write([1])

    def probe(view):
        with pytest.raises(IndexError):
            view.get(1)
        return 0

    buf.process_in_place(4, probe)


def test_clear_and_capacity():
    buf = CircularBuffer(3)
    buf.write([1, 2, 3])
    buf.clear()
    assert buf.is_empty()
    assert buf.capacity == 3
    assert buf.write([4, 5, 6, 7]) == 3


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        CircularBuffer(0)


def test_concurrent_producer_consumer():
    buf = CircularBuffer(16, dtype=np.int32)
    total = 5000
    received = []

    def producer():
        i = 0
        while i < total:
            i += buf.write(np.arange(i, min(i + 7, total), dtype=np.int32))

    t = threading.Thread(target=producer)
    t.start()
    dest = np.zeros(5, dtype=np.int32)
    while len(received) < total:
        n = buf.read(dest)
        received.extend(dest[:n].tolist())
    t.join()
    assert received == list(range(total))
