"""Thread-safe FIFO of framed messages waiting to be written to the receiver."""

import threading
from collections import deque


class OutboundQueue:
    """
    Unbounded FIFO of already-framed byte buffers plus a wake-up signal.

    Producers call enqueue() from any thread; the session worker waits on the
    signal and drains everything in insertion order.
    """

    def __init__(self):
        self._frames: deque[bytes] = deque()
        self._lock = threading.Lock()
        self._wake = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)

    def enqueue(self, frame: bytes) -> None:
        """Append a frame and wake the consumer."""
        with self._lock:
            self._frames.append(frame)
        self._wake.set()

    def drain_all(self) -> list[bytes]:
        """Remove and return every queued frame, oldest first."""
        with self._lock:
            frames = list(self._frames)
            self._frames.clear()
        return frames

    def clear(self) -> int:
        """Discard queued frames. Returns how many were dropped."""
        with self._lock:
            dropped = len(self._frames)
            self._frames.clear()
        return dropped

    def wait(self, timeout: float) -> bool:
        """
        Block until woken or until timeout elapses.

        The signal is re-armed before returning, so the caller must drain
        afterwards to pick up anything enqueued meanwhile.
        """
        woken = self._wake.wait(timeout)
        self._wake.clear()
        return woken

    def wake(self) -> None:
        """Wake a blocked consumer without enqueuing anything."""
        self._wake.set()
