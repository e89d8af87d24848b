"""
Session loop for one established receiver connection.

A session owns its connection from entry until it closes: it is the only
code that writes to the socket and the only consumer of the outbound queue.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from . import binary_serializer
from .connection import Connection
from .outbound_queue import OutboundQueue
from .types import SessionState

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 10.0
POLL_INTERVAL = 0.1


class SessionEnd(Enum):
    """Why a session finished."""

    STOPPED = "stopped"
    TRANSPORT_ERROR = "transport_error"


class Session:
    """Drains the outbound queue to a connection and keeps it alive with heartbeats."""

    def __init__(
        self,
        connection: Connection,
        queue: OutboundQueue,
        report_factory: Callable[[], bytes | None],
        stop_event: threading.Event,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        poll_interval: float = POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._connection = connection
        self._queue = queue
        self._report_factory = report_factory
        self._stop_event = stop_event
        self._heartbeat_interval = heartbeat_interval
        self._poll_interval = poll_interval
        self._clock = clock
        self._state = SessionState.CONNECTING
        self._last_send = float("-inf")
        self.frames_sent = 0
        self.heartbeats_queued = 0

    @property
    def state(self) -> SessionState:
        return self._state

    def run(self) -> SessionEnd:
        """Run until stopped or until the connection fails. Always closes the connection."""
        try:
            self._enter()
            while not self._stop_event.is_set():
                self._queue.wait(self._poll_interval)
                if self._stop_event.is_set():
                    break
                self._flush()
                self._connection.check_alive()
                self._maybe_queue_heartbeat()
            return SessionEnd.STOPPED
        except OSError as e:
            if self._stop_event.is_set():
                return SessionEnd.STOPPED
            logger.warning(
                f"Disconnected from {self._connection.endpoint} "
                f"({self._connection.address}): {e}"
            )
            return SessionEnd.TRANSPORT_ERROR
        finally:
            self._state = SessionState.CLOSING
            self._connection.close()

    def _enter(self) -> None:
        # Frames queued for a previous session are stale
        dropped = self._queue.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} undelivered frames from previous session")
        frame = self._report_factory()
        if frame is not None:
            self._queue.enqueue(frame)
        self._last_send = self._clock()
        self._state = SessionState.ACTIVE

    def _flush(self) -> None:
        for frame in self._queue.drain_all():
            self._connection.send(frame)
            self.frames_sent += 1
            self._last_send = self._clock()

    def _maybe_queue_heartbeat(self) -> None:
        now = self._clock()
        if now - self._last_send > self._heartbeat_interval:
            self._last_send = now
            self._queue.enqueue(binary_serializer.serialize_heartbeat())
            self.heartbeats_queued += 1
