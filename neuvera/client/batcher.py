from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..events import Event

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    event: Event
    retries: int = 0


class EventBatcher:
    """
    Buffers events and hands them to the transport in enqueue order.

    Flushes when the queue reaches ``max_queue_size``, on the periodic timer
    and on unload (``flush(force=True)``). A failed batch goes back to the
    front of the queue; events that already used ``max_retries`` are dropped.
    """

    def __init__(self, transport, max_queue_size: int = 10, max_retries: int = 1,
                 is_online: Optional[Callable[[], bool]] = None):
        self.transport = transport
        self.max_queue_size = max_queue_size
        self.max_retries = max_retries
        self.is_online = is_online or (lambda: True)

        self._queue: List[_Pending] = []
        self._lock = threading.Lock()
        self._flushing = False
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None

    def __len__(self) -> int:
        return len(self._queue)

    def pending(self) -> List[Event]:
        with self._lock:
            return [p.event for p in self._queue]

    def enqueue(self, event: Event) -> None:
        with self._lock:
            self._queue.append(_Pending(event))
            full = len(self._queue) >= self.max_queue_size
        logger.debug("event queued: %s", event.event_type.value)
        if full:
            self.flush()

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()

    def flush(self, force: bool = False) -> bool:
        with self._lock:
            # one flush in flight at a time; the timer and unload hook both land here
            if self._flushing or not self._queue:
                return False
            if not force and not self.is_online():
                return False
            batch, self._queue = self._queue, []
            self._flushing = True

        try:
            ok = self.transport.send([p.event for p in batch])
        except Exception as e:
            logger.debug("transport raised, treating batch as failed: %r", e)
            ok = False
        finally:
            with self._lock:
                self._flushing = False

        if not ok:
            self._requeue(batch)
        return ok

    def _requeue(self, batch: List[_Pending]) -> None:
        retry = []
        for p in batch:
            if p.retries < self.max_retries:
                p.retries += 1
                retry.append(p)
        dropped = len(batch) - len(retry)
        if dropped:
            logger.debug("dropping %d events after %d retries", dropped, self.max_retries)
        with self._lock:
            self._queue = retry + self._queue

    def start(self, interval: float) -> None:
        if self._timer is not None:
            return
        self._stop.clear()
        self._timer = threading.Thread(target=self._run, args=(interval,),
                                       name="neuvera-flush", daemon=True)
        self._timer.start()

    def _run(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.flush(False)
            except Exception as e:
                # keep the timer alive; the next tick tries again
                logger.debug("periodic flush failed: %r", e)

    def stop(self) -> None:
        self._stop.set()
        if self._timer is not None:
            self._timer.join(timeout=5)
            self._timer = None
