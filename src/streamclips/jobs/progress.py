"""Best-effort progress broadcast.

Each subscriber owns a bounded queue. Publishing never blocks: a full queue
drops the update (the next one carries the latest state anyway) and closed
subscriptions are pruned on the next publish. Unsubscribing never affects
the job itself.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional

log = logging.getLogger(__name__)


class Subscription:
    def __init__(self, hub: "ProgressHub", job_id: str, maxsize: int) -> None:
        self.job_id = job_id
        self.dropped = 0
        self._hub = hub
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, payload: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(payload)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next update, or None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._hub.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        while not self.closed:
            item = self.get(timeout=0.5)
            if item is not None:
                yield item


class ProgressHub:
    def __init__(self, *, queue_size: int = 100) -> None:
        self.queue_size = int(queue_size)
        self._subs: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> Subscription:
        sub = Subscription(self, job_id, self.queue_size)
        with self._lock:
            self._subs.setdefault(job_id, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.job_id)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subs[sub.job_id]

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subs.get(job_id, []))

    def publish(self, job_id: str, payload: Dict[str, Any]) -> int:
        """Offer payload to every live subscriber of job_id; returns deliveries."""
        with self._lock:
            subs = list(self._subs.get(job_id, []))
        delivered = 0
        stale: List[Subscription] = []
        for sub in subs:
            if sub.closed:
                stale.append(sub)
                continue
            if sub.offer(payload):
                delivered += 1
        for sub in stale:
            self.unsubscribe(sub)
        if stale:
            log.debug("Pruned %d closed subscribers for job %s", len(stale), job_id)
        return delivered
