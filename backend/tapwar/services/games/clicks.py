import logging
import threading
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class ClickAggregator:
    """Buffers one player's taps and publishes them as ClickBatch messages.

    ``flush`` is driven once per flush interval by the owning session; it
    drains the counter and sends at most one message. ``close`` does the
    last flush exactly once. Publishing is fire-and-forget: a failed send
    loses those clicks.
    """

    def __init__(self, channel, team: str, nickname: str, event: str = 'client-click',
                 on_tap: Optional[Callable[[], None]] = None):
        self.channel = channel
        self.team = team
        self.nickname = nickname
        self.event = event
        self.on_tap = on_tap
        self.batches_sent = 0
        self._count = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        return self._count

    @property
    def closed(self) -> bool:
        return self._closed

    def tap(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._count += 1
        if self.on_tap:
            self.on_tap()
        return True

    def flush(self) -> int:
        with self._lock:
            count, self._count = self._count, 0
        if count <= 0:
            return 0
        self._publish(count)
        return count

    def close(self, final_flush: bool = True) -> int:
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            if not final_flush:
                dropped, self._count = self._count, 0
        if not final_flush:
            if dropped:
                logger.debug(f"[click-discard] from={self.nickname} count={dropped}")
            return 0
        return self.flush()

    def _publish(self, count: int) -> None:
        payload = {'team': self.team, 'count': count, 'from': self.nickname}
        try:
            self.channel.send(self.event, payload)
            self.batches_sent += 1
        except Exception as exc:
            logger.debug(f"[click-lost] from={self.nickname} count={count} error={exc}")
