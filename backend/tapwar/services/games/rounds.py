import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .constants import LOBBY, PLAYING, FINISHED
from .scoring import ScoreTally


logger = logging.getLogger(__name__)

ROUND_DURATION_SEC = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    else:
        raise TypeError(f"Unsupported timestamp {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_key(start) -> Optional[str]:
    """Stable identifier for a round: its start time normalized to UTC."""
    parsed = parse_timestamp(start)
    return parsed.astimezone(timezone.utc).isoformat() if parsed else None


def remaining_seconds(round_start_time, now: datetime, duration: float = ROUND_DURATION_SEC) -> float:
    start = parse_timestamp(round_start_time)
    if start is None:
        return float(duration)
    elapsed = (now - start).total_seconds()
    return max(0.0, duration - elapsed)


def check_round_invariant(phase, round_start_time, winner) -> Optional[str]:
    """Return an error message when the row would break the phase invariants."""
    if (round_start_time is not None) != (phase == PLAYING):
        return 'round_start_time must be set exactly when phase is PLAYING'
    if (winner is not None) != (phase == FINISHED):
        return 'winner must be set exactly when phase is FINISHED'
    return None


class RoundState:
    """Local copy of the canonical round row."""

    def __init__(self, phase=LOBBY, round_start_time=None, winner=None, version=None):
        self.phase = phase
        self.round_start_time = parse_timestamp(round_start_time)
        self.winner = winner
        self.version = version

    def is_stale(self, row: dict) -> bool:
        """True when ``row`` carries an older version than the one already applied."""
        incoming = (row or {}).get('version')
        return incoming is not None and self.version is not None and incoming < self.version

    def apply(self, row: dict, force: bool = False) -> bool:
        """Merge ``row`` into the local copy. Returns False when it was dropped as stale.

        Notifications can be delivered out of order, so an older version never
        replaces a newer one. ``force`` adopts the row regardless, for a full
        re-fetch after reconnect where the server may have been reset.
        """
        # Change notifications may carry partial rows; merge what is present
        if not row:
            return False
        if not force and self.is_stale(row):
            logger.debug(f"[round-stale] version={row.get('version')} current={self.version}")
            return False
        if 'version' in row:
            self.version = row['version']
        if 'phase' in row:
            self.phase = row['phase']
        if 'round_start_time' in row:
            self.round_start_time = parse_timestamp(row['round_start_time'])
        if 'winner' in row:
            self.winner = row['winner']
        return True

    def to_row(self) -> dict:
        return {
            'phase': self.phase,
            'round_start_time': self.round_start_time.isoformat() if self.round_start_time else None,
            'winner': self.winner,
        }

    def __repr__(self):
        return (
            f"RoundState(phase={self.phase!r}, round_start_time={self.round_start_time!r}, "
            f"winner={self.winner!r}, version={self.version!r})"
        )


class RoundController:
    """Host-authoritative LOBBY -> PLAYING -> FINISHED -> LOBBY state machine.

    Guards live here, not in the store: a rejected transition returns False
    and writes nothing. Every accepted transition is one ``update_round``
    call; the local state is updated from the store's reply and again from
    the change notification that follows.
    """

    def __init__(self, store, tally: ScoreTally, roster_size: Callable[[], int],
                 clock: Callable[[], datetime] = utcnow, duration: float = ROUND_DURATION_SEC):
        self.store = store
        self.tally = tally
        self.roster_size = roster_size
        self.clock = clock
        self.duration = duration
        self.state = RoundState()
        self.time_left = float(duration)
        self._finishing = False
        self._lock = threading.RLock()

    def observe(self, row: dict, force: bool = False) -> RoundState:
        with self._lock:
            self.state.apply(row, force=force)
            if self.state.phase != PLAYING:
                self._finishing = False
            return self.state

    def remaining(self) -> float:
        if self.state.phase == FINISHED:
            return 0.0
        if self.state.phase != PLAYING:
            return float(self.duration)
        return remaining_seconds(self.state.round_start_time, self.clock(), self.duration)

    def start(self) -> bool:
        with self._lock:
            if self.state.phase != LOBBY:
                logger.warning(f"[round-start-rejected] phase={self.state.phase}")
                return False
            players = self.roster_size()
            if players <= 0:
                logger.warning('[round-start-rejected] roster is empty')
                return False
            now = self.clock()
            self._write({'phase': PLAYING, 'round_start_time': now.isoformat(), 'winner': None})
            self.tally.reset(round_key=round_key(now))
            self.time_left = float(self.duration)
            logger.info(f"[round-start] players={players} start={now.isoformat()}")
            return True

    def tick(self) -> float:
        remaining = self.remaining()
        self.time_left = remaining
        if self.state.phase == PLAYING and remaining <= 0 and not self._finishing:
            self.finish()
        return remaining

    def finish(self, force: bool = False) -> bool:
        with self._lock:
            if self.state.phase != PLAYING or self._finishing:
                return False
            if not force and self.remaining() > 0:
                logger.warning('[round-finish-rejected] time remaining; use force to end early')
                return False
            self._finishing = True
            red, blue = self.tally.totals()
            winner = self.tally.winner()
            try:
                self._write({'phase': FINISHED, 'round_start_time': None, 'winner': winner})
            except Exception:
                self._finishing = False
                raise
            self.time_left = 0.0
            logger.info(f"[round-finish] red={red} blue={blue} winner={winner} forced={force}")
            return True

    def reset(self) -> bool:
        with self._lock:
            previous = self.state.phase
            self._write({'phase': LOBBY, 'round_start_time': None, 'winner': None})
            self.tally.reset()
            self.time_left = float(self.duration)
            logger.info(f"[round-reset] from={previous}")
            return True

    def _write(self, values: dict) -> None:
        row = self.store.update_round(values)
        self.observe(row or values)
