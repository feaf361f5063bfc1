import json
import logging
import os
import tempfile
import threading
from typing import Dict, List, Optional, Tuple

from .constants import RED, BLUE, DRAW


logger = logging.getLogger(__name__)

UNKNOWN_PLAYER = 'Unknown'


def decide_winner(red: int, blue: int) -> str:
    if red > blue:
        return RED
    if blue > red:
        return BLUE
    return DRAW


def top_players(leaderboard: Dict[str, int], n: int = 3) -> List[Tuple[str, int]]:
    """Highest scores first. Order among equal scores is not part of the contract."""
    return sorted(leaderboard.items(), key=lambda item: item[1], reverse=True)[:n]


def _valid_count(count) -> bool:
    return isinstance(count, int) and not isinstance(count, bool) and count > 0


class ScoreCheckpoint:
    """Write-through JSON copy of the live tally so a host reload keeps scores.

    The in-memory tally stays authoritative; the file is tagged with the
    round key and ignored for any other round.
    """

    def __init__(self, path: str):
        self.path = path

    def save(self, round_key: str, snapshot: dict) -> None:
        directory = os.path.dirname(self.path) or '.'
        os.makedirs(directory, exist_ok=True)
        serialized = json.dumps({'round_key': round_key, 'scores': snapshot})
        with tempfile.NamedTemporaryFile('w', dir=directory, delete=False, encoding='utf-8') as tmp:
            tmp.write(serialized)
            tmp_path = tmp.name
        try:
            os.replace(tmp_path, self.path)
        except OSError:
            os.remove(tmp_path)
            raise

    def load(self, round_key: str) -> Optional[dict]:
        try:
            with open(self.path, encoding='utf-8') as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning(f"[checkpoint-unreadable] path={self.path} error={exc}")
            return None
        if not isinstance(data, dict) or data.get('round_key') != round_key:
            return None
        return data.get('scores')

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class ScoreTally:
    """Host-side reducer for ClickBatch messages.

    Team totals and the per-nickname leaderboard are plain sums, so the
    result does not depend on the order batches arrive in.
    """

    def __init__(self, checkpoint: Optional[ScoreCheckpoint] = None):
        self.checkpoint = checkpoint
        self.red = 0
        self.blue = 0
        self.leaderboard: Dict[str, int] = {}
        self.round_key: Optional[str] = None
        self._lock = threading.Lock()
        # Taken before _lock; orders checkpoint writes against each other and reset
        self._save_lock = threading.Lock()

    def apply(self, batch: dict) -> bool:
        batch = batch or {}
        team = batch.get('team')
        count = batch.get('count')
        if team not in (RED, BLUE) or not _valid_count(count):
            logger.warning(f"[click-reject] team={team!r} count={count!r} from={batch.get('from')!r}")
            return False
        name = batch.get('from') or UNKNOWN_PLAYER
        with self._lock:
            if team == RED:
                self.red += count
            else:
                self.blue += count
            self.leaderboard[name] = self.leaderboard.get(name, 0) + count
        if self.checkpoint:
            self._write_checkpoint()
        return True

    def _write_checkpoint(self) -> None:
        # Snapshot under the save lock: the last write holds the newest totals
        with self._save_lock:
            with self._lock:
                snapshot = self._snapshot()
                round_key = self.round_key
            if not round_key:
                return
            try:
                self.checkpoint.save(round_key, snapshot)
            except OSError as exc:
                logger.warning(f"[checkpoint-failed] {exc}")

    def totals(self) -> Tuple[int, int]:
        with self._lock:
            return self.red, self.blue

    def winner(self) -> str:
        red, blue = self.totals()
        return decide_winner(red, blue)

    def top(self, n: int = 3) -> List[Tuple[str, int]]:
        with self._lock:
            board = dict(self.leaderboard)
        return top_players(board, n)

    @property
    def red_percent(self) -> float:
        red, blue = self.totals()
        total = red + blue
        return 50.0 if total == 0 else red / total * 100

    def snapshot(self) -> dict:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> dict:
        return {'red': self.red, 'blue': self.blue, 'leaderboard': dict(self.leaderboard)}

    def reset(self, round_key: Optional[str] = None) -> None:
        with self._save_lock:
            with self._lock:
                self.red = 0
                self.blue = 0
                self.leaderboard = {}
                self.round_key = round_key
            if self.checkpoint:
                self.checkpoint.clear()

    def restore(self, round_key: str) -> bool:
        """Adopt the checkpoint for ``round_key`` if one exists."""
        saved = self.checkpoint.load(round_key) if self.checkpoint else None
        with self._lock:
            self.round_key = round_key
            if not saved:
                return False
            self.red = int(saved.get('red', 0))
            self.blue = int(saved.get('blue', 0))
            self.leaderboard = {str(k): int(v) for k, v in (saved.get('leaderboard') or {}).items()}
        logger.info(f"[checkpoint-restore] round={round_key} red={self.red} blue={self.blue}")
        return True
