import logging
import threading
from typing import List, Optional

from tapwar.services.games.constants import LOBBY, PLAYING, RED, BLUE
from tapwar.services.games.rounds import RoundController, round_key
from tapwar.services.games.scoring import ScoreTally, ScoreCheckpoint


logger = logging.getLogger(__name__)


class HostSession:
    """The host's live view: roster, scores, countdown and round controls.

    Opening the session subscribes to roster and round changes, joins the
    click channel, and starts the countdown sampler whose ticks end the
    round. Everything it starts belongs to ``self.scope`` and stops on close.
    """

    def __init__(self, ctx, checkpoint: Optional[ScoreCheckpoint] = None):
        self.ctx = ctx
        self.store = ctx.store
        self.config = ctx.config
        self.tally = ScoreTally(checkpoint)
        self.players: List[dict] = []
        self.controller = RoundController(
            self.store,
            self.tally,
            roster_size=lambda: len(self.players),
            clock=ctx.clock,
            duration=self.config.ROUND_DURATION_SEC,
        )
        self.scope = None
        self._subscriptions = []
        self._channel = None
        self._players_lock = threading.Lock()

    def open(self) -> 'HostSession':
        self.scope = self.ctx.scope('host')
        guard = self.scope.guard
        self._subscriptions = [
            self.store.subscribe('player', 'INSERT', guard(self._on_player_insert)),
            self.store.subscribe('player', 'DELETE', guard(self._on_player_delete)),
            self.store.subscribe('round', 'UPDATE', guard(self._on_round_update)),
            self.store.on_reconnect(guard(self.resync)),
        ]
        self._channel = self.store.channel(self.config.CLICK_CHANNEL).on(
            self.config.CLICK_EVENT, guard(self._on_click)
        )
        self.resync()
        self.scope.every(self.config.TICK_INTERVAL_MS / 1000.0, self.controller.tick)
        logger.info(f"[host-open] players={len(self.players)} phase={self.phase}")
        return self

    def close(self) -> None:
        if self.scope:
            self.scope.close()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        if self._channel:
            self._channel.close()
            self._channel = None

    def resync(self) -> None:
        """Reload roster and round row, e.g. after a reconnect or a reload mid-round."""
        players = list(self.store.fetch_players())
        with self._players_lock:
            self.players = players
        row = self.store.fetch_round()
        if row:
            self.controller.observe(row, force=True)
        state = self.controller.state
        if state.phase == PLAYING and state.round_start_time:
            key = round_key(state.round_start_time)
            if self.tally.round_key != key:
                self.tally.restore(key)

    # ---- store callbacks ----

    def _on_player_insert(self, change: dict) -> None:
        player = change.get('new')
        if not player:
            return
        with self._players_lock:
            if all(p.get('id') != player.get('id') for p in self.players):
                self.players = self.players + [player]

    def _on_player_delete(self, change: dict) -> None:
        gone = (change.get('old') or {}).get('id')
        with self._players_lock:
            self.players = [p for p in self.players if p.get('id') != gone]

    def _on_round_update(self, change: dict) -> None:
        self.controller.observe(change.get('new') or {})

    def _on_click(self, payload: dict) -> None:
        self.tally.apply(payload)

    # ---- host actions ----

    def start(self) -> bool:
        return self.controller.start()

    def finish(self) -> bool:
        # Manual finish from the host ends the round early
        return self.controller.finish(force=True)

    def reset(self) -> bool:
        return self.controller.reset()

    # ---- view state ----

    @property
    def phase(self) -> str:
        return self.controller.state.phase

    @property
    def winner(self) -> Optional[str]:
        return self.controller.state.winner

    @property
    def time_left(self) -> float:
        return self.controller.time_left

    @property
    def can_start(self) -> bool:
        return self.phase == LOBBY and bool(self.players)

    @property
    def red_players(self) -> List[dict]:
        return [p for p in self.players if p.get('team') == RED]

    @property
    def blue_players(self) -> List[dict]:
        return [p for p in self.players if p.get('team') == BLUE]

    @property
    def scores(self) -> dict:
        red, blue = self.tally.totals()
        return {'red': red, 'blue': blue}

    @property
    def red_percent(self) -> float:
        return self.tally.red_percent

    def top_players(self, n: int = 3):
        return self.tally.top(n)
