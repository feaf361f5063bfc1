import logging
import threading
from typing import Optional

from tapwar.errors import StoreError
from tapwar.services.games.clicks import ClickAggregator
from tapwar.services.games.constants import PLAYING, FINISHED, DRAW
from tapwar.services.games.rounds import RoundState, remaining_seconds
from tapwar.services.games.roster import join_roster


logger = logging.getLogger(__name__)

# Seconds left when the player screen switches to chaos mode
CHAOS_THRESHOLD_SEC = 10


class PlayerSession:
    def __init__(self, ctx, identity):
        self.ctx = ctx
        self.store = ctx.store
        self.config = ctx.config
        self.identity = identity
        self.player: Optional[dict] = None
        self.state = RoundState()
        self.time_left = float(self.config.ROUND_DURATION_SEC)
        self.aggregator: Optional[ClickAggregator] = None
        self.scope = None
        self._round_scope = None
        self._channel = None
        self._subscriptions = []
        self._lock = threading.RLock()

    @property
    def joined(self) -> bool:
        return self.player is not None

    def open(self) -> 'PlayerSession':
        self.scope = self.ctx.scope('player')
        self.player = self.identity.load()
        guard = self.scope.guard
        self._subscriptions = [
            self.store.subscribe('round', 'UPDATE', guard(self._on_round_update)),
            self.store.on_reconnect(guard(self.resync)),
        ]
        self.resync()
        if self.player:
            logger.info(f"[player-restore] nickname={self.player['nickname']} team={self.player['team']}")
        return self

    def close(self) -> None:
        with self._lock:
            self._leave_playing(final_flush=False)
        if self.scope:
            self.scope.close()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def resync(self) -> None:
        row = self.store.fetch_round()
        if row:
            self._apply_round(row, force=True)

    # ---- roster ----

    def join(self, nickname: str) -> dict:
        """Join on the lighter team. Raises JoinError; calling again simply retries."""
        if self.player:
            return self.player
        player = join_roster(self.store, nickname, max_len=self.config.MAX_NICKNAME_LEN)
        self.identity.save(player)
        with self._lock:
            self.player = {k: player[k] for k in ('id', 'team', 'nickname')}
            if self.state.phase == PLAYING:
                self._enter_playing()
        return self.player

    def leave(self) -> None:
        if not self.player:
            return
        with self._lock:
            self._leave_playing(final_flush=False)
        try:
            self.store.delete_player(self.player['id'])
        except StoreError as exc:
            if exc.status != 404:
                raise
        self.identity.clear()
        logger.info(f"[player-leave] nickname={self.player['nickname']}")
        self.player = None

    # ---- play ----

    def tap(self) -> bool:
        aggregator = self.aggregator
        if not self.joined or self.state.phase != PLAYING or aggregator is None:
            return False
        return aggregator.tap()

    def tick(self) -> float:
        if self.state.phase == PLAYING:
            self.time_left = remaining_seconds(
                self.state.round_start_time, self.ctx.clock(), self.config.ROUND_DURATION_SEC
            )
        return self.time_left

    @property
    def is_chaos(self) -> bool:
        return self.state.phase == PLAYING and self.time_left <= CHAOS_THRESHOLD_SEC

    @property
    def outcome(self) -> Optional[str]:
        if not self.joined or self.state.phase != FINISHED:
            return None
        if self.state.winner == DRAW:
            return 'DRAW'
        return 'VICTORY' if self.state.winner == self.player['team'] else 'DEFEAT'

    # ---- round changes ----

    def _on_round_update(self, change: dict) -> None:
        self._apply_round(change.get('new') or {})

    def _apply_round(self, row: dict, force: bool = False) -> None:
        with self._lock:
            if not self.state.apply(row, force=force):
                return
            phase = self.state.phase
            if phase == PLAYING:
                if self.joined:
                    self._enter_playing()
                self.tick()
                return
            self._leave_playing(final_flush=phase == FINISHED and self.config.FINAL_FLUSH_ON_FINISH)
            self.time_left = 0.0 if phase == FINISHED else float(self.config.ROUND_DURATION_SEC)

    def _enter_playing(self) -> None:
        if self.aggregator is not None or not self.scope or not self.scope.live:
            return
        self._channel = self.store.channel(self.config.CLICK_CHANNEL)
        self.aggregator = ClickAggregator(
            self._channel, self.player['team'], self.player['nickname'], event=self.config.CLICK_EVENT
        )
        self._round_scope = self.scope.child('player-round')
        self._round_scope.every(self.config.FLUSH_INTERVAL_MS / 1000.0, self.aggregator.flush)
        self._round_scope.every(self.config.TICK_INTERVAL_MS / 1000.0, self.tick)
        logger.info(f"[player-playing] nickname={self.player['nickname']} team={self.player['team']}")

    def _leave_playing(self, final_flush: bool) -> None:
        if self.aggregator is None:
            return
        self._round_scope.close()
        sent = self.aggregator.close(final_flush=final_flush)
        if sent:
            logger.info(f"[player-final-flush] count={sent}")
        self._channel.close()
        self.aggregator = None
        self._channel = None
        self._round_scope = None
