import pytest

from config import ClientConfig
from tapwar.client.host import HostSession
from tapwar.client.identity import IdentityStore
from tapwar.client.player import PlayerSession
from tapwar.errors import JoinError
from tapwar.services.games.scoring import ScoreCheckpoint


class NoFinalFlushConfig(ClientConfig):
    IDENTITY_SCOPE = 'session'
    FINAL_FLUSH_ON_FINISH = False


@pytest.fixture()
def host(make_ctx):
    session = HostSession(make_ctx()).open()
    yield session
    session.close()


def _player(make_ctx, nickname=None, config=None, identity=None):
    ctx = make_ctx(config) if config else make_ctx()
    session = PlayerSession(ctx, identity or IdentityStore(scope='session')).open()
    if nickname:
        session.join(nickname)
    return session


def _tap(player, times):
    for _ in range(times):
        assert player.tap() is True


def test_full_round_counts_residual_taps(host, make_ctx, clock, store):
    alice = _player(make_ctx, 'Alice')
    assert [p['nickname'] for p in host.red_players] == ['Alice']
    assert host.can_start

    assert host.start() is True
    assert alice.state.phase == 'PLAYING'

    _tap(alice, 3)
    alice.aggregator.flush()
    assert host.scores == {'red': 3, 'blue': 0}

    _tap(alice, 2)
    clock.advance(30)
    host.controller.tick()

    assert store.round['phase'] == 'FINISHED'
    assert store.round['winner'] == 'RED'
    assert store.round['round_start_time'] is None
    # the closing flush lands after the winner is decided
    assert host.scores == {'red': 5, 'blue': 0}
    assert [payload['count'] for _, _, payload in store.sent] == [3, 2]
    assert alice.outcome == 'VICTORY'
    assert alice.tap() is False


def test_deadline_finishes_round_only_once(host, make_ctx, clock, store):
    _player(make_ctx, 'Alice')
    host.start()
    clock.advance(31)
    host.controller.tick()
    host.controller.tick()
    finishes = [u for u in store.updates if u.get('phase') == 'FINISHED']
    assert len(finishes) == 1
    assert host.time_left == 0


def test_residual_dropped_when_final_flush_disabled(host, make_ctx, clock, store):
    alice = _player(make_ctx, 'Alice', config=NoFinalFlushConfig)
    host.start()
    _tap(alice, 4)
    clock.advance(30)
    host.controller.tick()
    assert host.scores == {'red': 0, 'blue': 0}
    assert store.sent == []
    assert host.winner == 'DRAW'
    assert alice.outcome == 'DRAW'


def test_teams_alternate_and_loser_sees_defeat(host, make_ctx, clock):
    alice = _player(make_ctx, 'Alice')
    bob = _player(make_ctx, 'Bob')
    assert (alice.player['team'], bob.player['team']) == ('RED', 'BLUE')
    assert [p['nickname'] for p in host.blue_players] == ['Bob']

    host.start()
    _tap(alice, 2)
    _tap(bob, 6)
    alice.aggregator.flush()
    bob.aggregator.flush()
    assert host.red_percent == 25.0
    assert host.top_players() == [('Bob', 6), ('Alice', 2)]

    host.finish()
    assert host.winner == 'BLUE'
    assert alice.outcome == 'DEFEAT'
    assert bob.outcome == 'VICTORY'


def test_start_requires_players(host, store):
    assert host.can_start is False
    assert host.start() is False
    assert store.updates == []
    assert host.phase == 'LOBBY'


def test_start_only_from_lobby(host, make_ctx, store):
    _player(make_ctx, 'Alice')
    host.start()
    assert host.start() is False
    assert len(store.updates) == 1


def test_taps_outside_playing_are_ignored(host, make_ctx, store):
    alice = _player(make_ctx, 'Alice')
    assert alice.tap() is False
    spectator = _player(make_ctx)
    host.start()
    assert spectator.tap() is False
    assert store.sent == []


def test_reset_returns_everyone_to_lobby(host, make_ctx, clock, store):
    alice = _player(make_ctx, 'Alice')
    host.start()
    _tap(alice, 3)
    alice.aggregator.flush()
    host.finish()

    assert host.reset() is True
    assert (store.round['phase'], store.round['round_start_time'], store.round['winner']) == ('LOBBY', None, None)
    assert host.scores == {'red': 0, 'blue': 0}
    assert alice.state.phase == 'LOBBY'
    assert alice.time_left == 30.0
    assert alice.outcome is None


def test_reset_mid_round_discards_residual(host, make_ctx, store):
    alice = _player(make_ctx, 'Alice')
    host.start()
    _tap(alice, 2)
    host.reset()
    assert store.sent == []
    assert alice.aggregator is None


def test_player_joining_mid_round_starts_playing(host, make_ctx):
    _player(make_ctx, 'Alice')
    host.start()
    late = _player(make_ctx, 'Late')
    assert late.player['team'] == 'BLUE'
    _tap(late, 1)
    late.aggregator.flush()
    assert host.scores == {'red': 0, 'blue': 1}


def test_countdown_and_chaos_window(host, make_ctx, clock):
    alice = _player(make_ctx, 'Alice')
    host.start()
    clock.advance(5)
    assert alice.tick() == 25.0
    assert alice.is_chaos is False
    clock.advance(16)
    assert alice.tick() == 9.0
    assert alice.is_chaos is True
    assert host.controller.tick() == 9.0


def test_host_reload_restores_scores_from_checkpoint(make_ctx, clock, store, tmp_path):
    path = str(tmp_path / 'scores.json')
    first = HostSession(make_ctx(), checkpoint=ScoreCheckpoint(path)).open()
    alice = _player(make_ctx, 'Alice')
    first.start()
    _tap(alice, 4)
    alice.aggregator.flush()
    first.close()

    second = HostSession(make_ctx(), checkpoint=ScoreCheckpoint(path)).open()
    assert second.phase == 'PLAYING'
    assert second.scores == {'red': 4, 'blue': 0}
    assert [p['nickname'] for p in second.players] == ['Alice']

    _tap(alice, 1)
    alice.aggregator.flush()
    assert second.scores == {'red': 5, 'blue': 0}
    second.close()


def test_closed_host_ignores_changes(make_ctx, store):
    session = HostSession(make_ctx()).open()
    session.close()
    store.insert_player('Ghost', 'RED')
    assert session.players == []
    assert store.subscriptions == []
    assert store.channels['room1'] == []


def test_reconnect_resyncs_missed_round_change(host, make_ctx, clock, store):
    alice = _player(make_ctx, 'Alice')
    # change lands while both clients are "offline"
    store.round = dict(store.round, phase='PLAYING', round_start_time=clock().isoformat())
    assert alice.state.phase == 'LOBBY'

    store.simulate_reconnect()
    assert host.phase == 'PLAYING'
    assert alice.state.phase == 'PLAYING'
    assert alice.aggregator is not None


def test_identity_restores_player_on_reopen(make_ctx):
    identity = IdentityStore(scope='session')
    first = _player(make_ctx, 'Alice', identity=identity)
    first.close()

    again = _player(make_ctx, identity=identity)
    assert again.joined
    assert again.player == {'id': first.player['id'], 'team': 'RED', 'nickname': 'Alice'}


def test_leave_removes_player_and_identity(host, make_ctx, store):
    identity = IdentityStore(scope='session')
    alice = _player(make_ctx, 'Alice', identity=identity)
    assert len(host.players) == 1

    alice.leave()
    assert host.players == []
    assert alice.joined is False
    assert identity.load() is None
    alice.leave()


def test_leave_after_row_already_gone(make_ctx, store):
    alice = _player(make_ctx, 'Alice')
    store.players.clear()
    alice.leave()
    assert alice.joined is False


def test_join_failure_leaves_player_unjoined(make_ctx, store):
    alice = _player(make_ctx)
    store.fail_insert = True
    with pytest.raises(JoinError):
        alice.join('Alice')
    assert alice.joined is False

    store.fail_insert = False
    assert alice.join('Alice')['team'] == 'RED'


def test_lost_batches_do_not_break_the_round(host, make_ctx, store):
    alice = _player(make_ctx, 'Alice')
    host.start()
    store.fail_publish = True
    _tap(alice, 3)
    alice.aggregator.flush()
    store.fail_publish = False
    _tap(alice, 1)
    alice.aggregator.flush()
    assert host.scores == {'red': 1, 'blue': 0}


def test_background_loops_are_registered(host, make_ctx, spawner):
    assert len(spawner.tasks) == 1
    _player(make_ctx, 'Alice')
    host.start()
    # flush and countdown loops for the player's round
    assert len(spawner.tasks) == 3


def test_out_of_order_round_updates_keep_newest_phase(host, make_ctx, clock, store):
    alice = _player(make_ctx, 'Alice')
    lobby = {'id': 1, 'phase': 'LOBBY', 'round_start_time': None, 'winner': None, 'version': 7}
    playing = {'id': 1, 'phase': 'PLAYING', 'round_start_time': clock().isoformat(), 'winner': None, 'version': 8}

    # reset then start, delivered newest first
    store._notify('round', 'UPDATE', new=playing)
    store._notify('round', 'UPDATE', new=lobby)

    assert host.phase == 'PLAYING'
    assert alice.state.phase == 'PLAYING'
    assert alice.aggregator is not None
    _tap(alice, 2)
    alice.aggregator.flush()
    assert host.scores == {'red': 2, 'blue': 0}


def test_reconnect_adopts_row_from_reset_server(host, make_ctx, store):
    alice = _player(make_ctx, 'Alice')
    host.start()
    store.round = {'id': 1, 'phase': 'LOBBY', 'round_start_time': None, 'winner': None, 'version': 0}

    store.simulate_reconnect()
    assert host.phase == 'LOBBY'
    assert alice.state.phase == 'LOBBY'
    assert alice.aggregator is None
