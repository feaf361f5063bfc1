import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Ensure the backend root (containing the `tapwar` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import ClientConfig
from tapwar import create_app, db, socketio
from tapwar.client.context import GameContext
from tapwar.client.store import Subscription
from tapwar.errors import StoreError
from tapwar.services.games.rounds import check_round_invariant, parse_timestamp


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    ROUND_DURATION_SEC = 30
    MAX_NICKNAME_LEN = 12
    HOST_USERNAME = 'host'
    HOST_PASSWORD = 'letmein'
    CORS_ORIGINS = ['http://localhost:5173']


class TestClientConfig(ClientConfig):
    IDENTITY_SCOPE = 'session'
    FINAL_FLUSH_ON_FINISH = True


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        from tapwar.models import Host, Round
        db.create_all()
        Round.current()
        host = Host(username=TestConfig.HOST_USERNAME)
        host.set_password(TestConfig.HOST_PASSWORD)
        db.session.add(host)
        db.session.commit()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def host_client(flask_app):
    test_client = flask_app.test_client()
    res = test_client.post('/api/host/login', json={
        'username': TestConfig.HOST_USERNAME,
        'password': TestConfig.HOST_PASSWORD,
    })
    assert res.status_code == 200
    return test_client


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


# ---- in-memory collaborators for the client sessions ----

class ManualClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSpawner:
    """Collects background tasks instead of running them; tests drive ticks by hand."""

    def __init__(self):
        self.tasks = []

    def start_background_task(self, target, *args, **kwargs):
        self.tasks.append((target, args, kwargs))

    def sleep(self, seconds):
        pass


class FakeChannel:
    def __init__(self, store, name):
        self.store = store
        self.name = name
        self.handlers = {}
        self.closed = False

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)
        return self

    def send(self, event, payload):
        if self.store.fail_publish:
            raise StoreError('publish failed')
        self.store.sent.append((self.name, event, dict(payload)))
        # Like the server relay: everyone on the channel except the sender
        for member in list(self.store.channels.get(self.name, [])):
            if member is not self:
                for handler in list(member.handlers.get(event, [])):
                    handler(payload)

    def close(self):
        self.closed = True
        members = self.store.channels.get(self.name, [])
        if self in members:
            members.remove(self)


class FakeStore:
    """Synchronous stand-in for the realtime store used by session tests."""

    def __init__(self):
        self.round = {'id': 1, 'phase': 'LOBBY', 'round_start_time': None, 'winner': None, 'version': 0}
        self.players = []
        self.next_id = 1
        self.subscriptions = []
        self.reconnect_handlers = []
        self.channels = {}
        self.sent = []
        self.updates = []
        self.fail_insert = False
        self.fail_publish = False

    def _notify(self, table, event, new=None, old=None):
        change = {'table': table, 'event': event, 'new': new, 'old': old}
        for sub_table, sub_event, handler, sub in list(self.subscriptions):
            if sub.active and sub_table == table and sub_event in ('*', event):
                handler(change)

    def fetch_round(self):
        return dict(self.round)

    def update_round(self, values):
        merged = dict(self.round, **values)
        error = check_round_invariant(merged['phase'], parse_timestamp(merged['round_start_time']), merged['winner'])
        if error:
            raise StoreError(error, status=400)
        old = dict(self.round)
        merged['version'] = old['version'] + 1
        self.round = merged
        self.updates.append(dict(values))
        self._notify('round', 'UPDATE', new=dict(merged), old=old)
        return dict(merged)

    def fetch_players(self, team=None):
        return [dict(p) for p in self.players if team is None or p['team'] == team]

    def count_players(self, team=None):
        return len(self.fetch_players(team))

    def insert_player(self, nickname, team=None):
        if self.fail_insert:
            raise StoreError('insert failed', status=500)
        player = {'id': self.next_id, 'nickname': nickname, 'team': team}
        self.next_id += 1
        self.players.append(player)
        self._notify('player', 'INSERT', new=dict(player))
        return dict(player)

    def delete_player(self, player_id):
        for player in self.players:
            if player['id'] == player_id:
                self.players.remove(player)
                self._notify('player', 'DELETE', old=dict(player))
                return
        raise StoreError('Player not found', status=404)

    def subscribe(self, table, event, handler):
        entry = []
        sub = Subscription(lambda: self.subscriptions.remove(entry[0]))
        entry.append((table, event, handler, sub))
        self.subscriptions.append(entry[0])
        return sub

    def on_reconnect(self, handler):
        self.reconnect_handlers.append(handler)
        return Subscription(lambda: self.reconnect_handlers.remove(handler))

    def channel(self, name):
        channel = FakeChannel(self, name)
        self.channels.setdefault(name, []).append(channel)
        return channel

    def simulate_reconnect(self):
        for handler in list(self.reconnect_handlers):
            handler()


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def spawner():
    return RecordingSpawner()


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def make_ctx(store, clock, spawner):
    def _make(config=TestClientConfig):
        return GameContext(
            store,
            config=config,
            clock=clock,
            start_background_task=spawner.start_background_task,
            sleep=spawner.sleep,
        )
    return _make
