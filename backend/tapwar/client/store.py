"""Client side of the realtime store: row reads/writes over HTTP, change
notifications and ephemeral broadcast over Socket.IO.

Sessions only see the ``RealtimeStore`` surface, so tests and alternative
backends can stand in for ``SocketIOStore``.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

import requests
import socketio
from socketio import exceptions as sio_exceptions

from tapwar.errors import StoreError


logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class RealtimeStore:
    """Operations a session may perform against the realtime backend.

    Row calls raise ``StoreError`` on failure. ``subscribe`` handlers get
    ``{table, event, new, old}``; ``channel`` returns an object with
    ``on(event, handler)``, ``send(event, payload)`` and ``close()``.
    """

    def fetch_round(self) -> Optional[dict]:
        raise NotImplementedError

    def update_round(self, values: dict) -> dict:
        raise NotImplementedError

    def fetch_players(self, team: Optional[str] = None) -> List[dict]:
        raise NotImplementedError

    def count_players(self, team: Optional[str] = None) -> int:
        raise NotImplementedError

    def insert_player(self, nickname: str, team: Optional[str] = None) -> dict:
        raise NotImplementedError

    def delete_player(self, player_id) -> None:
        raise NotImplementedError

    def subscribe(self, table: str, event: str, handler: Callable[[dict], None]) -> Subscription:
        raise NotImplementedError

    def channel(self, name: str):
        raise NotImplementedError

    def on_reconnect(self, handler: Callable[[], None]) -> Subscription:
        raise NotImplementedError


class SocketIOChannel:
    def __init__(self, store: 'SocketIOStore', name: str):
        self.store = store
        self.name = name
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event: str, handler: Callable[[dict], None]) -> 'SocketIOChannel':
        self._handlers.setdefault(event, []).append(handler)
        return self

    def send(self, event: str, payload: dict) -> None:
        self.store.publish(self.name, event, payload)

    def dispatch(self, event: str, payload) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception(f"[channel-handler-error] channel={self.name} event={event}")

    def close(self) -> None:
        self._handlers = {}
        self.store.release_channel(self)


class SocketIOStore(RealtimeStore):
    def __init__(self, server_url: str, namespace: str = '/ws', http: Optional[requests.Session] = None,
                 sio: Optional[socketio.Client] = None, timeout: float = 5.0):
        self.server_url = server_url.rstrip('/')
        self.namespace = namespace
        self.timeout = timeout
        self.http = http or requests.Session()
        self.sio = sio or socketio.Client(reconnection=True, reconnection_delay=1, reconnection_delay_max=5)
        self._tables: Dict[str, List[Tuple[str, Callable]]] = {}
        self._channels: Dict[str, List[SocketIOChannel]] = {}
        self._reconnect_handlers: List[Callable] = []
        self._connected_once = False
        self._lock = threading.Lock()

        self.sio.on('connect', self._on_connect, namespace=namespace)
        self.sio.on('disconnect', self._on_disconnect, namespace=namespace)
        self.sio.on('row_change', self._on_row_change, namespace=namespace)
        self.sio.on('broadcast', self._on_broadcast, namespace=namespace)
        self.sio.on('error', self._on_error, namespace=namespace)

    # ---- connection lifecycle ----

    def connect(self) -> None:
        try:
            self.sio.connect(self.server_url, namespaces=[self.namespace])
        except sio_exceptions.ConnectionError as exc:
            raise StoreError(f"Could not connect to {self.server_url}: {exc}") from exc

    def close(self) -> None:
        if self.sio.connected:
            self.sio.disconnect()
        self.http.close()

    def login(self, username: str, password: str) -> dict:
        return self._request('POST', '/api/host/login', json={'username': username, 'password': password})

    def start_background_task(self, target, *args, **kwargs):
        return self.sio.start_background_task(target, *args, **kwargs)

    def sleep(self, seconds: float) -> None:
        self.sio.sleep(seconds)

    def _on_connect(self):
        with self._lock:
            tables = list(self._tables)
            channels = list(self._channels)
            reconnect = self._connected_once
            self._connected_once = True
            handlers = list(self._reconnect_handlers)
        for table in tables:
            self._emit('subscribe', {'table': table})
        for name in channels:
            self._emit('join_channel', {'channel': name})
        if reconnect:
            logger.info(f"[store-reconnect] tables={tables} channels={channels}")
            for handler in handlers:
                try:
                    handler()
                except Exception:
                    logger.exception('[store-resync-error]')

    def _on_disconnect(self, *args):
        logger.warning(f"[store-disconnect] server={self.server_url}")

    def _on_error(self, data):
        logger.warning(f"[store-error] {(data or {}).get('message')}")

    def _emit(self, event: str, data: dict) -> bool:
        if not self.sio.connected:
            return False
        try:
            self.sio.emit(event, data, namespace=self.namespace)
        except sio_exceptions.SocketIOError as exc:
            logger.debug(f"[store-emit-failed] event={event} error={exc}")
            return False
        return True

    # ---- rows ----

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.server_url}{path}"
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            try:
                message = resp.json().get('error')
            except (ValueError, AttributeError):
                message = None
            raise StoreError(message or f"{method} {path} returned {resp.status_code}", status=resp.status_code)
        return resp.json() if resp.content else None

    def fetch_round(self):
        return self._request('GET', '/api/round')

    def update_round(self, values):
        return self._request('PATCH', '/api/round', json=values)

    def fetch_players(self, team=None):
        params = {'team': team} if team else None
        return self._request('GET', '/api/players', params=params) or []

    def count_players(self, team=None):
        params = {'team': team} if team else None
        return int((self._request('GET', '/api/players/count', params=params) or {}).get('count', 0))

    def insert_player(self, nickname, team=None):
        body = {'nickname': nickname}
        if team:
            body['team'] = team
        return self._request('POST', '/api/players', json=body)

    def delete_player(self, player_id):
        self._request('DELETE', f'/api/players/{player_id}')

    # ---- change notifications ----

    def subscribe(self, table, event, handler):
        entry = (event, handler)
        with self._lock:
            first = table not in self._tables
            self._tables.setdefault(table, []).append(entry)
        if first:
            self._emit('subscribe', {'table': table})

        def _cancel():
            with self._lock:
                entries = self._tables.get(table, [])
                if entry in entries:
                    entries.remove(entry)
                last = not entries
                if last:
                    self._tables.pop(table, None)
            if last:
                self._emit('unsubscribe', {'table': table})

        return Subscription(_cancel)

    def _on_row_change(self, data):
        data = data or {}
        with self._lock:
            entries = list(self._tables.get(data.get('table'), ()))
        for event, handler in entries:
            if event in ('*', data.get('event')):
                try:
                    handler(data)
                except Exception:
                    logger.exception(f"[row-handler-error] table={data.get('table')} event={data.get('event')}")

    def on_reconnect(self, handler):
        with self._lock:
            self._reconnect_handlers.append(handler)

        def _cancel():
            with self._lock:
                if handler in self._reconnect_handlers:
                    self._reconnect_handlers.remove(handler)

        return Subscription(_cancel)

    # ---- ephemeral broadcast ----

    def channel(self, name):
        channel = SocketIOChannel(self, name)
        with self._lock:
            first = name not in self._channels
            self._channels.setdefault(name, []).append(channel)
        if first:
            self._emit('join_channel', {'channel': name})
        return channel

    def release_channel(self, channel: SocketIOChannel) -> None:
        with self._lock:
            members = self._channels.get(channel.name, [])
            if channel in members:
                members.remove(channel)
            last = not members
            if last:
                self._channels.pop(channel.name, None)
        if last:
            self._emit('leave_channel', {'channel': channel.name})

    def publish(self, channel: str, event: str, payload: dict) -> None:
        if not self._emit('broadcast', {'channel': channel, 'event': event, 'payload': payload}):
            raise StoreError(f"Not connected; dropped {event} on {channel}")

    def _on_broadcast(self, data):
        data = data or {}
        with self._lock:
            members = list(self._channels.get(data.get('channel'), ()))
        for channel in members:
            channel.dispatch(data.get('event'), data.get('payload'))
