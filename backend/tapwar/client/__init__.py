"""Host and player clients for the Tap War realtime store."""

from tapwar.client.context import GameContext
from tapwar.client.host import HostSession
from tapwar.client.identity import IdentityStore
from tapwar.client.player import PlayerSession
from tapwar.client.store import RealtimeStore, SocketIOStore

__all__ = [
    'GameContext',
    'HostSession',
    'IdentityStore',
    'PlayerSession',
    'RealtimeStore',
    'SocketIOStore',
]
