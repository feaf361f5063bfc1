import logging

from tapwar.errors import StoreError, JoinError
from .constants import RED, BLUE


logger = logging.getLogger(__name__)

MAX_NICKNAME_LEN = 12


def pick_team(red_count, blue_count) -> str:
    """Smaller team wins the new player; ties go to RED."""
    return RED if (red_count or 0) <= (blue_count or 0) else BLUE


def assign_team(store) -> str:
    # Best effort: concurrent joins may read the same counts
    return pick_team(store.count_players(RED), store.count_players(BLUE))


def clean_nickname(raw, max_len: int = MAX_NICKNAME_LEN) -> str:
    if not isinstance(raw, str):
        return ''
    return raw.strip()[:max_len].strip()


def join_roster(store, nickname, max_len: int = MAX_NICKNAME_LEN) -> dict:
    """Insert a player on the lighter team and return the stored row."""
    name = clean_nickname(nickname, max_len)
    if not name:
        raise JoinError('Nickname is required')
    try:
        team = assign_team(store)
        player = store.insert_player(name, team)
    except StoreError as exc:
        logger.error(f"[join-failed] nickname={name} error={exc}")
        raise JoinError('Could not join game. Try again.') from exc
    logger.info(f"[join] id={player.get('id')} nickname={name} team={player.get('team')}")
    return player
