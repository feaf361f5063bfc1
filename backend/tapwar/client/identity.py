import json
import logging
import os
from typing import Optional


logger = logging.getLogger(__name__)

SESSION = 'session'
PERSISTENT = 'persistent'


class IdentityStore:
    """Remembers which roster row this client joined as.

    ``session`` scope keeps it for the life of the process; ``persistent``
    scope writes it to a JSON file so it survives a restart.
    """

    KEYS = ('id', 'team', 'nickname')

    def __init__(self, scope: str = PERSISTENT, path: Optional[str] = None):
        if scope not in (SESSION, PERSISTENT):
            raise ValueError(f"identity scope must be {SESSION!r} or {PERSISTENT!r}")
        if scope == PERSISTENT and not path:
            raise ValueError('persistent identity needs a path')
        self.scope = scope
        self.path = path
        self._memory: Optional[dict] = None

    @classmethod
    def from_config(cls, config) -> 'IdentityStore':
        return cls(scope=config.IDENTITY_SCOPE, path=config.IDENTITY_PATH)

    def load(self) -> Optional[dict]:
        if self.scope == SESSION:
            return dict(self._memory) if self._memory else None
        try:
            with open(self.path, encoding='utf-8') as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning(f"[identity-unreadable] path={self.path} error={exc}")
            return None
        if not isinstance(data, dict) or not all(data.get(k) for k in self.KEYS):
            return None
        return {k: data[k] for k in self.KEYS}

    def save(self, player: dict) -> None:
        data = {k: player[k] for k in self.KEYS}
        self._memory = data
        if self.scope == PERSISTENT:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as fh:
                json.dump(data, fh)

    def clear(self) -> None:
        self._memory = None
        if self.scope == PERSISTENT:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
