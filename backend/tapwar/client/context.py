from config import ClientConfig
from tapwar.services.games.rounds import utcnow
from tapwar.services.games.scheduler import TaskScope


class GameContext:
    """What a session needs from outside: the store, settings, a clock and a task spawner.

    Passed explicitly to every session; there is no module-level store handle.
    """

    def __init__(self, store, config=ClientConfig, clock=None, start_background_task=None, sleep=None):
        self.store = store
        self.config = config
        self.clock = clock or utcnow
        self.start_background_task = start_background_task or store.start_background_task
        self.sleep = sleep or store.sleep

    def scope(self, name: str) -> TaskScope:
        return TaskScope(self.start_background_task, self.sleep, name=name)
