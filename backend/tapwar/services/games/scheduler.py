import functools
import logging
import threading
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)


class TaskScope:
    """Lifetime owner for the periodic loops and callbacks of one view.

    - Loops started with ``every`` sleep first, then run, like a browser interval
    - ``guard`` wraps async callbacks so they no-op once the scope is closed
    - ``child`` scopes close with their parent (one per round inside a session)
    - Background tasks come from the injected spawner, normally the Socket.IO
      client's ``start_background_task`` / ``sleep`` pair
    """

    def __init__(self, start_background_task: Callable, sleep: Callable, name: str = 'scope'):
        self.name = name
        self._start = start_background_task
        self._sleep = sleep
        self._live = True
        self._children: List['TaskScope'] = []
        self._lock = threading.Lock()

    @property
    def live(self) -> bool:
        return self._live

    def every(self, interval_sec: float, fn: Callable, *args) -> Optional[object]:
        if not self._live:
            return None
        task_name = getattr(fn, '__name__', repr(fn))

        def _worker():
            while self._live:
                self._sleep(interval_sec)
                if not self._live:
                    break
                try:
                    fn(*args)
                except Exception:
                    logger.exception(f"[scope-error] scope={self.name} task={task_name}")
            logger.debug(f"[scope-stop] scope={self.name} task={task_name}")

        logger.debug(f"[scope-every] scope={self.name} task={task_name} interval={interval_sec}s")
        return self._start(_worker)

    def guard(self, fn: Callable) -> Callable:
        @functools.wraps(fn)
        def _guarded(*args, **kwargs):
            if not self._live:
                logger.debug(f"[scope-closed] scope={self.name} dropped {getattr(fn, '__name__', fn)}")
                return None
            return fn(*args, **kwargs)
        return _guarded

    def child(self, name: str) -> 'TaskScope':
        scope = TaskScope(self._start, self._sleep, name=name)
        with self._lock:
            if self._live:
                self._children.append(scope)
                return scope
        scope.close()
        return scope

    def close(self) -> None:
        with self._lock:
            if not self._live:
                return
            self._live = False
            children, self._children = self._children, []
        for scope in children:
            scope.close()
        logger.debug(f"[scope-close] scope={self.name}")
