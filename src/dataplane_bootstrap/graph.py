"""Dependency graph of provisioning tasks and a thread pool runner for it."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """A named unit of work that may start once every task in ``after`` finished."""

    name: str
    action: Callable[[], Any]
    after: Tuple[str, ...] = ()
    enabled: bool = True


class TaskGraph:
    """Static dependency graph executed with as much parallelism as the edges allow.

    Tasks without a path between them have no ordering guarantee. The first
    failing task sets the shared cancellation event, no further tasks are
    started, running tasks are awaited, and the original error is re-raised.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}

    def add(
        self,
        name: str,
        action: Callable[[], Any],
        after: Iterable[str] = (),
        enabled: bool = True,
    ) -> "TaskGraph":
        if name in self._tasks:
            raise ValueError(f"Task '{name}' is already defined.")
        self._tasks[name] = Task(name=name, action=action, after=tuple(after), enabled=enabled)
        return self

    def task(self, name: str) -> Task:
        return self._tasks[name]

    def predecessors(self, name: str) -> Tuple[str, ...]:
        return self._tasks[name].after

    def validate(self) -> None:
        for task in self._tasks.values():
            for predecessor in task.after:
                if predecessor not in self._tasks:
                    raise ValueError(f"Task '{task.name}' depends on unknown task '{predecessor}'.")
        self.topological_order()

    def topological_order(self) -> List[str]:
        """Return task names so that every task follows its predecessors."""

        pending = {name: set(task.after) for name, task in self._tasks.items()}
        order: List[str] = []
        while pending:
            ready = [name for name, deps in pending.items() if not deps]
            if not ready:
                raise ValueError(f"Task graph has a cycle between: {', '.join(sorted(pending))}.")
            for name in ready:
                order.append(name)
                del pending[name]
            for deps in pending.values():
                deps.difference_update(ready)
        return order

    def _execute(self, task: Task) -> None:
        if not task.enabled:
            _LOG.debug("Skipping disabled task %s", task.name)
            return
        _LOG.debug("Starting task %s", task.name)
        task.action()
        _LOG.debug("Finished task %s", task.name)

    def run(
        self,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Sequence[str]:
        """Run every task and return the names in completion order."""

        self.validate()
        cancel_event = cancel_event or threading.Event()
        waiting: Dict[str, Set[str]] = {name: set(task.after) for name, task in self._tasks.items()}
        completed: List[str] = []
        failure: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bootstrap") as pool:
            running: Dict[Future, str] = {}

            def schedule() -> None:
                for name in [name for name, deps in waiting.items() if not deps]:
                    del waiting[name]
                    running[pool.submit(self._execute, self._tasks[name])] = name

            try:
                schedule()
                while running:
                    done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                    for future in done:
                        name = running.pop(future)
                        error = future.exception()
                        if error is not None:
                            if failure is None:
                                failure = error
                                cancel_event.set()
                                _LOG.error("Task %s failed: %s", name, error)
                            else:
                                _LOG.debug("Task %s stopped after an earlier failure: %s", name, error)
                            continue
                        completed.append(name)
                        for deps in waiting.values():
                            deps.discard(name)
                    if failure is None:
                        schedule()
            except KeyboardInterrupt:
                cancel_event.set()
                raise

        if failure is not None:
            raise failure
        return completed
