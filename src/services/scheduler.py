"""
Keyed debounce scheduler.

`schedule(key, action, delay)` waits `delay` seconds and then runs
`action(ticket)`. Rescheduling the same key before the delay elapses cancels the
pending wait. Once the action has started it is never cancelled; instead its
ticket goes stale, and the action must check `ticket.stale` before writing
results anywhere.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Hashable, Optional, Set

from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class Ticket:
    key: Hashable
    generation: int
    _owner: "Debouncer" = field(repr=False, compare=False)

    @property
    def stale(self) -> bool:
        return self._owner.generation(self.key) != self.generation


Action = Callable[[Ticket], Awaitable[None]]


class Debouncer:
    def __init__(self, delay: float, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._generations: Dict[Hashable, int] = {}
        self._waiting: Dict[Hashable, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def generation(self, key: Hashable) -> int:
        return self._generations.get(key, 0)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._waiting

    def invalidate(self, key: Hashable) -> None:
        """Make any scheduled or running action for `key` stale."""
        self._generations[key] = self.generation(key) + 1
        waiting = self._waiting.pop(key, None)
        if waiting is not None:
            waiting.cancel()

    def schedule(self, key: Hashable, action: Action, delay: Optional[float] = None) -> Ticket:
        self.invalidate(key)
        ticket = Ticket(key, self.generation(key), self)
        task = asyncio.create_task(
            self._run(ticket, action, self.delay if delay is None else delay),
            name=f"{self.name}:{key}",
        )
        self._waiting[key] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ticket

    async def _run(self, ticket: Ticket, action: Action, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))
        if self._waiting.get(ticket.key) is asyncio.current_task():
            del self._waiting[ticket.key]
        if ticket.stale:
            return
        try:
            await action(ticket)
        except Exception:
            _logger.exception(f"[{self.name}] action for {ticket.key!r} failed")

    def cancel_all(self) -> None:
        for key in list(self._waiting):
            self.invalidate(key)

    async def drain(self) -> None:
        """Wait until every scheduled action has finished or been cancelled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
