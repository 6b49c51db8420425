from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run one async computation at most once and share its outcome.

    The first caller of ``start`` or ``get`` launches the underlying call as a
    task; every later ``get`` awaits that same task, so several consumers
    observe one result (or one exception). Scope is a single owner, typically
    one pipeline invocation; nothing is cached across instances.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]], *, name: Optional[str] = None) -> None:
        self._factory = factory
        self._name = name
        self._task: Optional[asyncio.Task[T]] = None
        self._calls = 0

    @property
    def calls(self) -> int:
        """Number of times the underlying factory was invoked (0 or 1)."""

        return self._calls

    def start(self) -> asyncio.Task[T]:
        """Launch the computation if it is not running yet."""

        if self._task is None:
            self._calls += 1
            self._task = asyncio.ensure_future(self._factory())
            if self._name:
                self._task.set_name(self._name)
        return self._task

    async def get(self) -> T:
        """Return the shared result, launching the computation on first use."""

        task = self.start()
        # A cancelled waiter must not cancel the shared task for other consumers.
        return await asyncio.shield(task)

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        """Abandon the computation if it is still pending."""

        if self._task is not None and not self._task.done():
            self._task.cancel()

    def discard(self) -> None:
        """Cancel pending work and mark a finished exception as retrieved."""

        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            return
        if not self._task.cancelled():
            self._task.exception()
