"""Per-provider admission control for generation submissions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from types import TracebackType

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    """
    Counting permit pool with strict FIFO hand-off.

    A released permit goes straight to the longest-waiting caller, so a newly
    arriving ``acquire()`` can never overtake a queued one.
    """

    def __init__(self, max_permits: int, *, name: str = "") -> None:
        if max_permits < 1:
            raise ValueError("max_permits must be >= 1")
        self.name = name
        self.max_permits = max_permits
        self._in_use = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    @property
    def available(self) -> int:
        return self.max_permits - self._in_use

    async def acquire(self) -> None:
        if self._in_use < self.max_permits and not self._waiters:
            self._in_use += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("Gate %s full, %d waiting", self.name, len(self._waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was handed over just as we were cancelled.
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # The permit moves to the waiter; _in_use is unchanged.
                waiter.set_result(None)
                return
        if self._in_use <= 0:
            raise RuntimeError(f"Gate {self.name} released more times than acquired")
        self._in_use -= 1

    async def __aenter__(self) -> ConcurrencyGate:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class GateRegistry:
    """One gate per engine/provider name."""

    def __init__(self, limits: dict[str, int] | None = None, *, default_limit: int = 2) -> None:
        self._limits = dict(limits or {})
        self._default_limit = default_limit
        self._gates: dict[str, ConcurrencyGate] = {}

    def get(self, name: str) -> ConcurrencyGate:
        gate = self._gates.get(name)
        if gate is None:
            gate = ConcurrencyGate(self._limits.get(name, self._default_limit), name=name)
            self._gates[name] = gate
        return gate
