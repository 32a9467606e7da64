from __future__ import annotations

import asyncio
from typing import Protocol


class ConsentPrompt(Protocol):
    """Whatever asks the player. Resolves True for "Allow", False otherwise."""

    async def request(self) -> bool:  # pragma: no cover
        ...


class StaticConsentPrompt:
    """Answers every request with a fixed decision (kiosk builds, tests)."""

    def __init__(self, granted: bool) -> None:
        self.granted = granted
        self.requests = 0

    async def request(self) -> bool:
        self.requests += 1
        return self.granted


class DeferredConsentPrompt:
    """A request stays open until the host calls `resolve` (e.g. from an API call).

    Concurrent `request` calls share the same outstanding decision.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Future[bool] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def open(self) -> None:
        """Start an outstanding request on the running loop (idempotent)."""

        if self._pending is None or self._pending.done():
            self._pending = asyncio.get_running_loop().create_future()

    async def request(self) -> bool:
        self.open()
        assert self._pending is not None
        return await asyncio.shield(self._pending)

    def resolve(self, granted: bool) -> bool:
        """Complete the outstanding request. Returns False if none was open."""

        fut = self._pending
        if fut is None or fut.done():
            return False
        fut.get_loop().call_soon_threadsafe(_set_result_if_pending, fut, granted)
        return True


def _set_result_if_pending(fut: asyncio.Future[bool], granted: bool) -> None:
    if not fut.done():
        fut.set_result(granted)
