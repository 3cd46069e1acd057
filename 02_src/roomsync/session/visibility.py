"""VisibilityGate: tears live feeds down while a view is hidden."""

import asyncio
import random
from typing import Awaitable, Callable

from ..logging_config import get_logger
from .backoff import ResumeJitter

logger = get_logger(__name__)


class VisibilityGate:
    """
    One timer task driving hide/resume for a live view.

    Hidden for longer than hide_debounce -> on_hide(). Visible again after a
    teardown -> on_resume() after a randomized short delay. Becoming visible
    inside the debounce window cancels the pending teardown.
    """

    def __init__(
        self,
        on_hide: Callable[[], Awaitable[None]],
        on_resume: Callable[[], Awaitable[None]],
        hide_debounce: float = 3.0,
        jitter: ResumeJitter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._on_hide = on_hide
        self._on_resume = on_resume
        self._hide_debounce = hide_debounce
        self._jitter = jitter or ResumeJitter()
        self._sleep = sleep
        self._rng = rng
        self._visible = True
        self._torn_down = False
        self._timer: asyncio.Task | None = None

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def torn_down(self) -> bool:
        """True while the view's feed is released because it was hidden."""
        return self._torn_down

    async def set_visible(self, visible: bool) -> None:
        """Record a visibility change and (re)arm the timer."""
        if visible == self._visible:
            return
        self._visible = visible
        await self._cancel_timer()

        if not visible:
            self._timer = asyncio.create_task(self._hide_after_debounce())
        elif self._torn_down:
            self._timer = asyncio.create_task(self._resume_after_jitter())

    async def wait(self) -> None:
        """Wait for the pending timer, if any, to finish."""
        if self._timer is not None:
            await asyncio.gather(self._timer, return_exceptions=True)

    async def cancel(self) -> None:
        """Drop any pending timer and forget a previous teardown."""
        await self._cancel_timer()
        self._torn_down = False
        self._visible = True

    async def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None or timer.done() or timer is asyncio.current_task():
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass

    async def _hide_after_debounce(self) -> None:
        await self._sleep(self._hide_debounce)
        # Detach before teardown so a visibility flip cannot cancel it midway
        self._timer = None
        self._torn_down = True
        logger.info("View hidden for %.1fs, releasing feed", self._hide_debounce)
        await self._on_hide()

    async def _resume_after_jitter(self) -> None:
        delay = self._jitter.next_delay(self._rng)
        await self._sleep(delay)
        self._timer = None
        self._torn_down = False
        logger.info("View visible again, resuming after %.2fs", delay)
        await self._on_resume()
