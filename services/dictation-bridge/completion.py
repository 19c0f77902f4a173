"""Completion detector — decide when a live transcript has stopped changing.

After a stop signal the transcript length is polled on a fixed interval.
Short transcripts need five unchanged ticks, transcripts that have ever
reached the long threshold need four, and a hard ceiling forces completion
no matter what the transcript does.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from config import settings

logger = logging.getLogger(__name__)

FINISHED_PHRASES = ("finished", "review")


class CompletionPhase(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    COMPLETE = "complete"


@dataclass
class CompletionCheckState:
    last_observed_length: int = 0
    unchanged_tick_count: int = 0
    has_crossed_long_threshold: bool = False
    is_complete: bool = False


def is_finished_phrase(text: str) -> bool:
    """True when a status line says recording is over."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in FINISHED_PHRASES)


class CompletionDetector:
    """Idle -> Watching -> Complete, emitting the final transcript once."""

    def __init__(
        self,
        read_transcript: Callable[[], str],
        on_complete: Callable[[str], Awaitable[None] | None],
        poll_interval: float | None = None,
        max_wait: float | None = None,
        min_length: int | None = None,
        long_length: int | None = None,
        stable_ticks: int | None = None,
        stable_ticks_long: int | None = None,
    ):
        self._read = read_transcript
        self._on_complete = on_complete
        self.poll_interval = poll_interval if poll_interval is not None else settings.COMPLETION_POLL_INTERVAL
        self.max_wait = max_wait if max_wait is not None else settings.COMPLETION_MAX_WAIT
        self.min_length = min_length if min_length is not None else settings.COMPLETION_MIN_LENGTH
        self.long_length = long_length if long_length is not None else settings.COMPLETION_LONG_LENGTH
        self.stable_ticks = stable_ticks if stable_ticks is not None else settings.COMPLETION_STABLE_TICKS
        self.stable_ticks_long = (
            stable_ticks_long if stable_ticks_long is not None else settings.COMPLETION_STABLE_TICKS_LONG
        )

        self.phase = CompletionPhase.IDLE
        self.state: CompletionCheckState | None = None
        self.ticks = 0
        self.reason = ""
        self._timers: list[asyncio.Task] = []
        self._done: asyncio.Future | None = None

    def observe(self, length: int) -> bool:
        """Apply one poll tick; returns True once the transcript is stable."""
        state = self.state
        if state is None:
            raise RuntimeError("Completion detector is not watching")

        self.ticks += 1
        if length >= self.long_length:
            state.has_crossed_long_threshold = True

        if length >= self.min_length and length == state.last_observed_length:
            state.unchanged_tick_count += 1
        else:
            state.unchanged_tick_count = 0
            state.last_observed_length = length

        required = self.stable_ticks_long if state.has_crossed_long_threshold else self.stable_ticks
        return state.unchanged_tick_count >= required

    def begin(self) -> None:
        """Enter Watching without starting timers (used by start and tests)."""
        if self.phase is not CompletionPhase.IDLE:
            raise RuntimeError(f"Completion detector already {self.phase.value}")
        self.state = CompletionCheckState()
        self.phase = CompletionPhase.WATCHING

    def start(self) -> None:
        """Handle a stop signal: start polling and the hard ceiling timer."""
        self.begin()
        loop = asyncio.get_running_loop()
        self._done = loop.create_future()
        self._timers = [
            loop.create_task(self._poll()),
            loop.create_task(self._ceiling()),
        ]
        logger.info("Watching transcript for completion (ceiling %.1fs)", self.max_wait)

    async def wait(self) -> str:
        """Wait until completion fires; returns the emitted transcript."""
        if self._done is None:
            raise RuntimeError("Completion detector was never started")
        return await self._done

    def discard(self) -> None:
        """Drop pending timers without emitting (a newer stop signal supersedes this one)."""
        self._cancel_timers()
        if self.phase is CompletionPhase.WATCHING:
            self.phase = CompletionPhase.COMPLETE
        if self._done is not None and not self._done.done():
            self._done.cancel()

    async def _poll(self) -> None:
        while self.phase is CompletionPhase.WATCHING:
            if self.observe(len(self._read())):
                await self._complete("stable")
                return
            await asyncio.sleep(self.poll_interval)

    async def _ceiling(self) -> None:
        await asyncio.sleep(self.max_wait)
        if self.phase is CompletionPhase.WATCHING:
            logger.info("Transcript still changing after %.1fs, completing anyway", self.max_wait)
            await self._complete("timeout")

    async def _complete(self, reason: str) -> None:
        if self.phase is not CompletionPhase.WATCHING:
            return
        self.phase = CompletionPhase.COMPLETE
        self.state.is_complete = True
        self.reason = reason
        self._cancel_timers()

        transcript = self._read()
        logger.info("Transcript complete (%s) after %d ticks: %d chars", reason, self.ticks, len(transcript))

        try:
            result = self._on_complete(transcript)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Completion handler failed")
        finally:
            if self._done is not None and not self._done.done():
                self._done.set_result(transcript)

    def _cancel_timers(self) -> None:
        current = asyncio.current_task() if self._timers else None
        for task in self._timers:
            if task is not current and not task.done():
                task.cancel()
        self._timers = []
