"""Coordinating service — the single authority over cross-context state.

Tracks which context produces the transcript and which one hosts the form,
holds the latest transcript, discovers a destination when none is known,
and delivers the transcript there before bringing it to the foreground.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from bus import TabHost, TabNotFound, TabUnreachable
from config import settings
from models import Message, MessageType, StateSnapshot, TabInfo
from notify import LoggingNotifier, Notifier, Severity

logger = logging.getLogger(__name__)

Handler = Callable[[Message, int | None], Awaitable[dict]]


class DestinationUnreachable(Exception):
    """The destination context could not be brought to the foreground."""


@dataclass
class TranscriptState:
    latest_transcript: str | None = None
    source_context_id: int | None = None
    destination_context_id: int | None = None

    def reset(self) -> None:
        self.latest_transcript = None
        self.source_context_id = None
        self.destination_context_id = None


class CoordinatorService:
    """Owns TranscriptState; every mutation goes through its message handlers."""

    def __init__(
        self,
        tabs: TabHost,
        notifier: Notifier | None = None,
        delivery_timeout: float | None = None,
        min_delivery_length: int | None = None,
    ):
        self.tabs = tabs
        self.notifier = notifier or LoggingNotifier()
        self.delivery_timeout = (
            delivery_timeout if delivery_timeout is not None else settings.DELIVERY_TIMEOUT_SECONDS
        )
        self.min_delivery_length = (
            min_delivery_length if min_delivery_length is not None else settings.MIN_DELIVERY_LENGTH
        )
        self.state = TranscriptState()
        self._background: set[asyncio.Task] = set()
        self._handlers: dict[str, Handler] = {
            MessageType.TRANSCRIPT_DETECTED.value: self._on_transcript_detected,
            MessageType.TRANSCRIPT_READY.value: self._on_transcript_ready,
            MessageType.IDENTIFY_AS_DESTINATION.value: self._on_identify_as_destination,
            MessageType.REQUEST_TRANSCRIPT.value: self._on_request_transcript,
            MessageType.GET_STATE.value: self._on_get_state,
        }
        tabs.add_removed_listener(self.on_tab_removed)

    async def handle_message(self, message: Message, sender_tab_id: int | None) -> dict:
        """Dispatch one bus message; errors come back in the response body."""
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning("Unknown message type: %s", message.type)
            return {"success": False, "error": f"Unknown message type: {message.type}"}

        try:
            return await handler(message, sender_tab_id)
        except Exception as e:
            logger.error("Error handling %s from context %s: %s", message.type, sender_tab_id, e)
            return {"success": False, "error": str(e)}

    # Handlers

    async def _on_transcript_detected(self, message: Message, sender_tab_id: int | None) -> dict:
        self.state.latest_transcript = message.data
        self.state.source_context_id = sender_tab_id
        return {"success": True}

    async def _on_transcript_ready(self, message: Message, sender_tab_id: int | None) -> dict:
        delivered = await self.transcript_ready(message.data or "", sender_tab_id)
        return {"success": True, "delivered": delivered}

    async def _on_identify_as_destination(self, message: Message, sender_tab_id: int | None) -> dict:
        self.state.destination_context_id = sender_tab_id
        transcript = self.state.latest_transcript
        if sender_tab_id is not None and transcript and len(transcript) > self.min_delivery_length:
            self._spawn(self.deliver(sender_tab_id), f"delivery to context {sender_tab_id}")
        return {"success": True}

    async def _on_request_transcript(self, message: Message, sender_tab_id: int | None) -> dict:
        return {"transcript": self.state.latest_transcript}

    async def _on_get_state(self, message: Message, sender_tab_id: int | None) -> dict:
        return self.snapshot().model_dump()

    # Operations

    async def transcript_ready(self, transcript: str, source_tab_id: int | None) -> bool:
        """Store a final transcript and deliver it; returns False if no destination exists."""
        self.state.latest_transcript = transcript
        self.state.source_context_id = source_tab_id
        logger.info("Final transcript from context %s: %d chars", source_tab_id, len(transcript))

        known = self.state.destination_context_id
        if known is not None:
            try:
                await self.deliver(known)
                return True
            except DestinationUnreachable:
                logger.warning("Known destination %s is gone, rediscovering", known)
                self.state.destination_context_id = None

        tab = await self.find_destination()
        if tab is None:
            logger.info("No destination context found, transcript held until one identifies")
            return False

        self.state.destination_context_id = tab.id
        await self.deliver(tab.id)
        return True

    async def find_destination(self) -> TabInfo | None:
        """Probe open contexts for a form surface, skipping the source."""
        for tab in await self.tabs.list_tabs():
            if tab.id == self.state.source_context_id or not tab.url.startswith("http"):
                continue
            try:
                response = await self.tabs.send(tab.id, Message(type=MessageType.HAS_FORM_SURFACE.value))
            except Exception as e:
                logger.debug("Context %d did not answer form probe: %s", tab.id, e)
                continue
            if isinstance(response, dict) and response.get("has_form_surface"):
                logger.info("Discovered destination context %d (%s)", tab.id, tab.url)
                return tab
        return None

    async def deliver(self, tab_id: int) -> None:
        """Send the transcript, then bring the destination to the foreground.

        A slow or failed send is logged and delivery carries on; a failed
        focus switch notifies the user, forgets the destination and raises
        DestinationUnreachable.
        """
        message = Message(type=MessageType.DELIVER_TRANSCRIPT.value, data=self.state.latest_transcript)
        send = self._spawn(self.tabs.send(tab_id, message), f"transcript message to context {tab_id}")

        try:
            await asyncio.wait_for(asyncio.shield(send), timeout=self.delivery_timeout)
        except asyncio.TimeoutError:
            logger.warning("Delivery to context %d timed out after %.1fs", tab_id, self.delivery_timeout)
        except Exception as e:
            logger.warning("Delivery message to context %d failed: %s", tab_id, e)

        try:
            tab = await self.tabs.get_tab(tab_id)
            await asyncio.gather(
                self.tabs.focus_window(tab.window_id),
                self.tabs.activate_tab(tab_id),
            )
        except (TabNotFound, TabUnreachable) as e:
            logger.error("Transfer to destination %d failed: %s", tab_id, e)
            self.notifier.notify("Transfer failed: could not auto-fill the form. Please try manually.", Severity.ERROR)
            if self.state.destination_context_id == tab_id:
                self.state.destination_context_id = None
            raise DestinationUnreachable(f"Destination context {tab_id} is gone") from e

    def on_tab_removed(self, tab_id: int) -> None:
        """Forget any tracked context that just closed."""
        if tab_id == self.state.source_context_id:
            logger.info("Source context %d closed, dropping its transcript", tab_id)
            self.state.source_context_id = None
            self.state.latest_transcript = None
        if tab_id == self.state.destination_context_id:
            logger.info("Destination context %d closed", tab_id)
            self.state.destination_context_id = None

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            source_context_id=self.state.source_context_id,
            destination_context_id=self.state.destination_context_id,
            has_transcript=bool(self.state.latest_transcript),
        )

    # Background work

    def _spawn(self, coro: Awaitable, description: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.debug("Background %s failed: %s", description, finished.exception())

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used at shutdown and in tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()
