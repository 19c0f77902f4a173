"""Context agent — the per-page side of the dictation bridge.

Classifies its page as a transcript source, a form destination, or neither,
and runs that side of the protocol. Sources watch their transcript and
report it to the coordinator; destinations fill their form from delivered
transcripts or from structured text pasted into one of their fields.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from fastapi import FastAPI
from lxml.html import HtmlElement

from bus import CoordinatorLink
from completion import CompletionDetector, CompletionPhase, is_finished_phrase
from config import settings
from coordinator_client import CoordinatorClient, CoordinatorError, CoordinatorUnavailable
from dom import Document, Event
from extraction import LineBoundary, ProseBoundary, extract, looks_like_structured_data
from fill import FillExecutor, TimedEffects
from matching import Mapping, ThresholdPolicy, match
from models import Message, MessageType
from notify import LoggingNotifier, Notifier, Severity
from survey import VisibilityMode, has_form_surface, survey

logger = logging.getLogger(__name__)

TRANSCRIPT_ELEMENT_IDS = ("textBox", "id-intronies-transcript-textbox")
STOP_BUTTON_IDS = ("stopBtn", "id-intronies-stop-btn")
STATUS_ELEMENT_ID = "start-prompt"
STOP_BUTTON_WORDS = ("stop", "finish")

INVALIDATED_PROMPT = "Extension was reloaded. Please refresh this page and try again."


class PageRole(str, Enum):
    SOURCE = "source"
    DESTINATION = "destination"
    PASSIVE = "passive"


def is_text_entry(element: Any) -> bool:
    return isinstance(element, HtmlElement) and element.tag in ("input", "textarea")


class ContextAgent:
    """Runs the source or destination side of the protocol for one document."""

    def __init__(
        self,
        document: Document,
        link: CoordinatorLink | None = None,
        notifier: Notifier | None = None,
        fill_settle_seconds: float | None = None,
        highlight_seconds: float | None = None,
        source_clear_delay: float | None = None,
        paste_settle_seconds: float | None = None,
        status_settle_seconds: float | None = None,
        completion_options: dict | None = None,
    ):
        self.document = document
        self.link = link
        self.notifier = notifier or LoggingNotifier()
        self.effects = TimedEffects()
        self.executor = FillExecutor(
            document,
            effects=self.effects,
            settle_seconds=fill_settle_seconds,
            highlight_seconds=highlight_seconds,
        )
        self.source_clear_delay = (
            source_clear_delay if source_clear_delay is not None else settings.SOURCE_CLEAR_DELAY
        )
        self.paste_settle_seconds = (
            paste_settle_seconds if paste_settle_seconds is not None else settings.PASTE_SETTLE_SECONDS
        )
        self.status_settle_seconds = (
            status_settle_seconds if status_settle_seconds is not None else settings.STATUS_SETTLE_SECONDS
        )
        self.completion_options = completion_options or {}

        self.role = PageRole.PASSIVE
        self.transcript_element: HtmlElement | None = None
        self.detector: CompletionDetector | None = None
        self.focused = False
        self._is_processing = False
        self._last_reported = ""
        self._tasks: set[asyncio.Task] = set()

    # Lifecycle

    def detect_role(self) -> PageRole:
        for element_id in TRANSCRIPT_ELEMENT_IDS:
            element = self.document.get_element_by_id(element_id)
            if element is not None:
                self.transcript_element = element
                return PageRole.SOURCE

        # The transcription app itself is never a fill target
        if settings.SOURCE_APP_ORIGIN and settings.SOURCE_APP_ORIGIN in self.document.url:
            return PageRole.PASSIVE

        if has_form_surface(self.document):
            return PageRole.DESTINATION
        return PageRole.PASSIVE

    async def start(self) -> PageRole:
        self.role = self.detect_role()
        if self.role is PageRole.SOURCE:
            self._watch_source()
        elif self.role is PageRole.DESTINATION:
            self._watch_destination()
            await self._send(Message(type=MessageType.IDENTIFY_AS_DESTINATION.value))
        logger.info("Context agent ready as %s (%s)", self.role.value, self.document.url or "no url")
        return self.role

    async def close(self) -> None:
        self.effects.cancel_all()
        if self.detector is not None:
            self.detector.discard()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    def focus(self) -> None:
        self.focused = True
        logger.info("Context brought to foreground")

    # Incoming messages

    async def handle_message(self, message: Message) -> dict:
        logger.debug("Received message: %s", message.type)

        if message.type == MessageType.DELIVER_TRANSCRIPT.value:
            mappings = await self.autofill_from_transcript(message.data or "")
            return {"success": True, "filled": len(mappings)}

        if message.type == MessageType.EXTRACT_TRANSCRIPT.value:
            return {"transcript": self.read_transcript()}

        if message.type == MessageType.HAS_FORM_SURFACE.value:
            return {"has_form_surface": has_form_surface(self.document)}

        return {"success": False, "error": f"Unknown message type: {message.type}"}

    # Destination side

    async def autofill_from_transcript(self, transcript: str) -> list[Mapping]:
        """Fill this document from a delivered dictation transcript."""
        fields = extract(transcript, dialect=ProseBoundary.name)
        if not fields:
            logger.info("No structured data found in transcript (%d chars)", len(transcript))
            self.notifier.notify("No structured data found in transcript", Severity.ERROR)
            return []

        controls = survey(self.document, visibility=VisibilityMode.LENIENT)
        mappings = match(fields, controls, ThresholdPolicy.delivery())
        logger.info("Extracted %d fields, matched %d of %d controls", len(fields), len(mappings), len(controls))

        was_processing = self._is_processing
        self._is_processing = True
        try:
            await self.executor.fill_all(mappings)
        finally:
            self._is_processing = was_processing

        self.notifier.notify("Form auto-filled successfully!", Severity.SUCCESS)
        return mappings

    async def handle_paste(self, source: HtmlElement) -> list[Mapping]:
        """Fill the rest of the form from structured text pasted into ``source``."""
        if self._is_processing:
            logger.info("Already processing, skipping paste")
            return []

        text = self.document.read_value(source).strip()
        if len(text) < settings.PASTE_MIN_LENGTH:
            return []

        self._is_processing = True
        try:
            fields = extract(text, dialect=LineBoundary.name)
            if not fields:
                logger.info("No structured data found in pasted text")
                return []

            controls = survey(self.document, exclude=source, visibility=VisibilityMode.STRICT)
            mappings = match(fields, controls, ThresholdPolicy.paste())
            logger.info("Extracted %d fields, matched %d of %d controls", len(fields), len(mappings), len(controls))

            await self.executor.fill_all(mappings)
            self.effects.schedule(self.source_clear_delay, lambda: self._clear_source(source))
            self.notifier.notify("Form auto-filled successfully!", Severity.SUCCESS)
            return mappings
        except Exception as e:
            logger.exception("Autofill failed")
            self.notifier.notify(f"Autofill failed: {e}", Severity.ERROR)
            return []
        finally:
            self._is_processing = False

    def _watch_destination(self) -> None:
        self.document.add_event_listener(self.document, "paste", self._on_paste)
        self.document.add_event_listener(self.document, "input", self._on_input)

    def _on_paste(self, event: Event) -> None:
        target = event.target
        if not is_text_entry(target):
            return

        # The pasted text lands in the control after the event
        def _after_paste() -> None:
            if looks_like_structured_data(self.document.read_value(target)):
                self._spawn(self.handle_paste(target))

        self.effects.schedule(self.paste_settle_seconds, _after_paste)

    def _on_input(self, event: Event) -> None:
        target = event.target
        if self._is_processing or not is_text_entry(target):
            return
        value = self.document.read_value(target)
        if len(value) > settings.INPUT_TRIGGER_LENGTH and looks_like_structured_data(value):
            self._spawn(self.handle_paste(target))

    def _clear_source(self, source: HtmlElement) -> None:
        self.document.set_value(source, "")
        self.document.dispatch_event(source, "input", bubbles=True)
        self.document.dispatch_event(source, "change", bubbles=True)
        logger.debug("Source field cleared")

    # Source side

    def read_transcript(self) -> str:
        element = self.transcript_element
        if element is None:
            return ""
        if element.tag in ("textarea", "input"):
            return self.document.read_value(element).strip()
        return element.text_content().strip()

    def on_transcript_changed(self) -> None:
        """Report a streaming transcript update (call on every content mutation)."""
        text = self.read_transcript()
        if len(text) > settings.TRANSCRIPT_DETECT_MIN_LENGTH and text != self._last_reported:
            self._last_reported = text
            logger.debug("Transcript updated: %d chars", len(text))
            self._spawn(self._send(Message(type=MessageType.TRANSCRIPT_DETECTED.value, data=text)))

    def on_status_changed(self) -> None:
        """Check the status line; a finished/review phrase starts watching."""
        status = self.document.get_element_by_id(STATUS_ELEMENT_ID)
        if status is not None and is_finished_phrase(status.text_content()):
            self.effects.schedule(self.status_settle_seconds, self.on_stop_signal)

    def on_stop_signal(self) -> None:
        """Recording stopped: wait for the final transcript, then send it."""
        if self.detector is not None and self.detector.phase is CompletionPhase.WATCHING:
            self.detector.discard()
        self.detector = CompletionDetector(
            self.read_transcript,
            self.send_transcript_ready,
            **self.completion_options,
        )
        self.detector.start()

    async def send_transcript_ready(self, transcript: str | None = None) -> bool:
        text = transcript if transcript is not None else self.read_transcript()
        if len(text) <= settings.MIN_DELIVERY_LENGTH:
            logger.info("Transcript too short (%d chars), not sending", len(text))
            return False

        logger.info("Sending final transcript: %d chars", len(text))
        response = await self._send(Message(type=MessageType.TRANSCRIPT_READY.value, data=text))
        if response is None:
            return False

        self.notifier.notify("Transcript captured! Switch to EMR tab to auto-fill", Severity.SUCCESS)
        return True

    def _watch_source(self) -> None:
        self.document.add_event_listener(self.transcript_element, "input", lambda event: self.on_transcript_changed())

        status = self.document.get_element_by_id(STATUS_ELEMENT_ID)
        if status is not None:
            self.document.add_event_listener(status, "mutation", lambda event: self.on_status_changed())

        stop_buttons = [
            button for button in map(self.document.get_element_by_id, STOP_BUTTON_IDS) if button is not None
        ]
        if stop_buttons:
            self.document.add_event_listener(stop_buttons[0], "click", lambda event: self.on_stop_signal())
        else:
            self.document.add_event_listener(self.document, "click", self._on_click)

    def _on_click(self, event: Event) -> None:
        button = event.target if event.target.tag == "button" else next(event.target.iterancestors("button"), None)
        if button is None:
            return
        text = button.text_content().lower()
        if any(word in text for word in STOP_BUTTON_WORDS):
            self.on_stop_signal()

    # Plumbing

    async def _send(self, message: Message) -> dict | None:
        if self.link is None:
            logger.warning("No coordinator link, dropping %s", message.type)
            return None
        try:
            return await self.link.send(message)
        except CoordinatorUnavailable as e:
            logger.error("Coordinator unreachable: %s", e)
            self.notifier.prompt(INVALIDATED_PROMPT)
        except CoordinatorError as e:
            logger.error("Coordinator rejected %s: %s", message.type, e)
        return None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Agent task failed: %s", finished.exception())

        task.add_done_callback(_done)
        return task

    async def settle(self) -> None:
        """Wait for scheduled effects and spawned work to finish."""
        while self._tasks or self.effects.pending:
            await self.effects.drain()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_agent_app(
    agent: ContextAgent,
    client: CoordinatorClient | None = None,
    callback_url: str | None = None,
) -> FastAPI:
    """HTTP face of a context, for use with tab_client.HttpTabHost.

    With a client the app registers its page with the coordinator on startup,
    starts the agent as that context, and unregisters on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if client is not None:
            tab = await client.register_tab(agent.document.url, callback_url or "")
            logger.info("Registered with coordinator as context %d", tab.id)
        await agent.start()

        yield

        await agent.close()
        if client is not None:
            await client.unregister_tab()
            await client.close()

    app = FastAPI(title="Dictation Bridge Context", version="1.0.0", lifespan=lifespan)

    @app.post("/messages")
    async def messages(message: Message):
        """Handle one message from the coordinator."""
        return await agent.handle_message(message)

    @app.post("/focus")
    async def focus():
        """Bring this context to the foreground."""
        agent.focus()
        return {"success": True}

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    with open(settings.AGENT_PAGE_FILE, encoding="utf-8") as f:
        page = Document(f.read(), url=settings.AGENT_PAGE_URL)

    coordinator = CoordinatorClient()
    app = create_agent_app(
        ContextAgent(page, link=coordinator),
        client=coordinator,
        callback_url=f"http://127.0.0.1:{settings.AGENT_PORT}",
    )
    uvicorn.run(app, host="127.0.0.1", port=settings.AGENT_PORT)
