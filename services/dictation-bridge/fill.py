"""Fill executor — apply matched values to controls, one at a time.

Text-like controls are written through the raw value storage and then
receive input, change and blur events, so frameworks that shadow the value
property still observe the new value. Fills run strictly in sequence with a
settle delay between them.
"""

import asyncio
import logging
from typing import Callable, Protocol

from lxml.html import HtmlElement

from config import settings
from dom import Document, option_text, option_value
from matching import Mapping
from survey import resolve_label

logger = logging.getLogger(__name__)

TEXT_KINDS = {"text", "textarea", "email", "tel", "number", "date"}
TRUTHY_TOKENS = frozenset({"yes", "true", "1", "checked", "on"})
TEXT_EVENT_SEQUENCE = ("input", "change", "blur")

HIGHLIGHT_OUTLINE = "3px solid #10b981"
HIGHLIGHT_TRANSITION = "outline 0.3s"


class ValueCommitter(Protocol):
    def commit(self, element: HtmlElement, value: str) -> None:
        """Set the underlying value and fire the platform's change signals."""


class DomValueCommitter:
    """Writes storage directly, bypassing the tracked property wrapper."""

    def __init__(self, document: Document):
        self._document = document

    def commit(self, element: HtmlElement, value: str) -> None:
        self._document.focus(element)
        self._document.write_value(element, value)
        for event_type in TEXT_EVENT_SEQUENCE:
            self._document.dispatch_event(element, event_type, bubbles=True)


class TimedEffects:
    """Owns delayed side effects so teardown can cancel them together."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.Task:
        async def _run() -> None:
            await asyncio.sleep(delay)
            callback()

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled effect to run."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def __aenter__(self) -> "TimedEffects":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel_all()


class FillExecutor:
    """Applies mappings to one document."""

    def __init__(
        self,
        document: Document,
        effects: TimedEffects | None = None,
        committer: ValueCommitter | None = None,
        settle_seconds: float | None = None,
        highlight_seconds: float | None = None,
    ):
        self.document = document
        self.effects = effects or TimedEffects()
        self.committer = committer or DomValueCommitter(document)
        self.settle_seconds = settle_seconds if settle_seconds is not None else settings.FILL_SETTLE_SECONDS
        self.highlight_seconds = (
            highlight_seconds if highlight_seconds is not None else settings.HIGHLIGHT_SECONDS
        )
        self._highlights: dict[int, tuple[HtmlElement, str, str, asyncio.Task]] = {}

    async def fill_all(self, mappings: list[Mapping]) -> int:
        """Fill every mapping in order; returns how many succeeded."""
        filled = 0
        for mapping in mappings:
            try:
                await self.fill(mapping)
                filled += 1
            except Exception:
                logger.exception("Error filling field %s", mapping.key)
            await asyncio.sleep(self.settle_seconds)
        return filled

    async def fill(self, mapping: Mapping) -> None:
        element = mapping.control.element
        kind = mapping.control.kind

        self.document.scroll_into_view(element)
        await asyncio.sleep(self.settle_seconds)
        self.highlight(element)

        if kind in TEXT_KINDS:
            self.committer.commit(element, mapping.value)
        elif kind == "select":
            self.fill_select(element, mapping.value)
        elif kind == "radio":
            self.fill_radio(element, mapping.value)
        elif kind == "checkbox":
            self.fill_checkbox(element, mapping.value)
        else:
            logger.debug("No fill strategy for %s control (%s)", kind, mapping.key)

    def fill_select(self, element: HtmlElement, value: str) -> bool:
        target = value.lower()
        options = self.document.options(element)

        chosen = next(
            (
                opt for opt in options
                if option_value(opt).lower() == target or option_text(opt).lower() == target
            ),
            None,
        )
        if chosen is None:
            chosen = next(
                (
                    opt for opt in options
                    if option_text(opt) and (target in option_text(opt).lower() or option_text(opt).lower() in target)
                ),
                None,
            )
        if chosen is None:
            logger.debug("No option matches %r", value)
            return False

        self.document.set_value(element, option_value(chosen))
        self.document.dispatch_event(element, "change", bubbles=True)
        return True

    def fill_radio(self, element: HtmlElement, value: str) -> bool:
        target = value.lower()
        for radio in self.document.radio_group(element.get("name") or ""):
            radio_value = (radio.get("value") or "").lower()
            label = resolve_label(self.document, radio).lower()
            if (
                radio_value == target
                or (label and target in label)
                or (radio_value and radio_value in target)
            ):
                self.document.set_checked(radio, True)
                self.document.dispatch_event(radio, "change", bubbles=True)
                return True
        return False

    def fill_checkbox(self, element: HtmlElement, value: str) -> bool:
        should_check = value.lower() in TRUTHY_TOKENS
        if self.document.is_checked(element) == should_check:
            return False
        self.document.set_checked(element, should_check)
        self.document.dispatch_event(element, "change", bubbles=True)
        return True

    def highlight(self, element: HtmlElement) -> None:
        """Outline the control briefly; the revert runs as a scoped effect.

        Re-highlighting a control that is still outlined replaces its
        pending revert and keeps the style captured the first time.
        """
        key = id(element)
        pending = self._highlights.pop(key, None)
        if pending is None:
            original_outline = self.document.style_property(element, "outline")
            original_transition = self.document.style_property(element, "transition")
        else:
            _, original_outline, original_transition, revert_task = pending
            revert_task.cancel()

        self.document.set_style_property(element, "transition", HIGHLIGHT_TRANSITION)
        self.document.set_style_property(element, "outline", HIGHLIGHT_OUTLINE)

        def _revert() -> None:
            self._highlights.pop(key, None)
            self.document.set_style_property(element, "outline", original_outline)
            self.document.set_style_property(element, "transition", original_transition)

        task = self.effects.schedule(self.highlight_seconds, _revert)
        self._highlights[key] = (element, original_outline, original_transition, task)
