"""In-memory document model for source and destination contexts.

Wraps an lxml.html tree with the parts of browser behavior the autofill
pipeline relies on: control enumeration, inline computed style, focus and
scroll tracking, bubbling event dispatch, and the split between a control's
raw value storage and the value property wrapper that reactive frameworks
shadow with a value tracker.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable

import lxml.html
from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

CONTROL_XPATH = "//input | //textarea | //select"
CHECKABLE_KINDS = {"checkbox", "radio"}

_ZERO_LENGTH = re.compile(r"^0*\.?0*(px|em|rem|%|vh|vw)?$")
_EMPTY_DOCUMENT = "<html><body></body></html>"


@dataclass
class Event:
    type: str
    target: HtmlElement
    bubbles: bool = True


Listener = Callable[[Event], None]


class ValueTracker:
    """Last value a framework saw through the value property wrapper."""

    def __init__(self, value: str):
        self.value = value


def widget_kind(element: HtmlElement) -> str:
    """Return the control kind: textarea, select, or the input type."""
    if element.tag == "textarea":
        return "textarea"
    if element.tag == "select":
        return "select"
    if element.tag == "input":
        return (element.get("type") or "text").strip().lower() or "text"
    return "unknown"


def option_text(option: HtmlElement) -> str:
    return " ".join(option.text_content().split())


def option_value(option: HtmlElement) -> str:
    value = option.get("value")
    return value if value is not None else option_text(option)


def parse_style(text: str | None) -> dict[str, str]:
    """Parse an inline style attribute into lower-cased declarations."""
    declarations: dict[str, str] = {}
    for chunk in (text or "").split(";"):
        prop, sep, value = chunk.partition(":")
        if sep and prop.strip():
            declarations[prop.strip().lower()] = value.split("!")[0].strip().lower()
    return declarations


def _format_style(declarations: dict[str, str]) -> str:
    return "; ".join(f"{prop}: {value}" for prop, value in declarations.items())


def _is_zero_length(value: str) -> bool:
    return bool(value) and bool(_ZERO_LENGTH.match(value))


class Document:
    """A parsed page plus the mutable browser state the pipeline touches."""

    def __init__(self, html: str, url: str = ""):
        self.root: HtmlElement = lxml.html.document_fromstring(html.strip() or _EMPTY_DOCUMENT)
        self.url = url
        self.active_element: HtmlElement | None = None
        self.scroll_history: list[HtmlElement] = []
        self._listeners: dict[tuple[object, str], list[Listener]] = {}
        self._trackers: dict[HtmlElement, ValueTracker] = {}

    # Queries

    def xpath(self, expression: str, **variables) -> list:
        return self.root.xpath(expression, **variables)

    def controls(self) -> list[HtmlElement]:
        """All input, textarea and select elements in document order."""
        return self.root.xpath(CONTROL_XPATH)

    def forms(self) -> list[HtmlElement]:
        return self.root.xpath("//form")

    def get_element_by_id(self, element_id: str) -> HtmlElement | None:
        found = self.root.xpath("//*[@id=$id]", id=element_id)
        return found[0] if found else None

    def labels_for(self, element_id: str) -> list[HtmlElement]:
        return self.root.xpath("//label[@for=$id]", id=element_id)

    def radio_group(self, name: str) -> list[HtmlElement]:
        candidates = self.root.xpath("//input[@name=$name]", name=name)
        return [el for el in candidates if widget_kind(el) == "radio"]

    def options(self, select: HtmlElement) -> list[HtmlElement]:
        return select.xpath(".//option")

    # Control state

    def read_value(self, element: HtmlElement) -> str:
        """Read the control's current value the way the page would see it."""
        if element.tag == "textarea":
            return element.text_content()
        if element.tag == "select":
            options = self.options(element)
            for option in options:
                if option.get("selected") is not None:
                    return option_value(option)
            return option_value(options[0]) if options else ""
        if widget_kind(element) in CHECKABLE_KINDS:
            return element.get("value", "on")
        return element.get("value", "")

    def write_value(self, element: HtmlElement, value: str) -> None:
        """Write straight to the control's value storage, skipping any tracker."""
        if element.tag == "textarea":
            for child in list(element):
                element.remove(child)
            element.text = value
        elif element.tag == "select":
            chosen = False
            for option in self.options(element):
                if not chosen and option_value(option) == value:
                    option.set("selected", "selected")
                    chosen = True
                else:
                    option.attrib.pop("selected", None)
        else:
            element.set("value", value)

    def set_text(self, element: HtmlElement, text: str) -> None:
        """Replace an element's text content and notify its mutation listeners."""
        for child in list(element):
            element.remove(child)
        element.text = text
        self.dispatch_event(element, "mutation", bubbles=False)

    def set_value(self, element: HtmlElement, value: str) -> None:
        """Assign through the value property wrapper.

        A framework tracking this control records the assignment as already
        seen, so a later input event does not report it as a change.
        """
        tracker = self._trackers.get(element)
        if tracker is not None:
            tracker.value = value
        self.write_value(element, value)

    def track_value(self, element: HtmlElement) -> ValueTracker:
        tracker = ValueTracker(self.read_value(element))
        self._trackers[element] = tracker
        return tracker

    def is_checked(self, element: HtmlElement) -> bool:
        return element.get("checked") is not None

    def set_checked(self, element: HtmlElement, checked: bool) -> None:
        if checked:
            name = element.get("name")
            if widget_kind(element) == "radio" and name:
                for other in self.radio_group(name):
                    other.attrib.pop("checked", None)
            element.set("checked", "checked")
        else:
            element.attrib.pop("checked", None)

    # Style and visibility

    def style_property(self, element: HtmlElement, prop: str) -> str:
        return parse_style(element.get("style")).get(prop, "")

    def set_style_property(self, element: HtmlElement, prop: str, value: str) -> None:
        declarations = parse_style(element.get("style"))
        if value:
            declarations[prop] = value
        else:
            declarations.pop(prop, None)
        if declarations:
            element.set("style", _format_style(declarations))
        else:
            element.attrib.pop("style", None)

    def computed_style(self, element: HtmlElement) -> dict[str, str]:
        """Resolve the style properties visibility checks need.

        Only inline styles, the hidden attribute and hidden inputs are
        considered; visibility inherits from the nearest ancestor that sets it.
        """
        own = parse_style(element.get("style"))
        display = own.get("display") or "inline"
        if element.get("hidden") is not None or widget_kind(element) == "hidden":
            display = "none"

        visibility = own.get("visibility")
        if not visibility:
            visibility = "visible"
            for ancestor in element.iterancestors():
                inherited = parse_style(ancestor.get("style")).get("visibility")
                if inherited:
                    visibility = inherited
                    break

        return {
            "display": display,
            "visibility": visibility,
            "opacity": own.get("opacity", "1"),
            "width": own.get("width", ""),
            "height": own.get("height", ""),
        }

    def is_display_suppressed(self, element: HtmlElement, include_ancestors: bool = True) -> bool:
        if self.computed_style(element)["display"] == "none":
            return True
        if not include_ancestors:
            return False
        for ancestor in element.iterancestors():
            if ancestor.get("hidden") is not None:
                return True
            if parse_style(ancestor.get("style")).get("display") == "none":
                return True
        return False

    def has_rendered_size(self, element: HtmlElement) -> bool:
        if self.is_display_suppressed(element):
            return False
        style = self.computed_style(element)
        return not (_is_zero_length(style["width"]) and _is_zero_length(style["height"]))

    # Focus and scrolling

    def focus(self, element: HtmlElement) -> None:
        self.active_element = element
        self.dispatch_event(element, "focus", bubbles=False)

    def scroll_into_view(self, element: HtmlElement) -> None:
        self.scroll_history.append(element)

    # Events

    def add_event_listener(self, target: object, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault((target, event_type), []).append(listener)

    def remove_event_listener(self, target: object, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get((target, event_type), [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, target: HtmlElement, event_type: str, bubbles: bool = True) -> Event:
        """Run listeners on the target, then its ancestors and the document."""
        event = Event(event_type, target, bubbles)
        path: list[object] = [target]
        if bubbles:
            path.extend(target.iterancestors())
            path.append(self)

        for node in path:
            for listener in list(self._listeners.get((node, event_type), ())):
                try:
                    listener(event)
                except Exception:
                    # Listener errors are reported, never propagated to the dispatcher
                    logger.exception("Listener for %r event raised", event_type)
        return event


def bind_controlled_input(
    document: Document,
    element: HtmlElement,
    on_change: Callable[[str], None],
) -> ValueTracker:
    """Attach a framework-style controlled binding to a control.

    The binding keeps its own copy of the value and only reports a change
    when an input event finds the stored value different from that copy,
    which is how frameworks miss assignments made through the property
    wrapper.
    """
    tracker = document.track_value(element)

    def _on_input(event: Event) -> None:
        current = document.read_value(element)
        if current != tracker.value:
            tracker.value = current
            on_change(current)

    document.add_event_listener(element, "input", _on_input)
    return tracker
