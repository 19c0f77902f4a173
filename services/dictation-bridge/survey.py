"""Form surveyor — enumerate fillable controls and describe each one.

Every descriptor carries a lower-cased ``identifier`` built from the
control's label, name, id, placeholder and accessible label; the matcher
scores canonical fields against that string.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from lxml.html import HtmlElement

from config import settings
from dom import Document, widget_kind

logger = logging.getLogger(__name__)

ACTION_KINDS = {"submit", "button", "reset", "image"}

# Fields that reactive EMR forms keep mounted but hidden while re-rendering
IMPORTANT_FIELDS = ("patient_fullname", "patient_age", "patient_gender", "date_of_birth")

CONTAINER_LABEL_MAX = 100


class VisibilityMode(str, Enum):
    STRICT = "strict"
    LENIENT = "lenient"


@dataclass(eq=False)
class ControlDescriptor:
    element: HtmlElement
    index: int
    kind: str
    name: str = ""
    id: str = ""
    placeholder: str = ""
    label: str = ""
    aria_label: str = ""
    value: str = ""
    required: bool = False
    readonly: bool = False
    disabled: bool = False
    identifier: str = ""


def is_important(element: HtmlElement) -> bool:
    name = element.get("name") or ""
    element_id = element.get("id") or ""
    return any(field in name or field in element_id for field in IMPORTANT_FIELDS)


def is_visible(document: Document, element: HtmlElement, mode: VisibilityMode) -> bool:
    """Apply the visibility policy for the given mode.

    Strict mode drops controls without a rendered box, hidden ones and
    fully transparent ones. Lenient mode only drops controls whose own
    display is suppressed, and keeps allowlisted fields regardless.
    Allowlisted fields in strict mode are only checked for display.
    """
    important = is_important(element)

    if mode == VisibilityMode.LENIENT:
        if important:
            return True
        return not document.is_display_suppressed(element, include_ancestors=False)

    if important:
        return not document.is_display_suppressed(element)

    if not document.has_rendered_size(element):
        return False
    style = document.computed_style(element)
    return style["visibility"] != "hidden" and style["opacity"] not in ("0", "0.0")


def resolve_label(document: Document, element: HtmlElement) -> str:
    """Find the human-readable label for a control.

    Tries an associated ``label[for]``, then a wrapping label, then the
    immediate container's text if it is short enough.
    """
    element_id = element.get("id")
    if element_id:
        labels = document.labels_for(element_id)
        if labels:
            return labels[0].text_content().strip()

    value = document.read_value(element)

    for ancestor in element.iterancestors("label"):
        return ancestor.text_content().replace(value, "", 1).strip()

    parent = element.getparent()
    if parent is not None:
        text = parent.text_content().replace(value, "", 1).strip()
        if len(text) < CONTAINER_LABEL_MAX:
            return text

    return ""


def build_identifier(descriptor: ControlDescriptor) -> str:
    parts = [
        descriptor.label,
        descriptor.name,
        descriptor.id,
        descriptor.placeholder,
        descriptor.aria_label,
    ]
    return " ".join(part for part in parts if part).lower()


def survey(
    document: Document,
    exclude: HtmlElement | None = None,
    visibility: VisibilityMode = VisibilityMode.STRICT,
) -> list[ControlDescriptor]:
    """Describe every fillable control in document order."""
    descriptors: list[ControlDescriptor] = []

    for index, element in enumerate(document.controls()):
        if element is exclude:
            continue

        kind = widget_kind(element)
        if kind in ACTION_KINDS:
            continue

        if not is_visible(document, element, visibility):
            logger.debug("Skipping hidden control %s", element.get("name") or element.get("id") or index)
            continue

        descriptor = ControlDescriptor(
            element=element,
            index=index,
            kind=kind,
            name=element.get("name") or "",
            id=element.get("id") or "",
            placeholder=element.get("placeholder") or "",
            label=resolve_label(document, element),
            aria_label=element.get("aria-label") or "",
            value=document.read_value(element),
            required=element.get("required") is not None,
            readonly=element.get("readonly") is not None,
            disabled=element.get("disabled") is not None,
        )
        descriptor.identifier = build_identifier(descriptor)
        descriptors.append(descriptor)

    logger.info("Surveyed %d fillable controls (%s visibility)", len(descriptors), visibility.value)
    return descriptors


def has_form_surface(document: Document, min_controls: int | None = None) -> bool:
    """Page-role predicate: does this document host a form to fill?"""
    threshold = min_controls if min_controls is not None else settings.FORM_SURFACE_MIN_CONTROLS
    if document.forms():
        return True
    controls = [el for el in document.controls() if widget_kind(el) not in ("submit", "button")]
    return len(controls) > threshold
