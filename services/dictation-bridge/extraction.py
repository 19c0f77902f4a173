"""Field extraction — regex pattern bank over dictated or pasted text.

One ordered table of canonical keys, each with its label synonyms and the
shape of its value. A boundary policy decides where free-text values end:
pasted notes end them at newlines, live dictation ends them at sentence
punctuation or at the next recognized label.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

logger = logging.getLogger(__name__)

CanonicalFieldMap = Mapping[str, str]

# Free-text value shapes; any other value is a regex body
INLINE = "inline"
BLOCK = "block"


@dataclass(frozen=True)
class FieldPattern:
    key: str
    labels: tuple[str, ...]
    value: str


FIELD_PATTERNS: tuple[FieldPattern, ...] = (
    # Patient info
    FieldPattern("name", (r"pt\s+name", r"patient\s+name", r"full\s+name", r"name"), INLINE),
    FieldPattern("age", (r"age",), r"\d+"),
    FieldPattern("dob", (r"date\s+of\s+birth", r"dob", r"birth\s+date"), INLINE),
    FieldPattern("gender", (r"gender", r"sex"), r"(?:male|female|other|m|f)\b"),
    # Vitals
    FieldPattern("bloodPressure", (r"blood\s+pressure", r"bp"), r"\d+\s*/\s*\d+|\d+\s+\d+"),
    FieldPattern("heartRate", (r"heart\s+rate", r"pulse", r"hr"), r"\d+"),
    FieldPattern("temperature", (r"temperature", r"temp"), r"\d+(?:\.\d+)?"),
    FieldPattern("weight", (r"weight", r"wt"), r"\d+(?:\.\d+)?"),
    FieldPattern("height", (r"height", r"ht"), INLINE),
    # Clinical
    FieldPattern(
        "chiefComplaint",
        (r"chief\s+complaint", r"presenting\s+complaint", r"reason\s+for\s+visit", r"complaint", r"cc"),
        BLOCK,
    ),
    FieldPattern("diagnosis", (r"diagnosis", r"dx"), BLOCK),
    FieldPattern("symptoms", (r"presenting\s+symptoms", r"symptoms"), BLOCK),
    FieldPattern("allergies", (r"allergies", r"allergy"), BLOCK),
    FieldPattern("medications", (r"current\s+medications", r"medications", r"medication", r"meds"), BLOCK),
    # History
    FieldPattern("medicalHistory", (r"past\s+medical\s+history", r"medical\s+history", r"pmh"), BLOCK),
    FieldPattern("surgicalHistory", (r"surgical\s+history", r"psh"), BLOCK),
    FieldPattern("familyHistory", (r"family\s+history", r"fh"), BLOCK),
    FieldPattern("socialHistory", (r"social\s+history", r"sh"), BLOCK),
    # Assessment & plan
    FieldPattern("assessment", (r"assessment",), BLOCK),
    FieldPattern("plan", (r"treatment\s+plan", r"plan"), BLOCK),
    FieldPattern("notes", (r"additional\s+notes", r"notes", r"comments"), BLOCK),
)

FIELD_KEYS: tuple[str, ...] = tuple(p.key for p in FIELD_PATTERNS)

STRUCTURE_HINTS = (
    re.compile(r"\w+\s*:\s*\w+", re.IGNORECASE),
    re.compile(r"patient\s+name", re.IGNORECASE),
    re.compile(r"age\s*:\s*\d+", re.IGNORECASE),
    re.compile(r"blood\s+pressure", re.IGNORECASE),
    re.compile(r"chief\s+complaint", re.IGNORECASE),
)


class BoundaryPolicy(ABC):
    """Decides where a free-text value ends.

    Both methods return a regex fragment with exactly one capture group
    for the value, followed by a lookahead for its terminator.
    ``other_labels`` is the alternation of every label not belonging to
    the field being matched.
    """

    name = "base"

    @abstractmethod
    def inline(self, other_labels: str) -> str: ...

    @abstractmethod
    def block(self, other_labels: str) -> str: ...


class LineBoundary(BoundaryPolicy):
    """Pasted notes: values end at a newline or the next capitalized label."""

    name = "line"

    def inline(self, other_labels: str) -> str:
        return r"([^\n,]+?)(?=\n|,|$)"

    def block(self, other_labels: str) -> str:
        return r"([^\n]+?)(?=[,;]?\s+(?-i:[A-Z])[A-Za-z ]*:|\n|$)"


class ProseBoundary(BoundaryPolicy):
    """Dictation: values end at sentence punctuation or the next known label.

    A label only ends a value when it is followed by a colon or a number,
    so ordinary words that double as labels ("weight loss") stay inside.
    """

    name = "prose"

    def _next_label(self, other_labels: str) -> str:
        return rf"[,;]?\s+(?:{other_labels})(?=\s*:|\s+\d)"

    def inline(self, other_labels: str) -> str:
        return rf"([^.,;\n]+?)(?=[.,;\n]|{self._next_label(other_labels)}|$)"

    def block(self, other_labels: str) -> str:
        return rf"([^.]+?)(?={self._next_label(other_labels)}|[.]|$)"


class FieldExtractor:
    """Maps raw text to a canonical field map using one boundary policy."""

    def __init__(self, boundary: BoundaryPolicy, patterns: tuple[FieldPattern, ...] = FIELD_PATTERNS):
        self.boundary = boundary
        self._compiled = [(p.key, self._compile(p, patterns)) for p in patterns]

    def _compile(self, pattern: FieldPattern, patterns: tuple[FieldPattern, ...]) -> re.Pattern:
        labels = "|".join(pattern.labels)
        others = "|".join(
            label for other in patterns if other.key != pattern.key for label in other.labels
        )

        if pattern.value == INLINE:
            value = self.boundary.inline(others)
        elif pattern.value == BLOCK:
            value = self.boundary.block(others)
        else:
            value = f"({pattern.value})"

        return re.compile(rf"\b(?:{labels})\b[:\s]+{value}", re.IGNORECASE)

    def extract(self, text: str) -> CanonicalFieldMap:
        """Return every key whose pattern matches, first match winning."""
        fields: dict[str, str] = {}
        for key, regex in self._compiled:
            match = regex.search(text)
            if match and match.group(1) and match.group(1).strip():
                fields[key] = match.group(1).strip()

        logger.debug(
            "Extracted %d fields (%s dialect): %s",
            len(fields), self.boundary.name, ", ".join(fields),
        )
        return MappingProxyType(fields)


EXTRACTORS: dict[str, FieldExtractor] = {
    LineBoundary.name: FieldExtractor(LineBoundary()),
    ProseBoundary.name: FieldExtractor(ProseBoundary()),
}


def extract(text: str, dialect: str = LineBoundary.name) -> CanonicalFieldMap:
    """Extract canonical fields with the named dialect ("line" or "prose")."""
    extractor = EXTRACTORS.get(dialect)
    if extractor is None:
        raise ValueError(f"Unknown extraction dialect: {dialect}")
    return extractor.extract(text)


def looks_like_structured_data(text: str) -> bool:
    """Cheap check that text carries label/value pairs worth extracting."""
    return any(hint.search(text) for hint in STRUCTURE_HINTS)
