"""Field matcher — score canonical fields against surveyed controls.

Each canonical key has a curated list of phrases a destination form is
likely to use for it. A control's identifier is scored against that list
and the best control above the key's threshold wins.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping as MappingType

from config import settings
from extraction import CanonicalFieldMap
from survey import ControlDescriptor

logger = logging.getLogger(__name__)

EXACT_SCORE = 1.0
CONTAINMENT_WEIGHT = 0.9
WORD_EXACT_SCORE = 0.8
WORD_PARTIAL_SCORE = 0.6

FIELD_SYNONYMS: dict[str, list[str]] = {
    "name": ["fullname", "patient name", "full name", "patient_fullname", "name"],
    "age": ["age", "patient_age"],
    "dob": ["date of birth", "dob", "birth date", "birthday", "date_of_birth"],
    "gender": ["gender", "sex", "patient_gender"],
    "bloodPressure": ["blood pressure", "bp", "systolic", "diastolic"],
    "heartRate": ["heart rate", "pulse", "hr", "heart_rate"],
    "temperature": ["temperature", "temp", "body_temp"],
    "weight": ["weight", "wt", "body_weight", "patient_weight"],
    "height": ["height", "ht", "patient_height"],
    "chiefComplaint": ["presenting complaint", "chief complaint", "presenting_complaint", "cc", "complaint"],
    "diagnosis": ["primary diagnosis", "diagnosis", "primary_diagnosis", "dx", "assessment"],
    "symptoms": ["presenting symptoms", "symptoms", "history presenting"],
    "allergies": ["allergy", "allergies", "drug allergy"],
    "medications": ["routine drugs", "medications", "meds", "current medications", "routine_drugs"],
    "medicalHistory": ["medical history", "other medical", "pmh", "past medical", "other_medical_history"],
    "surgicalHistory": ["surgical history", "psh", "past surgical"],
    "familyHistory": ["family history", "family social", "fh", "family_social_history"],
    "socialHistory": ["social history", "family social", "sh", "family_social_history"],
    "assessment": ["assessment", "primary diagnosis", "primary_diagnosis"],
    "plan": ["treatment plan", "plan", "treatment_plan"],
    "notes": ["notes", "additional notes", "comments", "other"],
}

HISTORY_KEYS = frozenset({"medicalHistory", "surgicalHistory", "familyHistory", "socialHistory"})


@dataclass(frozen=True)
class ThresholdPolicy:
    """Confidence floors per key, plus whether controls may be claimed twice."""

    default: float
    overrides: MappingType[str, float] = field(default_factory=dict)
    exclusive: bool = False
    checkbox_max_length: int = 10

    def threshold_for(self, key: str) -> float:
        return self.overrides.get(key, self.default)

    @classmethod
    def paste(cls) -> "ThresholdPolicy":
        """Lenient generic floor for single-context paste-fill."""
        return cls(
            default=settings.PASTE_MATCH_THRESHOLD,
            checkbox_max_length=settings.CHECKBOX_MAX_VALUE_LENGTH,
        )

    @classmethod
    def delivery(cls) -> "ThresholdPolicy":
        """Stricter per-class floors with exclusive claims for cross-context delivery."""
        return cls(
            default=settings.DELIVERY_MATCH_THRESHOLD,
            overrides={key: settings.HISTORY_MATCH_THRESHOLD for key in HISTORY_KEYS},
            exclusive=True,
            checkbox_max_length=settings.CHECKBOX_MAX_VALUE_LENGTH,
        )


@dataclass(eq=False)
class Mapping:
    control: ControlDescriptor
    key: str
    value: str
    confidence: float


def score(identifier: str, synonyms: list[str]) -> float:
    """Similarity in [0, 1] between a control identifier and a synonym list."""
    best = 0.0
    words = re.split(r"\s+", identifier.strip()) if identifier.strip() else []

    for synonym in synonyms:
        phrase = synonym.lower()
        if identifier == phrase:
            return EXACT_SCORE

        if phrase in identifier:
            best = max(best, len(phrase) / len(identifier) * CONTAINMENT_WEIGHT)

        for word in words:
            if word == phrase:
                best = max(best, WORD_EXACT_SCORE)
            elif word in phrase or phrase in word:
                best = max(best, WORD_PARTIAL_SCORE)

    return best


def match(
    fields: CanonicalFieldMap,
    controls: list[ControlDescriptor],
    policy: ThresholdPolicy | None = None,
) -> list[Mapping]:
    """Pick the best control for each extracted field, in field order."""
    policy = policy or ThresholdPolicy.paste()
    mappings: list[Mapping] = []
    claimed: set[int] = set()

    for key, value in fields.items():
        synonyms = FIELD_SYNONYMS.get(key, [key])
        best_control: ControlDescriptor | None = None
        best_score = 0.0

        for control in controls:
            if control.readonly or control.disabled:
                continue
            if policy.exclusive and id(control) in claimed:
                continue
            if control.kind == "checkbox" and len(value) > policy.checkbox_max_length:
                continue

            candidate = score(control.identifier, synonyms)
            if candidate > best_score:
                best_score = candidate
                best_control = control

        threshold = policy.threshold_for(key)
        if best_control is None or best_score < threshold:
            logger.info("No match for %s (best score %.2f, need %.2f)", key, best_score, threshold)
            continue

        logger.info("Matched %s -> %r (confidence %.0f%%)", key, best_control.identifier, best_score * 100)
        mappings.append(Mapping(control=best_control, key=key, value=value, confidence=best_score))
        if policy.exclusive:
            claimed.add(id(best_control))

    return mappings
