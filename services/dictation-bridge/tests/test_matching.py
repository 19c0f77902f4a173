"""Tests for confidence scoring and the two threshold policies."""

import lxml.html
import pytest

from dom import Document
from extraction import extract
from matching import (
    FIELD_SYNONYMS,
    ThresholdPolicy,
    match,
    score,
)
from survey import ControlDescriptor, survey


def _control(identifier: str, kind: str = "text", index: int = 0, **flags) -> ControlDescriptor:
    element = lxml.html.fragment_fromstring("<input>")
    return ControlDescriptor(element=element, index=index, kind=kind, identifier=identifier, **flags)


class TestScore:
    def test_identical_strings_score_one(self):
        assert score("blood pressure", ["blood pressure"]) == 1.0

    def test_no_shared_text_scores_zero(self):
        assert score("qqq", FIELD_SYNONYMS["bloodPressure"]) == 0.0

    def test_empty_identifier_scores_zero(self):
        assert score("", FIELD_SYNONYMS["name"]) == 0.0

    def test_containment_is_weighted_by_length(self):
        assert score("blood pressure bp", ["blood pressure"]) == pytest.approx(14 / 17 * 0.9)

    def test_word_exact(self):
        assert score("age age", ["age"]) == pytest.approx(0.8)

    def test_word_partial(self):
        assert score("patient_age_years", ["age"]) == pytest.approx(0.6)

    def test_best_rule_and_synonym_wins(self):
        assert score("blood pressure bp", FIELD_SYNONYMS["bloodPressure"]) == pytest.approx(0.8)


class TestMatch:
    def test_end_to_end_intake_form(self, intake_form: Document, sample_transcript: str):
        fields = extract(sample_transcript, dialect="prose")
        mappings = match(fields, survey(intake_form), ThresholdPolicy.delivery())

        assert [(m.key, m.control.id) for m in mappings] == [
            ("name", "patient_name"),
            ("age", "age"),
            ("bloodPressure", "bp"),
            ("chiefComplaint", "presenting_complaint"),
        ]
        assert all(m.confidence >= 0.6 for m in mappings)
        assert [m.value for m in mappings] == ["Jane Doe", "34", "120/80", "headache"]

    def test_readonly_and_disabled_controls_are_skipped(self):
        controls = [_control("age", readonly=True), _control("age", disabled=True, index=1)]
        assert match({"age": "40"}, controls) == []

    def test_tie_goes_to_first_control(self):
        first, second = _control("age", index=0), _control("age", index=1)
        (mapping,) = match({"age": "40"}, [first, second])
        assert mapping.control is first

    def test_unknown_key_scores_against_itself(self):
        (mapping,) = match({"ward": "3B"}, [_control("ward")])
        assert mapping.confidence == 1.0


class TestExclusivity:
    def _shared(self):
        return [_control("primary diagnosis primary_diagnosis")]

    def test_exclusive_policy_claims_control_once(self):
        fields = {"diagnosis": "migraine", "assessment": "stable"}
        mappings = match(fields, self._shared(), ThresholdPolicy.delivery())
        assert [m.key for m in mappings] == ["diagnosis"]

    def test_non_exclusive_policy_may_reuse_control(self):
        fields = {"diagnosis": "migraine", "assessment": "stable"}
        mappings = match(fields, self._shared(), ThresholdPolicy.paste())
        assert [m.key for m in mappings] == ["diagnosis", "assessment"]
        assert mappings[0].control is mappings[1].control


class TestThresholds:
    def test_paste_policy_accepts_weak_match(self):
        mappings = match({"diagnosis": "migraine"}, [_control("diag notes")], ThresholdPolicy.paste())
        assert len(mappings) == 1
        assert mappings[0].confidence == pytest.approx(0.6)

    def test_delivery_policy_rejects_weak_match(self):
        mappings = match({"diagnosis": "migraine"}, [_control("diag notes")], ThresholdPolicy.delivery())
        assert mappings == []

    def test_history_keys_use_lower_floor(self):
        mappings = match({"familyHistory": "diabetes"}, [_control("family notes")], ThresholdPolicy.delivery())
        assert len(mappings) == 1
        assert mappings[0].confidence == pytest.approx(0.6)

    def test_threshold_lookup(self):
        policy = ThresholdPolicy.delivery()
        assert policy.threshold_for("medicalHistory") == 0.6
        assert policy.threshold_for("name") == 0.7
        assert ThresholdPolicy.paste().threshold_for("medicalHistory") == 0.3

    def test_custom_policy(self):
        strict = ThresholdPolicy(default=0.95)
        assert match({"age": "40"}, [_control("age age")], strict) == []


class TestCheckboxes:
    @pytest.mark.parametrize("policy", [ThresholdPolicy.paste(), ThresholdPolicy.delivery()])
    def test_long_value_never_reaches_checkbox(self, policy: ThresholdPolicy):
        controls = [_control("allergies", kind="checkbox")]
        assert match({"allergies": "penicillin and sulfa"}, controls, policy) == []

    def test_short_value_may_reach_checkbox(self):
        controls = [_control("allergies", kind="checkbox")]
        (mapping,) = match({"allergies": "yes"}, controls)
        assert mapping.control.kind == "checkbox"

    def test_long_value_falls_through_to_text_control(self):
        checkbox = _control("allergies", kind="checkbox", index=0)
        text = _control("allergies allergies", index=1)
        (mapping,) = match({"allergies": "penicillin and sulfa"}, [checkbox, text])
        assert mapping.control is text
