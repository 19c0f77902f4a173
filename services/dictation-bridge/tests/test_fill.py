"""Tests for the fill executor: per-kind strategies, ordering and highlights."""

import asyncio
from unittest.mock import MagicMock

from dom import Document, bind_controlled_input
from extraction import extract
from fill import HIGHLIGHT_OUTLINE, DomValueCommitter, FillExecutor, TimedEffects
from matching import Mapping, ThresholdPolicy, match
from survey import ControlDescriptor, survey


def _doc(body: str) -> Document:
    return Document(f"<html><body><form>{body}</form></body></html>")


def _executor(doc: Document, **kwargs) -> FillExecutor:
    kwargs.setdefault("settle_seconds", 0)
    kwargs.setdefault("highlight_seconds", 0.001)
    return FillExecutor(doc, **kwargs)


def _mapping(control: ControlDescriptor, value: str, key: str = "field") -> Mapping:
    return Mapping(control=control, key=key, value=value, confidence=1.0)


class TestTextCommit:
    def test_signal_order(self):
        doc = _doc('<input name="age">')
        element = doc.controls()[0]
        seen = []
        for event_type in ("focus", "input", "change", "blur"):
            doc.add_event_listener(element, event_type, lambda e: seen.append(e.type))

        DomValueCommitter(doc).commit(element, "34")

        assert seen == ["focus", "input", "change", "blur"]
        assert doc.read_value(element) == "34"

    def test_signals_bubble_to_form(self):
        doc = _doc('<input name="age">')
        seen = []
        for event_type in ("input", "change", "blur"):
            doc.add_event_listener(doc.forms()[0], event_type, lambda e: seen.append(e.type))

        DomValueCommitter(doc).commit(doc.controls()[0], "34")

        assert seen == ["input", "change", "blur"]

    def test_controlled_binding_observes_commit(self):
        doc = _doc('<input name="name">')
        element = doc.controls()[0]
        on_change = MagicMock()
        bind_controlled_input(doc, element, on_change)

        DomValueCommitter(doc).commit(element, "Jane Doe")

        on_change.assert_called_once_with("Jane Doe")


class TestSelect:
    HTML = (
        '<select name="gender"><option value="">Select</option>'
        '<option value="M">Male</option><option value="F">Female</option></select>'
    )

    def test_exact_text_match(self):
        doc = _doc(self.HTML)
        select = doc.controls()[0]
        changes = MagicMock()
        doc.add_event_listener(select, "change", changes)

        assert _executor(doc).fill_select(select, "female")

        assert doc.read_value(select) == "F"
        changes.assert_called_once()

    def test_exact_value_match(self):
        doc = _doc(self.HTML)
        select = doc.controls()[0]
        assert _executor(doc).fill_select(select, "m")
        assert doc.read_value(select) == "M"

    def test_containment_fallback(self):
        doc = _doc(self.HTML)
        select = doc.controls()[0]
        assert _executor(doc).fill_select(select, "fem")
        assert doc.read_value(select) == "F"

    def test_no_candidate_is_a_no_op(self):
        doc = _doc(self.HTML)
        select = doc.controls()[0]
        changes = MagicMock()
        doc.add_event_listener(select, "change", changes)

        assert not _executor(doc).fill_select(select, "unknown")

        assert doc.read_value(select) == ""
        changes.assert_not_called()


class TestRadio:
    HTML = (
        '<input type="radio" name="smoker" value="yes" id="smoker_yes"><label for="smoker_yes">Yes</label>'
        '<input type="radio" name="smoker" value="no" id="smoker_no"><label for="smoker_no">No</label>'
    )

    def test_selects_matching_member_of_group(self):
        doc = _doc(self.HTML)
        first, second = doc.controls()
        assert _executor(doc).fill_radio(first, "No")
        assert doc.is_checked(second)
        assert not doc.is_checked(first)

    def test_no_match_leaves_group_untouched(self):
        doc = _doc(self.HTML)
        first, second = doc.controls()
        assert not _executor(doc).fill_radio(first, "sometimes")
        assert not doc.is_checked(first) and not doc.is_checked(second)


class TestCheckbox:
    def test_truthy_value_checks_once(self):
        doc = _doc('<input type="checkbox" name="consent">')
        box = doc.controls()[0]
        changes = MagicMock()
        doc.add_event_listener(box, "change", changes)
        executor = _executor(doc)

        assert executor.fill_checkbox(box, "YES")
        assert not executor.fill_checkbox(box, "checked")

        assert doc.is_checked(box)
        changes.assert_called_once()

    def test_falsy_value_unchecks(self):
        doc = _doc('<input type="checkbox" name="consent" checked>')
        box = doc.controls()[0]
        assert _executor(doc).fill_checkbox(box, "no")
        assert not doc.is_checked(box)


class TestFillAll:
    def test_fills_matched_controls(self, intake_form: Document, sample_transcript: str):
        mappings = match(extract(sample_transcript, "prose"), survey(intake_form), ThresholdPolicy.delivery())

        async def run():
            executor = _executor(intake_form)
            count = await executor.fill_all(mappings)
            await executor.effects.drain()
            return count

        assert asyncio.run(run()) == 4
        values = {m.control.id: intake_form.read_value(m.control.element) for m in mappings}
        assert values == {
            "patient_name": "Jane Doe",
            "age": "34",
            "bp": "120/80",
            "presenting_complaint": "headache",
        }
        assert intake_form.scroll_history == [m.control.element for m in mappings]

    def test_error_on_one_control_does_not_stop_the_batch(self):
        doc = _doc('<input name="a"><input name="b">')
        controls = survey(doc)
        committer = MagicMock()
        committer.commit.side_effect = [RuntimeError("detached"), None]
        executor = _executor(doc, committer=committer)

        count = asyncio.run(executor.fill_all([_mapping(c, "x") for c in controls]))

        assert count == 1
        assert committer.commit.call_count == 2

    def test_unknown_kind_is_skipped(self):
        doc = _doc('<input type="file" name="scan">')
        (control,) = survey(doc)
        committer = MagicMock()
        count = asyncio.run(_executor(doc, committer=committer).fill_all([_mapping(control, "x")]))
        assert count == 1
        committer.commit.assert_not_called()


class TestHighlight:
    def test_highlight_reverts(self):
        doc = _doc('<input name="a" style="outline: 1px dotted red">')
        element = doc.controls()[0]

        async def run():
            executor = _executor(doc)
            executor.highlight(element)
            during = doc.style_property(element, "outline")
            await executor.effects.drain()
            return during

        assert asyncio.run(run()) == HIGHLIGHT_OUTLINE
        assert doc.style_property(element, "outline") == "1px dotted red"
        assert doc.style_property(element, "transition") == ""

    def test_control_filled_twice_is_restored(self):
        doc = _doc('<textarea name="notes" style="outline: 1px dotted red"></textarea>')
        control = survey(doc)[0]
        mappings = [
            _mapping(control, "hypertension", key="diagnosis"),
            _mapping(control, "stable", key="assessment"),
        ]

        async def run():
            executor = _executor(doc, highlight_seconds=0.05)
            filled = await executor.fill_all(mappings)
            await executor.effects.drain()
            return filled

        assert asyncio.run(run()) == 2
        assert doc.read_value(control.element) == "stable"
        assert doc.style_property(control.element, "outline") == "1px dotted red"
        assert doc.style_property(control.element, "transition") == ""

    def test_cancelled_highlight_is_not_reverted(self):
        doc = _doc('<input name="a">')
        element = doc.controls()[0]

        async def run():
            async with TimedEffects() as effects:
                executor = _executor(doc, effects=effects, highlight_seconds=10)
                executor.highlight(element)
                assert effects.pending == 1
            return effects.pending

        assert asyncio.run(run()) == 0
        assert doc.style_property(element, "outline") == HIGHLIGHT_OUTLINE
