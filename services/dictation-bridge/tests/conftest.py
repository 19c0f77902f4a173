"""Shared test fixtures for dictation bridge tests."""

import sys
from pathlib import Path

import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dom import Document  # noqa: E402


INTAKE_FORM_HTML = """
<html><body>
  <form id="intake">
    <label for="patient_name">Patient Name</label>
    <input type="text" id="patient_name">
    <label for="age">Age</label>
    <input type="number" id="age">
    <label for="bp">Blood Pressure</label>
    <input type="text" id="bp">
    <label for="presenting_complaint">Presenting Complaint</label>
    <textarea id="presenting_complaint"></textarea>
    <button type="submit">Save</button>
  </form>
</body></html>
"""

NOTES_FORM_HTML = """
<html><body>
  <form>
    <textarea id="paste_box" placeholder="Paste notes here"></textarea>
    <label for="patient_name">Patient Name</label>
    <input type="text" id="patient_name">
    <label for="age">Age</label>
    <input type="text" id="age">
    <label for="blood_pressure">Blood Pressure</label>
    <input type="text" id="blood_pressure">
    <label for="allergies">Allergies</label>
    <input type="text" id="allergies">
    <input type="submit" value="Save">
  </form>
</body></html>
"""

SOURCE_PAGE_HTML = """
<html><body>
  <div id="start-prompt">Recording...</div>
  <textarea id="textBox"></textarea>
  <button id="stopBtn">Stop</button>
</body></html>
"""


@pytest.fixture
def sample_transcript() -> str:
    """Dictated transcript with four recognizable fields."""
    return "Name: Jane Doe, Age: 34, BP: 120/80, Chief Complaint: headache"


@pytest.fixture
def pasted_notes() -> str:
    """Multi-line note as pasted from another system."""
    return (
        "Patient Name: John Smith\n"
        "Age: 52\n"
        "Blood Pressure: 140/90\n"
        "Allergies: penicillin\n"
    )


@pytest.fixture
def intake_form() -> Document:
    return Document(INTAKE_FORM_HTML, url="https://emr.example.org/intake")


@pytest.fixture
def notes_form() -> Document:
    return Document(NOTES_FORM_HTML, url="https://emr.example.org/notes")


@pytest.fixture
def source_page() -> Document:
    return Document(SOURCE_PAGE_HTML, url="https://transcribe.intron.health/session")
