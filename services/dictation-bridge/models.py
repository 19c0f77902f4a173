"""Pydantic models for the cross-context message bus."""

from enum import Enum

from pydantic import BaseModel


class MessageType(str, Enum):
    TRANSCRIPT_READY = "transcript-ready"
    TRANSCRIPT_DETECTED = "transcript-detected"
    REQUEST_TRANSCRIPT = "request-transcript"
    IDENTIFY_AS_DESTINATION = "identify-as-destination"
    GET_STATE = "get-state"
    DELIVER_TRANSCRIPT = "deliver-transcript"
    EXTRACT_TRANSCRIPT = "extract-transcript"
    HAS_FORM_SURFACE = "has-form-surface"


class Message(BaseModel):
    type: str
    data: str | None = None


class MessageEnvelope(Message):
    sender_tab_id: int | None = None


class TabInfo(BaseModel):
    id: int
    url: str
    window_id: int = 1
    callback_url: str = ""


class TabRegistration(BaseModel):
    url: str
    window_id: int = 1
    callback_url: str = ""


class StateSnapshot(BaseModel):
    source_context_id: int | None
    destination_context_id: int | None
    has_transcript: bool
