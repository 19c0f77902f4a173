"""Environment-based configuration for the dictation bridge."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Dictation bridge settings, loaded from environment variables."""

    # Server
    PORT: int = 8095
    LOG_LEVEL: str = "INFO"

    # Transcription app origin (contexts on this origin are never fill targets)
    SOURCE_APP_ORIGIN: str = "transcribe.intron.health"

    # Coordinator connection, as seen from context agents
    COORDINATOR_URL: str = "http://127.0.0.1:8095"
    COORDINATOR_TIMEOUT_SECONDS: float = 10.0
    COORDINATOR_CONNECT_TIMEOUT: float = 3.0
    COORDINATOR_RETRY_ATTEMPTS: int = 3
    COORDINATOR_RETRY_DELAY: float = 0.5
    COORDINATOR_RETRY_BACKOFF: float = 2.0

    # Standalone context agent (python agent.py)
    AGENT_PORT: int = 8096
    AGENT_PAGE_FILE: str = ""
    AGENT_PAGE_URL: str = ""

    # Coordinator -> context requests
    TAB_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Delivery
    DELIVERY_TIMEOUT_SECONDS: float = 5.0
    MIN_DELIVERY_LENGTH: int = 10
    TRANSCRIPT_DETECT_MIN_LENGTH: int = 20

    # Paste-fill triggers
    PASTE_MIN_LENGTH: int = 10
    INPUT_TRIGGER_LENGTH: int = 50

    # Match confidence thresholds
    PASTE_MATCH_THRESHOLD: float = 0.3
    DELIVERY_MATCH_THRESHOLD: float = 0.7
    HISTORY_MATCH_THRESHOLD: float = 0.6
    CHECKBOX_MAX_VALUE_LENGTH: int = 10

    # Completion detection (seconds / characters / ticks)
    COMPLETION_POLL_INTERVAL: float = 1.0
    COMPLETION_MIN_LENGTH: int = 300
    COMPLETION_LONG_LENGTH: int = 500
    COMPLETION_STABLE_TICKS: int = 5
    COMPLETION_STABLE_TICKS_LONG: int = 4
    COMPLETION_MAX_WAIT: float = 30.0
    STATUS_SETTLE_SECONDS: float = 0.5

    # Fill pacing and visual feedback
    FILL_SETTLE_SECONDS: float = 0.1
    HIGHLIGHT_SECONDS: float = 1.0
    SOURCE_CLEAR_DELAY: float = 0.5
    PASTE_SETTLE_SECONDS: float = 0.1

    # Page role predicate
    FORM_SURFACE_MIN_CONTROLS: int = 5

    model_config = {"env_prefix": "", "case_sensitive": True}


settings = Settings()
