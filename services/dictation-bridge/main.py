"""FastAPI coordinator service — message hub between dictation and EMR contexts.

Context agents register here with a callback URL and send protocol
messages; the coordinator tracks the source and destination contexts and
delivers final transcripts to the form that should be filled.
Transcripts are clinical text: only their lengths are ever logged.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from bus import TabNotFound
from config import settings
from coordinator import CoordinatorService
from models import Message, MessageEnvelope, TabInfo, TabRegistration
from notify import LoggingNotifier
from tab_client import HttpTabHost

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_tabs: HttpTabHost | None = None
_coordinator: CoordinatorService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the context registry and coordinator on startup."""
    global _tabs, _coordinator

    _tabs = HttpTabHost()
    _coordinator = CoordinatorService(_tabs, notifier=LoggingNotifier())
    logger.info("Coordinator ready (source origin %s)", settings.SOURCE_APP_ORIGIN or "unset")

    yield

    await _coordinator.close()
    await _tabs.close()
    _coordinator = None
    _tabs = None


app = FastAPI(title="Dictation Bridge Coordinator", version="1.0.0", lifespan=lifespan)


def _not_ready() -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Coordinator is not running"})


@app.post("/api/v1/messages")
async def messages(envelope: MessageEnvelope):
    """Handle one protocol message from a context agent."""
    if _coordinator is None:
        return _not_ready()

    logger.info(
        "Message %s from context %s (%d chars)",
        envelope.type,
        envelope.sender_tab_id,
        len(envelope.data or ""),
    )
    message = Message(type=envelope.type, data=envelope.data)
    return await _coordinator.handle_message(message, envelope.sender_tab_id)


@app.post("/api/v1/tabs", response_model=TabInfo)
async def register_tab(registration: TabRegistration):
    """Register a context and return its assigned id."""
    if _tabs is None:
        return _not_ready()
    return _tabs.register(registration)


@app.delete("/api/v1/tabs/{tab_id}")
async def unregister_tab(tab_id: int):
    """Forget a closed context; clears it from coordinator state."""
    if _tabs is None:
        return _not_ready()
    try:
        _tabs.close_tab(tab_id)
    except TabNotFound as e:
        return JSONResponse(status_code=404, content={"detail": str(e)})
    logger.info("Context %d closed", tab_id)
    return {"success": True}


@app.get("/health")
async def health():
    """Return service status and the tracked contexts."""
    base = {
        "status": "healthy",
        "coordinator_ready": _coordinator is not None,
    }

    if _coordinator is not None and _tabs is not None:
        base["state"] = _coordinator.snapshot().model_dump()
        base["contexts"] = len(await _tabs.list_tabs())

    return base


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
