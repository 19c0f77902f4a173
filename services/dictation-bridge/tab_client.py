"""Context host for the HTTP deployment.

Contexts register with the coordinator service and give a callback URL;
messages and focus requests are posted to that URL with httpx.
"""

import logging

import httpx

from bus import LocalTabHost, TabNotFound, TabUnreachable
from config import settings
from models import Message, TabInfo, TabRegistration

logger = logging.getLogger(__name__)


class HttpTabHost(LocalTabHost):
    """Tracks registered contexts and reaches them at their callback URLs."""

    def __init__(self, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__()
        read_timeout = timeout if timeout is not None else settings.TAB_REQUEST_TIMEOUT_SECONDS
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(read_timeout), transport=transport)

    async def close(self):
        await self._client.aclose()

    def register(self, registration: TabRegistration) -> TabInfo:
        tab = self.open_tab(
            registration.url,
            window_id=registration.window_id,
            callback_url=registration.callback_url.rstrip("/"),
        )
        logger.info("Registered context %d (%s)", tab.id, tab.url)
        return tab

    async def send(self, tab_id: int, message: Message) -> dict:
        tab = self._tabs.get(tab_id)
        if tab is None or not tab.callback_url:
            raise TabUnreachable(f"Context {tab_id} is not listening")

        resp = await self._post(tab, "/messages", message.model_dump())
        try:
            return resp.json()
        except ValueError as e:
            raise TabUnreachable(f"Context {tab_id} sent a non-JSON reply: {e}") from e

    async def activate_tab(self, tab_id: int) -> None:
        tab = await self.get_tab(tab_id)
        if not tab.callback_url:
            raise TabUnreachable(f"Context {tab_id} cannot be focused")
        await self._post(tab, "/focus", {})
        self.active_tab_id = tab_id

    async def _post(self, tab: TabInfo, path: str, payload: dict) -> httpx.Response:
        try:
            resp = await self._client.post(f"{tab.callback_url}{path}", json=payload)
        except httpx.HTTPError as e:
            raise TabUnreachable(f"Context {tab.id} unreachable: {e}") from e

        if resp.status_code == 404:
            raise TabNotFound(f"Context {tab.id} no longer exists")
        if resp.status_code != 200:
            raise TabUnreachable(f"Context {tab.id} returned HTTP {resp.status_code}")
        return resp
