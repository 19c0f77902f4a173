"""HTTP client context agents use to message the coordinating service.

Uses httpx with configurable timeouts and tenacity for retry with
exponential backoff on 503 and connection errors. Once retries run out the
coordinator is treated as gone (for example after a reload).
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings
from models import Message, MessageEnvelope, TabInfo, TabRegistration

logger = logging.getLogger(__name__)


class CoordinatorUnavailable(Exception):
    """Coordinator is unreachable (retryable — 503, connection error, timeout)."""


class CoordinatorError(Exception):
    """Coordinator returned a non-retryable error (400, 404, 500)."""


def _detail(resp: httpx.Response, default: str) -> str:
    try:
        return resp.json().get("detail", default)
    except ValueError:
        return default


class CoordinatorClient:
    """Async HTTP client for the coordinator with retry and backoff."""

    def __init__(
        self,
        base_url: str | None = None,
        tab_id: int | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        retry_backoff: float | None = None,
    ):
        self._base_url = (base_url or settings.COORDINATOR_URL).rstrip("/")
        self.tab_id = tab_id
        self._retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.COORDINATOR_RETRY_ATTEMPTS
        )
        self._retry_delay = retry_delay if retry_delay is not None else settings.COORDINATOR_RETRY_DELAY
        self._retry_backoff = retry_backoff if retry_backoff is not None else settings.COORDINATOR_RETRY_BACKOFF

        read_timeout = timeout if timeout is not None else settings.COORDINATOR_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.COORDINATOR_CONNECT_TIMEOUT

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=10.0,
                pool=10.0,
            ),
        )

    async def close(self):
        await self._client.aclose()

    async def send(self, message: Message) -> dict:
        """Send a protocol message as this context and return the response body.

        Raises CoordinatorUnavailable (after retries) or CoordinatorError.
        """
        envelope = MessageEnvelope(type=message.type, data=message.data, sender_tab_id=self.tab_id)
        return await self._post_with_retry("/api/v1/messages", envelope.model_dump())

    async def register_tab(self, url: str, callback_url: str, window_id: int = 1) -> TabInfo:
        """Announce this context to the coordinator and adopt the assigned id."""
        registration = TabRegistration(url=url, window_id=window_id, callback_url=callback_url)
        data = await self._post_with_retry("/api/v1/tabs", registration.model_dump())
        tab = TabInfo(**data)
        self.tab_id = tab.id
        return tab

    async def unregister_tab(self) -> None:
        if self.tab_id is None:
            return
        try:
            resp = await self._client.delete(f"/api/v1/tabs/{self.tab_id}")
        except httpx.HTTPError as e:
            logger.warning("Could not unregister context %s: %s", self.tab_id, e)
            return
        if resp.status_code not in (200, 404):
            logger.warning("Unregister of context %s returned %d", self.tab_id, resp.status_code)

    async def _post_with_retry(self, path: str, payload: dict) -> dict:
        """Retry wrapper — configured dynamically based on settings."""

        @retry(
            retry=retry_if_exception_type(CoordinatorUnavailable),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=30,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Coordinator unavailable, retrying in %.1fs (attempt %d/%d)",
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        async def _do_post() -> dict:
            return await self._post(path, payload)

        return await _do_post()

    async def _post(self, path: str, payload: dict) -> dict:
        """Send a single request to the coordinator."""
        try:
            resp = await self._client.post(path, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.warning("Coordinator connection failed: %s", e)
            raise CoordinatorUnavailable(f"Cannot connect to coordinator: {e}") from e
        except httpx.ReadTimeout as e:
            logger.warning("Coordinator read timeout: %s", e)
            raise CoordinatorUnavailable(f"Coordinator read timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Coordinator HTTP error: %s", e)
            raise CoordinatorError(f"Coordinator HTTP error: {e}") from e

        if resp.status_code == 503:
            detail = _detail(resp, "Service unavailable")
            logger.warning("Coordinator returned 503: %s", detail)
            raise CoordinatorUnavailable(detail)

        if resp.status_code != 200:
            detail = _detail(resp, f"HTTP {resp.status_code}")
            logger.error("Coordinator error %d: %s", resp.status_code, detail)
            raise CoordinatorError(detail)

        return resp.json()

    async def health(self) -> dict:
        """Check coordinator health. Returns health dict, never raises."""
        try:
            resp = await self._client.get("/health", timeout=5.0)
            return resp.json()
        except Exception as e:
            logger.warning("Coordinator health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}
