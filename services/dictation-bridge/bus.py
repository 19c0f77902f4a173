"""In-process message bus between context agents and the coordinator.

``TabHost`` is the coordinator's view of the open browsing contexts.
``LocalTabHost`` keeps them in memory and routes messages straight to each
context's handler; ``tab_client.HttpTabHost`` reaches them over HTTP.
"""

import logging
from typing import Awaitable, Callable, Protocol

from coordinator_client import CoordinatorUnavailable
from models import Message, TabInfo

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Awaitable[dict]]
RemovedListener = Callable[[int], None]


class TabNotFound(Exception):
    """The context id is not (or no longer) open."""


class TabUnreachable(Exception):
    """The context exists but nothing answers its messages."""


class TabHost(Protocol):
    async def list_tabs(self) -> list[TabInfo]: ...

    async def get_tab(self, tab_id: int) -> TabInfo: ...

    async def send(self, tab_id: int, message: Message) -> dict: ...

    async def focus_window(self, window_id: int) -> None: ...

    async def activate_tab(self, tab_id: int) -> None: ...

    def add_removed_listener(self, listener: RemovedListener) -> None: ...


class LocalTabHost:
    """Tracks contexts in memory; each may have a message handler attached."""

    def __init__(self):
        self._tabs: dict[int, TabInfo] = {}
        self._handlers: dict[int, MessageHandler] = {}
        self._removed_listeners: list[RemovedListener] = []
        self._next_id = 1
        self.active_tab_id: int | None = None
        self.focused_window_id: int | None = None

    def open_tab(
        self,
        url: str,
        handler: MessageHandler | None = None,
        window_id: int = 1,
        callback_url: str = "",
    ) -> TabInfo:
        tab = TabInfo(id=self._next_id, url=url, window_id=window_id, callback_url=callback_url)
        self._next_id += 1
        self._tabs[tab.id] = tab
        if handler is not None:
            self._handlers[tab.id] = handler
        return tab

    def attach(self, tab_id: int, handler: MessageHandler) -> None:
        if tab_id not in self._tabs:
            raise TabNotFound(f"No open context with id {tab_id}")
        self._handlers[tab_id] = handler

    def close_tab(self, tab_id: int) -> None:
        if self._tabs.pop(tab_id, None) is None:
            raise TabNotFound(f"No open context with id {tab_id}")
        self._handlers.pop(tab_id, None)
        if self.active_tab_id == tab_id:
            self.active_tab_id = None
        for listener in list(self._removed_listeners):
            listener(tab_id)

    def add_removed_listener(self, listener: RemovedListener) -> None:
        self._removed_listeners.append(listener)

    async def list_tabs(self) -> list[TabInfo]:
        return list(self._tabs.values())

    async def get_tab(self, tab_id: int) -> TabInfo:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise TabNotFound(f"No open context with id {tab_id}")
        return tab

    async def send(self, tab_id: int, message: Message) -> dict:
        handler = self._handlers.get(tab_id)
        if tab_id not in self._tabs or handler is None:
            raise TabUnreachable(f"Context {tab_id} is not listening")
        return await handler(message)

    async def focus_window(self, window_id: int) -> None:
        if not any(tab.window_id == window_id for tab in self._tabs.values()):
            raise TabNotFound(f"No open window with id {window_id}")
        self.focused_window_id = window_id

    async def activate_tab(self, tab_id: int) -> None:
        await self.get_tab(tab_id)
        self.active_tab_id = tab_id


class CoordinatorLink(Protocol):
    async def send(self, message: Message) -> dict: ...


class LocalCoordinatorLink:
    """Lets an in-process agent message the coordinator as one context."""

    def __init__(self, coordinator, tab_id: int):
        self._coordinator = coordinator
        self.tab_id = tab_id

    async def send(self, message: Message) -> dict:
        if self._coordinator is None:
            raise CoordinatorUnavailable("Coordinator is not running")
        return await self._coordinator.handle_message(message, self.tab_id)

    def disconnect(self) -> None:
        self._coordinator = None
