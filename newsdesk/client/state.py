"""
Client-side state for the tab dashboard.

``TabsState`` keeps the tab list and the active selection in sync with the
API, ``TabSession`` runs the refresh flow of a single tab and
``ApiKeySettings`` backs the API key settings form.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from newsdesk.ai.citations import process_inline_citations
from newsdesk.client.api import ClientRequestError, NewsdeskClient

logger = logging.getLogger(__name__)

DEFAULT_TAB_TOPIC = "New Topic"
UNTITLED_TAB_LABEL = "New Tab"


class TabsState:
    """
    The user's tab list, mirrored from the API.
    """

    def __init__(self, client: NewsdeskClient):
        self.client = client
        self.tabs: List[Dict[str, Any]] = []
        self.loading = True
        self.error: Optional[str] = None
        self.active_tab_id: Optional[str] = None

    async def load(self) -> None:
        """Fetch the tab list and select the first tab if none is active."""
        self.loading = True
        try:
            self.tabs = await self.client.list_tabs()
            self.error = None
        except ClientRequestError as e:
            self.error = e.message or "Failed to fetch tabs"
        finally:
            self.loading = False

        if self.tabs and self.active_tab is None:
            self.active_tab_id = self.tabs[0]["id"]

    @property
    def active_tab(self) -> Optional[Dict[str, Any]]:
        for tab in self.tabs:
            if tab["id"] == self.active_tab_id:
                return tab
        return None

    @property
    def can_delete(self) -> bool:
        """Tabs can only be deleted while more than one exists."""
        return len(self.tabs) > 1

    @staticmethod
    def label(tab: Dict[str, Any]) -> str:
        return tab.get("topic") or UNTITLED_TAB_LABEL

    def select(self, tab_id: str) -> None:
        if any(tab["id"] == tab_id for tab in self.tabs):
            self.active_tab_id = tab_id

    async def create_tab(self, topic: str = DEFAULT_TAB_TOPIC) -> Optional[Dict[str, Any]]:
        """
        Create a tab and make it active.

        Returns:
            The new tab, or None if the request failed
        """
        try:
            tab = await self.client.create_tab(topic)
        except ClientRequestError as e:
            logger.error(f"Error creating tab: {e.message}")
            return None

        self.tabs = [*self.tabs, tab]
        self.active_tab_id = tab["id"]
        return tab

    async def update_tab(self, tab_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
        """
        Update a tab and replace the local copy with the server's.

        Args:
            tab_id: Tab to update
            **fields: ``topic`` and/or ``last_refreshed_at``

        Returns:
            The updated tab, or None if the request failed
        """
        try:
            tab = await self.client.update_tab(tab_id, **fields)
        except ClientRequestError as e:
            logger.error(f"Error updating tab: {e.message}")
            return None

        self.tabs = [tab if t["id"] == tab_id else t for t in self.tabs]
        return tab

    async def delete_tab(self, tab_id: str) -> bool:
        """
        Delete a tab. If it was active, the first remaining tab becomes active.
        """
        try:
            await self.client.delete_tab(tab_id)
        except ClientRequestError as e:
            logger.error(f"Error deleting tab: {e.message}")
            return False

        self.tabs = [t for t in self.tabs if t["id"] != tab_id]
        if self.active_tab_id == tab_id:
            self.active_tab_id = self.tabs[0]["id"] if self.tabs else None
        return True


class TabSession:
    """
    Refresh flow of one tab: submit a topic, stream the summary, link citations.
    """

    def __init__(
        self,
        state: TabsState,
        tab_id: str,
        on_chunk: Optional[Callable[[str], None]] = None,
    ):
        self.state = state
        self.tab_id = tab_id
        self.on_chunk = on_chunk
        self.results = ""
        self.error: Optional[str] = None
        self.loading = False

    @property
    def tab(self) -> Optional[Dict[str, Any]]:
        for tab in self.state.tabs:
            if tab["id"] == self.tab_id:
                return tab
        return None

    async def submit(self, topic: str) -> Optional[str]:
        """
        Refresh the tab's news for a topic.

        Saves the topic first when it changed, streams the summary, then
        post-processes citations and records the refresh time.

        Returns:
            The processed summary, or None on failure (see ``error``)
        """
        if not topic or not topic.strip():
            self.error = "Topic is required"
            return None

        tab = self.tab
        if tab is not None and topic != tab.get("topic"):
            await self.state.update_tab(self.tab_id, topic=topic)

        self.results = ""
        self.error = None
        self.loading = True

        accumulated = []
        try:
            async for text in self.state.client.stream_news(topic, tab_id=self.tab_id):
                accumulated.append(text)
                self.results += text
                if self.on_chunk:
                    self.on_chunk(text)

            self.results = process_inline_citations("".join(accumulated))
            await self.state.update_tab(self.tab_id, last_refreshed_at=datetime.now(timezone.utc))
            return self.results

        except ClientRequestError as e:
            self.error = e.message or "An error occurred"
            return None

        finally:
            self.loading = False


class ApiKeySettings:
    """
    State behind the API key settings form.
    """

    SAVED_MESSAGE = "API key saved successfully!"
    FAILED_MESSAGE = "Failed to save API key"

    def __init__(self, client: NewsdeskClient):
        self.client = client
        self.has_api_key = False
        self.message = ""

    async def check(self) -> bool:
        self.has_api_key = await self.client.has_api_key()
        return self.has_api_key

    async def save(self, api_key: str) -> bool:
        self.message = ""
        try:
            await self.client.save_api_key(api_key)
        except ClientRequestError as e:
            logger.error(f"Error saving API key: {e.message}")
            self.message = self.FAILED_MESSAGE
            return False

        self.message = self.SAVED_MESSAGE
        self.has_api_key = True
        return True

    async def remove(self) -> bool:
        try:
            await self.client.delete_api_key()
        except ClientRequestError as e:
            logger.error(f"Error deleting API key: {e.message}")
            return False

        self.has_api_key = False
        return True
