"""
Async HTTP client for the newsdesk API.
"""

import codecs
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class ClientRequestError(Exception):
    """
    Raised when the API answers with a non-2xx status or the connection fails.
    """

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status
        self.message = message


async def _read_json(response: aiohttp.ClientResponse) -> Any:
    """Decode a JSON body, or return None when the body is not JSON."""
    try:
        return await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        logger.warning(f"Non-JSON response body (HTTP {response.status})")
        return None


class NewsdeskClient:
    """
    Client for the tab, API key and news endpoints.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the newsdesk API
            access_token: Session token issued by the identity provider
            session: Existing aiohttp session. One is created on enter if omitted.
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if self.session is None:
            raise RuntimeError("Client session not started; use 'async with NewsdeskClient(...)'")

        try:
            async with self.session.request(
                method, f"{self.base_url}{path}", json=json, params=params, headers=self.headers
            ) as response:
                data = await _read_json(response)
                if not 200 <= response.status < 300:
                    message = data.get("error") if isinstance(data, dict) else None
                    raise ClientRequestError(response.status, message or f"HTTP {response.status}")
                if not isinstance(data, dict):
                    raise ClientRequestError(response.status, "Invalid response from server")
                return data

        except aiohttp.ClientError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ClientRequestError(None, str(e)) from e

    async def list_tabs(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/tabs")
        return data.get("tabs", [])

    async def create_tab(self, topic: str) -> Dict[str, Any]:
        data = await self._request("POST", "/tabs", json={"topic": topic})
        return data["tab"]

    async def update_tab(
        self,
        tab_id: str,
        topic: Optional[str] = _UNSET,
        last_refreshed_at: Optional[datetime] = _UNSET,
    ) -> Dict[str, Any]:
        """
        Update a tab. Only the arguments that are passed are sent.
        """
        payload: Dict[str, Any] = {"tabId": tab_id}
        if topic is not _UNSET:
            payload["topic"] = topic
        if last_refreshed_at is not _UNSET:
            payload["lastRefreshedAt"] = (
                last_refreshed_at.isoformat() if isinstance(last_refreshed_at, datetime) else last_refreshed_at
            )
        data = await self._request("PATCH", "/tabs", json=payload)
        return data["tab"]

    async def delete_tab(self, tab_id: str) -> None:
        await self._request("DELETE", "/tabs", params={"tabId": tab_id})

    async def has_api_key(self) -> bool:
        data = await self._request("GET", "/user/api-key")
        return bool(data.get("hasApiKey"))

    async def save_api_key(self, api_key: str) -> None:
        await self._request("POST", "/user/api-key", json={"apiKey": api_key})

    async def delete_api_key(self) -> None:
        await self._request("DELETE", "/user/api-key")

    async def stream_news(self, topic: str, tab_id: Optional[str] = None) -> AsyncIterator[str]:
        """
        Stream a news summary.

        Args:
            topic: Topic to summarize
            tab_id: Tab the request belongs to

        Yields:
            Decoded text chunks in arrival order
        """
        if self.session is None:
            raise RuntimeError("Client session not started; use 'async with NewsdeskClient(...)'")

        payload: Dict[str, Any] = {"topic": topic}
        if tab_id is not None:
            payload["tabId"] = tab_id

        decoder = codecs.getincrementaldecoder("utf-8")()
        try:
            async with self.session.request(
                "POST", f"{self.base_url}/news", json=payload, headers=self.headers
            ) as response:
                if not 200 <= response.status < 300:
                    data = await _read_json(response)
                    message = data.get("error") if isinstance(data, dict) else None
                    raise ClientRequestError(response.status, message or "Failed to fetch news")

                async for raw in response.content.iter_any():
                    text = decoder.decode(raw)
                    if text:
                        yield text

                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail

        except aiohttp.ClientError as e:
            logger.error(f"News stream interrupted: {e}")
            raise ClientRequestError(None, "News stream interrupted") from e
