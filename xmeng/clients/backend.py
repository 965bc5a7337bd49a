"""HTTP client for the chat backend: conversation CRUD and streamed message exchanges."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from xmeng.models.chat import Conversation, ConversationDetail, ConversationListResponse
from xmeng.utils.logging import get_logger

logger = get_logger(__name__)


class BackendError(Exception):
    """A conversation request failed or the backend rejected it."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TokenProvider(Protocol):
    """Supplies the bearer token for the Authorization header."""

    def get_access_token(self) -> str | None:
        """Return the current access token, or None when signed out."""
        ...


@dataclass
class StaticTokenProvider:
    """Token provider backed by a fixed token."""

    token: str | None = None

    def get_access_token(self) -> str | None:
        return self.token


class EnvTokenProvider:
    """Token provider reading XMENG_ACCESS_TOKEN on every request."""

    def __init__(self, variable: str = "XMENG_ACCESS_TOKEN"):
        self.variable = variable

    def get_access_token(self) -> str | None:
        return os.getenv(self.variable) or None


@dataclass
class BackendConfig:
    """Configuration for the backend client."""

    base_url: str = field(default_factory=lambda: os.getenv("XMENG_API_URL", "http://localhost:8001"))
    api_prefix: str = "/api/chat"
    timeout: float = 30.0

    # Generation can pause for a long time between chunks (tool calls)
    stream_read_timeout: float | None = None


class BackendClient:
    """Async client for the conversation endpoints of the backend."""

    def __init__(
        self,
        config: BackendConfig | None = None,
        token_provider: TokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize backend client.

        Args:
            config: Client configuration
            token_provider: Source of the bearer token (defaults to the environment)
            http_client: Preconfigured httpx client, mainly for tests
        """
        self.config = config or BackendConfig()
        self.token_provider = token_provider or EnvTokenProvider()
        self.http = http_client or httpx.AsyncClient(base_url=self.config.base_url, timeout=self.config.timeout)

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self.http.aclose()

    def _url(self, path: str) -> str:
        return f"{self.config.api_prefix}{path}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an ordinary request and raise BackendError on any failure."""
        try:
            response = await self.http.request(method, self._url(path), headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise BackendError(f"Request failed: {e}") from e

        if response.is_error:
            detail = self._detail_from_body(response)
            logger.warning(f"{method} {path} returned {response.status_code}: {detail}")
            raise BackendError(detail, status_code=response.status_code)

        return response

    async def create_conversation(self, name: str = "") -> Conversation:
        """Create a new, empty conversation."""
        response = await self._request("POST", "/conversations", json={"name": name})
        conversation = Conversation.model_validate(response.json())
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    async def list_conversations(self, skip: int = 0, limit: int = 50) -> ConversationListResponse:
        """List conversations, most recent first."""
        response = await self._request("GET", "/conversations", params={"skip": skip, "limit": limit})
        return ConversationListResponse.model_validate(response.json())

    async def get_conversation(self, conversation_id: int) -> ConversationDetail:
        """Fetch a conversation with its message history."""
        response = await self._request("GET", f"/conversations/{conversation_id}")
        return ConversationDetail.model_validate(response.json())

    async def update_conversation(self, conversation_id: int, name: str) -> Conversation:
        """Rename a conversation."""
        response = await self._request("PATCH", f"/conversations/{conversation_id}", json={"name": name})
        return Conversation.model_validate(response.json())

    async def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation and its messages."""
        await self._request("DELETE", f"/conversations/{conversation_id}")
        logger.info(f"Deleted conversation {conversation_id}")

    @asynccontextmanager
    async def stream_message(self, conversation_id: int, content: str) -> AsyncIterator[httpx.Response]:
        """Post a message and yield the live streamed response.

        The status is not checked here; callers inspect it and read the body
        incrementally with ``response.aiter_bytes()``.

        Raises:
            httpx.HTTPError: If the exchange cannot be established or the body
                fails mid-read
        """
        path = f"/conversations/{conversation_id}/messages"
        timeout = httpx.Timeout(self.config.timeout, read=self.config.stream_read_timeout)

        logger.debug(f"Opening message stream: {self._url(path)}")
        async with self.http.stream(
            "POST",
            self._url(path),
            json={"content": content},
            headers=self._headers(),
            timeout=timeout,
        ) as response:
            logger.debug(
                f"Stream response status: {response.status_code}, "
                f"content-type: {response.headers.get('content-type')}"
            )
            yield response

    async def error_detail(self, response: httpx.Response) -> str:
        """Best-effort detail string for a failed streamed response."""
        try:
            await response.aread()
        except httpx.HTTPError as e:
            logger.debug(f"Could not read error body: {e}")
            return f"HTTP {response.status_code}"
        return self._detail_from_body(response)

    @staticmethod
    def _detail_from_body(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"

        detail = body.get("detail") if isinstance(body, dict) else None
        if isinstance(detail, str) and detail:
            return detail
        return f"HTTP {response.status_code}"


_backend_client: BackendClient | None = None


def get_backend_client() -> BackendClient:
    """Get or create backend client instance."""
    global _backend_client
    if _backend_client is None:
        _backend_client = BackendClient()
    return _backend_client
