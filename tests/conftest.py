"""Shared fixtures: an in-process fake backend, chunked transports and a fake recognizer."""

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from xmeng.clients.backend import BackendClient, BackendConfig, StaticTokenProvider
from xmeng.services.voice_capture import ProviderAlreadyStartedError

TEST_TOKEN = "test-token"
BASE_URL = "http://testserver"


def sse_frame(event: str, data: dict[str, Any]) -> str:
    """Encode one event the way the backend writes it."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class NameBody(BaseModel):
    name: str = ""


class ContentBody(BaseModel):
    content: str


def create_fake_backend() -> FastAPI:
    """Build a fake chat backend holding its data in ``app.state``."""
    app = FastAPI()
    app.state.conversations = {}
    app.state.history = {}
    app.state.frames = []
    app.state.received = []
    app.state.next_id = 1

    def require_token(authorization: str | None = Header(default=None)) -> None:
        if authorization != f"Bearer {TEST_TOKEN}":
            raise HTTPException(status_code=401, detail="Not authenticated")

    def get_or_404(conversation_id: int) -> dict[str, Any]:
        conversation = app.state.conversations.get(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return conversation

    @app.post("/api/chat/conversations", dependencies=[Depends(require_token)])
    async def create(body: NameBody) -> dict[str, Any]:
        return seed_conversation(app, body.name)

    @app.get("/api/chat/conversations", dependencies=[Depends(require_token)])
    async def list_all(skip: int = 0, limit: int = 50) -> dict[str, Any]:
        conversations = sorted(app.state.conversations.values(), key=lambda c: c["id"], reverse=True)
        return {"conversations": conversations[skip : skip + limit], "total": len(conversations)}

    @app.get("/api/chat/conversations/{conversation_id}", dependencies=[Depends(require_token)])
    async def detail(conversation_id: int) -> dict[str, Any]:
        conversation = get_or_404(conversation_id)
        return {
            "id": conversation["id"],
            "name": conversation["name"],
            "created_at": conversation["created_at"],
            "updated_at": conversation["updated_at"],
            "messages": app.state.history.get(conversation_id, []),
        }

    @app.patch("/api/chat/conversations/{conversation_id}", dependencies=[Depends(require_token)])
    async def rename(conversation_id: int, body: NameBody) -> dict[str, Any]:
        conversation = get_or_404(conversation_id)
        conversation["name"] = body.name
        return conversation

    @app.delete("/api/chat/conversations/{conversation_id}", dependencies=[Depends(require_token)])
    async def delete(conversation_id: int) -> Response:
        get_or_404(conversation_id)
        del app.state.conversations[conversation_id]
        return Response(status_code=204)

    @app.post("/api/chat/conversations/{conversation_id}/messages", dependencies=[Depends(require_token)])
    async def send(conversation_id: int, body: ContentBody) -> StreamingResponse:
        get_or_404(conversation_id)
        app.state.received.append((conversation_id, body.content))

        async def frames():
            for frame in app.state.frames:
                yield frame.encode()

        return StreamingResponse(frames(), media_type="text/event-stream")

    return app


def seed_conversation(app: FastAPI, name: str = "", messages: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Add a conversation (and optional history rows) to a fake backend."""
    now = datetime.now(UTC).isoformat()
    conversation = {
        "id": app.state.next_id,
        "name": name,
        "created_at": now,
        "updated_at": now,
        "message_count": len(messages or []),
    }
    app.state.next_id += 1
    app.state.conversations[conversation["id"]] = conversation
    app.state.history[conversation["id"]] = messages or []
    return conversation


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given slices."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None):
        self.chunks = chunks
        self.error = error

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error:
            raise self.error


@pytest.fixture
def backend() -> FastAPI:
    """Fake backend application."""
    return create_fake_backend()


@pytest.fixture
def backend_client(backend: FastAPI) -> BackendClient:
    """Backend client talking to the fake backend in-process."""
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=backend), base_url=BASE_URL)
    return BackendClient(BackendConfig(base_url=BASE_URL), StaticTokenProvider(TEST_TOKEN), http)


@pytest.fixture
def make_stream_client() -> Callable[..., tuple[BackendClient, list[httpx.Request]]]:
    """Factory for a backend client whose message stream is a fixed chunk list.

    Returns the client and the list the sent requests are recorded into.
    """

    def factory(
        chunks: list[bytes] | None = None,
        status_code: int = 200,
        body_error: Exception | None = None,
        connect_error: Exception | None = None,
    ) -> tuple[BackendClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if connect_error:
                raise connect_error
            return httpx.Response(
                status_code,
                headers={"content-type": "text/event-stream"},
                stream=ChunkedStream(chunks or [], body_error),
            )

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
        client = BackendClient(BackendConfig(base_url=BASE_URL), StaticTokenProvider(TEST_TOKEN), http)
        return client, requests

    return factory


class FakeRecognitionProvider:
    """Scripted recognition session; tests drive its callbacks directly."""

    def __init__(self):
        self.continuous = False
        self.interim_results = False
        self.lang = ""
        self.on_result = None
        self.on_end = None
        self.on_error = None
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.start_error: Exception | None = None

    def start(self) -> None:
        self.start_calls += 1
        if self.start_error:
            raise self.start_error
        if self.running:
            raise ProviderAlreadyStartedError()
        self.running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.running = False
        if self.on_end:
            self.on_end()

    def emit(self, *results) -> None:
        """Deliver the session's full result list."""
        self.on_result(list(results))

    def end(self) -> None:
        """The provider stops on its own (e.g. after silence)."""
        self.running = False
        if self.on_end:
            self.on_end()

    def fail(self, error: str) -> None:
        if self.on_error:
            self.on_error(error)


@pytest.fixture
def providers() -> list[FakeRecognitionProvider]:
    """Every recognition session created by the provider factory, in order."""
    return []


@pytest.fixture
def provider_factory(providers: list[FakeRecognitionProvider]) -> Callable[[], FakeRecognitionProvider]:
    def factory() -> FakeRecognitionProvider:
        provider = FakeRecognitionProvider()
        providers.append(provider)
        return provider

    return factory
