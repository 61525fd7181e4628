"""Shared test configuration for autoflow tests.

Provides:
- In-memory and SQLite persistence gateways (``store`` runs against both)
- A workspace rooted in ``tmp_path``
- Action registry and run driver
- A local HTTP mock serving OpenAI- and Gemini-compatible LLM endpoints
"""

import json
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from pytest_httpserver import HTTPServer
from werkzeug.wrappers import Request, Response

from autoflow.engine import (
    ActionRegistry,
    InMemoryRunStore,
    RunDriver,
    RunStore,
    SQLiteRunStore,
    Workspace,
    create_default_registry,
)


@pytest.fixture(autouse=True)
def isolated_state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test away from ~/.autoflow."""
    state_dir = tmp_path / "state"
    monkeypatch.setenv("AUTOFLOW_STATE_DIR", str(state_dir))
    monkeypatch.delenv("AUTOFLOW_DB_PATH", raising=False)
    return state_dir


@pytest.fixture
def memory_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
async def sqlite_store(tmp_path: Path) -> AsyncIterator[SQLiteRunStore]:
    store = SQLiteRunStore(tmp_path / "autoflow.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncIterator[RunStore]:
    """Persistence gateway; tests using it run once per implementation."""
    if request.param == "memory":
        yield InMemoryRunStore()
        return

    sqlite = SQLiteRunStore(tmp_path / "runs.db")
    await sqlite.init()
    yield sqlite
    await sqlite.close()


@pytest.fixture
async def workspace(store: RunStore, tmp_path: Path) -> Workspace:
    """Saved workspace whose directory does not exist yet (the driver creates it)."""
    ws = Workspace(id="ws", name="Test Workspace", working_directory=str(tmp_path / "ws"))
    await store.save_workspace(ws)
    return ws


@pytest.fixture
def registry() -> ActionRegistry:
    return create_default_registry()


@pytest.fixture
def driver(store: RunStore, registry: ActionRegistry) -> RunDriver:
    return RunDriver(store, registry)


@pytest.fixture
def llm_mock(httpserver: HTTPServer) -> HTTPServer:
    """
    Local LLM mock server.

    Serves:
    - POST /v1/chat/completions: OpenAI-compatible chat completion
    - POST /v1beta/models/<model>:generateContent: Gemini-compatible generation

    The response text echoes the prompt so tests can assert the round trip:
    a prompt mentioning "capital" and "france" answers "Paris".

    Usage in tests:
        await store.set_setting("openai_base_url", llm_mock.url_for("/v1"))
        monkeypatch.setenv("GEMINI_API_URL", llm_mock.url_for("/v1beta"))
    """

    def answer(prompt: str) -> str:
        if "capital" in prompt.lower() and "france" in prompt.lower():
            return "Paris"
        return f"Mock response to: {prompt[:50]}"

    def chat_completion_handler(request: Request) -> Response:
        request_data = dict(request.json) if request.is_json and request.json else {}
        messages = request_data.get("messages", [])
        user_message = next((msg["content"] for msg in messages if msg.get("role") == "user"), "")

        response_data = {
            "id": "chatcmpl-mock123",
            "object": "chat.completion",
            "created": 1234567890,
            "model": request_data.get("model", "gpt-4o"),
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": answer(user_message)},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }
        return Response(json.dumps(response_data), content_type="application/json")

    def generate_content_handler(request: Request) -> Response:
        request_data = dict(request.json) if request.is_json and request.json else {}
        contents = request_data.get("contents", [])
        prompt = contents[0]["parts"][0]["text"] if contents else ""

        response_data = {
            "candidates": [
                {
                    "content": {"parts": [{"text": answer(prompt)}], "role": "model"},
                    "finishReason": "STOP",
                }
            ]
        }
        return Response(json.dumps(response_data), content_type="application/json")

    httpserver.expect_request("/v1/chat/completions", method="POST").respond_with_handler(
        chat_completion_handler
    )
    httpserver.expect_request(
        "/v1beta/models/gemini-2.5-flash:generateContent", method="POST"
    ).respond_with_handler(generate_content_handler)

    return httpserver
