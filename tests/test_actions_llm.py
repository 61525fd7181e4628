"""Tests for ask-chatgpt and ask-gemini against a local mock server."""

import pytest
from pytest_httpserver import HTTPServer
from workflow_factory import make_context

from autoflow.engine import ActionContext, Workspace
from autoflow.engine.actions_llm import AskChatGPTAction, AskGeminiAction

GEMINI_PATH = "/v1beta/models/gemini-2.5-flash:generateContent"


@pytest.fixture(autouse=True)
def no_ambient_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPENAI_API_KEY", "OPENAI_BASE_URL", "GOOGLE_API_KEY", "GEMINI_API_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ctx(memory_store, tmp_path) -> ActionContext:
    workspace = Workspace(id="ws", name="Test", working_directory=str(tmp_path))
    return make_context(memory_store, workspace)


@pytest.fixture
async def openai_configured(memory_store, httpserver: HTTPServer) -> None:
    await memory_store.set_setting("openai_api_key", "sk-test")
    await memory_store.set_setting("openai_base_url", httpserver.url_for("/v1"))


@pytest.fixture
async def gemini_configured(
    memory_store, httpserver: HTTPServer, monkeypatch: pytest.MonkeyPatch
) -> None:
    await memory_store.set_setting("google_api_key", "g-test")
    monkeypatch.setenv("GEMINI_API_URL", httpserver.url_for("/v1beta"))


async def ask(action, raw: dict, ctx: ActionContext):
    return await action.execute(action.parse_inputs(raw), ctx)


class TestAskChatGPT:
    @pytest.mark.asyncio
    async def test_response_round_trip(self, llm_mock, openai_configured, ctx):
        result = await ask(AskChatGPTAction(), {"prompt": "What is the capital of France?"}, ctx)

        assert result.status == "success", result.error
        assert result.outputs == {"response": "Paris"}
        assert "Model: gpt-4o" in result.logs
        assert "Received response from OpenAI." in result.logs

    @pytest.mark.asyncio
    async def test_base_url_with_endpoint_suffix(self, llm_mock, memory_store, ctx):
        await memory_store.set_setting("openai_api_key", "sk-test")
        await memory_store.set_setting(
            "openai_base_url", llm_mock.url_for("/v1/chat/completions")
        )

        result = await ask(AskChatGPTAction(), {"prompt": "hello"}, ctx)

        assert result.outputs == {"response": "Mock response to: hello"}

    @pytest.mark.asyncio
    async def test_environment_key_fallback(
        self, llm_mock, memory_store, ctx, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("OPENAI_BASE_URL", llm_mock.url_for("/v1"))

        result = await ask(AskChatGPTAction(), {"prompt": "hi"}, ctx)

        assert result.status == "success", result.error

    @pytest.mark.asyncio
    async def test_missing_key(self, ctx):
        result = await ask(AskChatGPTAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert result.error == "OpenAI API Key not found. Please configure it in Settings."

    @pytest.mark.asyncio
    async def test_provider_error_fails_step(self, httpserver: HTTPServer, openai_configured, ctx):
        httpserver.expect_request("/v1/chat/completions", method="POST").respond_with_json(
            {"error": {"message": "overloaded", "type": "server_error"}}, status=500
        )

        result = await ask(AskChatGPTAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert result.error

    @pytest.mark.asyncio
    async def test_refusal(self, httpserver: HTTPServer, openai_configured, ctx):
        httpserver.expect_request("/v1/chat/completions", method="POST").respond_with_json(
            {
                "id": "chatcmpl-refused",
                "object": "chat.completion",
                "created": 1234567890,
                "model": "gpt-4o",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": None, "refusal": "No."},
                        "finish_reason": "stop",
                    }
                ],
            }
        )

        result = await ask(AskChatGPTAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert result.error == "OpenAI refused request: No."

    def test_temperature_is_validated(self):
        with pytest.raises(ValueError):
            AskChatGPTAction().parse_inputs({"prompt": "hi", "temperature": 3})


class TestAskGemini:
    @pytest.mark.asyncio
    async def test_response_round_trip(self, llm_mock, gemini_configured, ctx):
        result = await ask(AskGeminiAction(), {"prompt": "Capital of France?"}, ctx)

        assert result.status == "success", result.error
        assert result.outputs == {"response": "Paris"}

    @pytest.mark.asyncio
    async def test_missing_key(self, ctx):
        result = await ask(AskGeminiAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert "Google API Key not found" in (result.error or "")

    @pytest.mark.asyncio
    async def test_http_error(self, httpserver: HTTPServer, gemini_configured, ctx):
        httpserver.expect_request(GEMINI_PATH, method="POST").respond_with_data("boom", status=500)

        result = await ask(AskGeminiAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert "500" in (result.error or "")

    @pytest.mark.asyncio
    async def test_empty_candidates(self, httpserver: HTTPServer, gemini_configured, ctx):
        httpserver.expect_request(GEMINI_PATH, method="POST").respond_with_json({"candidates": []})

        result = await ask(AskGeminiAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert result.error == "Gemini returned empty candidates array"

    @pytest.mark.asyncio
    async def test_blocked_content(self, httpserver: HTTPServer, gemini_configured, ctx):
        httpserver.expect_request(GEMINI_PATH, method="POST").respond_with_json(
            {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}
        )

        result = await ask(AskGeminiAction(), {"prompt": "hi"}, ctx)

        assert result.status == "failed"
        assert result.error == "Gemini blocked content (finishReason: SAFETY)"
