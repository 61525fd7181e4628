"""LLM actions - ask-chatgpt (OpenAI SDK) and ask-gemini (httpx).

API keys come from user settings (``openai_api_key``, ``google_api_key``)
with environment variables as fallback. Provider errors are reported as failed
steps; there is no retry layer here.
"""

from __future__ import annotations

import logging
import os
from abc import abstractmethod
from typing import Any, ClassVar

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import Field

from .action_base import (
    ActionCapabilities,
    ActionDefinition,
    ActionInput,
    ActionParameter,
    ActionPort,
    ActionSecurityLevel,
    WorkflowAction,
)
from .action_context import ActionContext
from .action_result import ActionResult

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_LLM_TIMEOUT = 120.0


class LLMPromptInput(ActionInput):
    """Input schema shared by the LLM actions."""

    prompt: str = Field(default="", description="The prompt to send")
    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout: float = Field(default=DEFAULT_LLM_TIMEOUT, gt=0, le=600)


class ChatGPTInput(LLMPromptInput):
    model: str = Field(default="gpt-4o")


class GeminiInput(LLMPromptInput):
    model: str = Field(default="gemini-2.5-flash")


def _prompt_definition(action_id: str, name: str, description: str, model: str) -> ActionDefinition:
    return ActionDefinition(
        id=action_id,
        name=name,
        description=description,
        parameters=[
            ActionParameter(
                name="prompt",
                label="Prompt",
                type="text",
                required=True,
                description="The prompt to send",
            ),
            ActionParameter(name="model", label="Model", default_value=model),
        ],
        outputs=[ActionPort(name="response")],
    )


class _LLMAction(WorkflowAction):
    security_level: ClassVar[ActionSecurityLevel] = ActionSecurityLevel.PRIVILEGED
    capabilities: ClassVar[ActionCapabilities] = ActionCapabilities(can_network=True)

    provider_label: ClassVar[str]
    api_key_setting: ClassVar[str]
    api_key_env: ClassVar[str]

    async def _api_key(self, context: ActionContext) -> str | None:
        return await context.get_setting(self.api_key_setting, os.environ.get(self.api_key_env))

    async def execute(  # type: ignore[override]
        self, inputs: LLMPromptInput, context: ActionContext
    ) -> ActionResult:
        logs = [f"Executing action: {self.action_id}"]

        api_key = await self._api_key(context)
        if not api_key:
            return ActionResult.failed(
                f"{self.provider_label} API Key not found. Please configure it in Settings.",
                logs=[*logs, f"Error: {self.provider_label} API Key not configured."],
            )

        logs.append(f"Model: {inputs.model}")
        logs.append(f"Prompt length: {len(inputs.prompt)} chars")

        try:
            response = await self.complete(inputs, api_key, context)
        except (openai.OpenAIError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"{self.action_id} failed for run {context.run_id}: {e}")
            logs.append(f"Error: {e}")
            return ActionResult.failed(str(e), logs=logs)

        logs.append(f"Received response from {self.provider_label}.")
        return ActionResult.success({"response": response}, logs=logs)

    @abstractmethod
    async def complete(self, inputs: Any, api_key: str, context: ActionContext) -> str:
        """Send the prompt and return the response text."""


class AskChatGPTAction(_LLMAction):
    """Chat completion through the official AsyncOpenAI client."""

    definition: ClassVar[ActionDefinition] = _prompt_definition(
        "ask-chatgpt",
        "Ask ChatGPT",
        "Send a prompt to OpenAI ChatGPT and get a response",
        "gpt-4o",
    )
    input_type: ClassVar[type[ActionInput]] = ChatGPTInput

    provider_label = "OpenAI"
    api_key_setting = "openai_api_key"
    api_key_env = "OPENAI_API_KEY"

    async def complete(  # type: ignore[override]
        self, inputs: ChatGPTInput, api_key: str, context: ActionContext
    ) -> str:
        """
        Raises:
            ValueError: Null content or refusal
            openai.*: OpenAI SDK exceptions (APIConnectionError, RateLimitError, etc.)
        """
        client_kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": inputs.timeout,
            "max_retries": 0,
        }
        base_url = await context.get_setting("openai_base_url", os.environ.get("OPENAI_BASE_URL"))
        if base_url:
            # The SDK appends /chat/completions itself
            client_kwargs["base_url"] = base_url.removesuffix("/chat/completions")

        async with AsyncOpenAI(**client_kwargs) as client:
            response = await client.chat.completions.create(
                model=inputs.model,
                messages=[{"role": "user", "content": inputs.prompt}],
                temperature=inputs.temperature,
            )

        message = response.choices[0].message
        if message.content is None:
            if message.refusal:
                raise ValueError(f"OpenAI refused request: {message.refusal}")
            raise ValueError("OpenAI returned null content (unexpected response format)")
        return message.content


class AskGeminiAction(_LLMAction):
    """``generateContent`` call against the Gemini REST API."""

    definition: ClassVar[ActionDefinition] = _prompt_definition(
        "ask-gemini",
        "Ask Gemini",
        "Send a prompt to Google Gemini and get a response",
        "gemini-2.5-flash",
    )
    input_type: ClassVar[type[ActionInput]] = GeminiInput

    provider_label = "Google"
    api_key_setting = "google_api_key"
    api_key_env = "GOOGLE_API_KEY"

    async def complete(  # type: ignore[override]
        self, inputs: GeminiInput, api_key: str, context: ActionContext
    ) -> str:
        """
        Raises:
            ValueError: Empty candidates, blocked content or null text
            httpx.*: Network/API errors
        """
        base_url = os.environ.get("GEMINI_API_URL", DEFAULT_GEMINI_API_URL).rstrip("/")
        url = f"{base_url}/models/{inputs.model}:generateContent"

        body: dict[str, Any] = {
            "contents": [{"parts": [{"text": inputs.prompt}], "role": "user"}],
            "generationConfig": {"temperature": inputs.temperature},
        }

        async with httpx.AsyncClient(timeout=inputs.timeout) as client:
            response = await client.post(
                url,
                params={"key": api_key},
                json=body,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()

        candidates = data.get("candidates", [])
        if not candidates:
            raise ValueError("Gemini returned empty candidates array")

        candidate = candidates[0]
        parts = candidate.get("content", {}).get("parts", [])
        if not parts:
            finish_reason = candidate.get("finishReason")
            if finish_reason and finish_reason != "STOP":
                raise ValueError(f"Gemini blocked content (finishReason: {finish_reason})")
            raise ValueError("Gemini returned empty parts array")

        text = parts[0].get("text")
        if text is None:
            raise ValueError("Gemini returned null text content")
        return text
