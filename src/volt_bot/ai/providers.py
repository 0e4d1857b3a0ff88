"""LLM provider adapters that turn a request into a single tool call.

Each adapter maps the provider-neutral ``IntentRequest`` to its own API. SDK
retries are disabled; retry and failover belong to the resolver. Any API
failure or unusable reply surfaces as ``TransientProviderError`` carrying the
token usage when the provider reported it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from volt_bot.config import AnthropicConfig, GroqConfig
from volt_bot.core.errors import TransientProviderError
from volt_bot.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IntentRequest:
    """Identical payload sent to every provider attempt."""

    system: str
    messages: tuple[dict[str, Any], ...]
    # Anthropic-style definitions: {"name", "description", "input_schema"}
    tools: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Any


@dataclass(frozen=True)
class ProviderReply:
    provider: str
    model: str
    tool_call: ToolCall
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


class IntentProvider(Protocol):
    name: str

    async def resolve_intent(self, request: IntentRequest) -> ProviderReply: ...


class AnthropicProvider:
    """Anthropic Messages API with forced tool use."""

    name = "anthropic"

    def __init__(self, config: AnthropicConfig, client: Optional[Any] = None):
        import anthropic

        self._model = config.model
        self._max_tokens = config.max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
        )

    async def resolve_intent(self, request: IntentRequest) -> ProviderReply:
        import anthropic

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": request.system,
            "messages": list(request.messages),
            "tools": list(request.tools),
            "tool_choice": {"type": "any"},
            "temperature": 0,
        }
        logger.debug("api_request", provider=self.name, model=self._model, message_count=len(request.messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise TransientProviderError(self.name, str(e) or type(e).__name__) from e

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        logger.debug(
            "api_response",
            provider=self.name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=response.stop_reason,
        )
        for block in response.content:
            if block.type == "tool_use":
                return ProviderReply(
                    provider=self.name,
                    model=self._model,
                    tool_call=ToolCall(name=block.name, arguments=block.input),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    metadata={"stop_reason": response.stop_reason},
                )
        raise TransientProviderError(
            self.name,
            f"no tool call in response (stop_reason={response.stop_reason})",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


class GroqProvider:
    """Groq through its OpenAI-compatible chat completions endpoint."""

    name = "groq"

    def __init__(self, config: GroqConfig, client: Optional[Any] = None):
        import openai

        self._model = config.model
        self._max_tokens = config.max_tokens
        self._client = client or openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
        )

    @staticmethod
    def _to_openai_tools(tools: tuple[dict[str, Any], ...]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    async def resolve_intent(self, request: IntentRequest) -> ProviderReply:
        import openai

        messages = [{"role": "system", "content": request.system}, *request.messages]
        logger.debug("api_request", provider=self.name, model=self._model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=messages,
                tools=self._to_openai_tools(request.tools),
                tool_choice="required",
                temperature=0,
            )
        except openai.APIError as e:
            raise TransientProviderError(self.name, str(e) or type(e).__name__) from e

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        choice = response.choices[0] if response.choices else None
        tool_calls = choice.message.tool_calls if choice else None
        if not tool_calls:
            raise TransientProviderError(
                self.name, "no tool call in response", input_tokens=input_tokens, output_tokens=output_tokens
            )

        function = tool_calls[0].function
        try:
            arguments = json.loads(function.arguments or "{}")
        except json.JSONDecodeError as e:
            raise TransientProviderError(
                self.name,
                f"tool arguments are not valid JSON: {e}",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            ) from e

        return ProviderReply(
            provider=self.name,
            model=self._model,
            tool_call=ToolCall(name=function.name, arguments=arguments),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            metadata={"finish_reason": choice.finish_reason},
        )


def create_providers(order: list[str], anthropic_config: AnthropicConfig | None, groq_config: GroqConfig | None) -> list[IntentProvider]:
    """Instantiate providers in fallback order, skipping unconfigured ones."""
    providers: list[IntentProvider] = []
    for name in order:
        match name:
            case "anthropic":
                if anthropic_config is None:
                    logger.warning("provider_not_configured", provider=name)
                    continue
                providers.append(AnthropicProvider(anthropic_config))
            case "groq":
                if groq_config is None:
                    logger.warning("provider_not_configured", provider=name)
                    continue
                providers.append(GroqProvider(groq_config))
            case _:
                raise ValueError(f"Unknown LLM provider: {name}")
    if not providers:
        raise ValueError("No LLM provider is configured")
    return providers
