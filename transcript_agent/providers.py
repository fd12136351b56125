"""
Reasoning clients: the model side of the agentic loop.

WHAT THIS FILE DOES:
-------------------
The executor only knows one call:

    response = await client.complete(ReasoningRequest(...))
    # ReasoningResponse(content="...", tool_calls=[ToolCall(...)], usage=TokenUsage(...))

Each provider translates that into its own wire format:

1. OpenAI (chat completions): tools go in as `{"type": "function", ...}`,
   assistant tool calls come back as `message.tool_calls` with JSON-string
   arguments, tool results go back as `role="tool"` messages.

2. Anthropic (messages): tools go in with an `input_schema`, tool calls
   come back as `tool_use` content blocks, tool results go back as
   `tool_result` blocks inside a user turn. The system prompt is a
   top-level field, never a message.

HISTORY HANDLING:
----------------
`ReasoningRequest.messages` is the executor's full replay log (system,
user, assistant, tool). When it is empty, `prompt` is sent as the only
user message. System-role entries in the log are dropped in favour of
`system_prompt`.

Non-2xx responses raise `httpx.HTTPStatusError`; the executor treats that
like any other reasoning failure.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

import httpx

from .schemas import (
    ConversationMessage,
    ReasoningRequest,
    ReasoningResponse,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

if TYPE_CHECKING:
    from .config import ReasoningConfig

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-5.2",
}


# =============================================================================
# BASE CLIENT
# =============================================================================

class ReasoningClient(ABC):
    """
    Base class for reasoning clients.

    All clients must implement complete(): one request, one response, no
    streaming and no retries.
    """

    @abstractmethod
    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        pass

    @staticmethod
    def _history(request: ReasoningRequest) -> list[ConversationMessage]:
        if request.messages:
            return [m for m in request.messages if m.role != "system"]
        return [ConversationMessage(role="user", content=request.prompt)]


# =============================================================================
# OPENAI CLIENT
# =============================================================================

class OpenAIReasoningClient(ReasoningClient):
    """OpenAI chat completions with native function calling."""

    def __init__(
        self,
        model: str = DEFAULT_MODELS["openai"],
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ):
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY not set")
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _get_token_param(self, max_tokens: int) -> dict:
        """
        Get the correct token limit parameter for the model.
        GPT-5.x models use 'max_completion_tokens', older models use 'max_tokens'.
        """
        if self.model.startswith("gpt-5"):
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens}

    @staticmethod
    def _convert_tools(tools: list[ToolDefinition]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _convert_messages(self, request: ReasoningRequest) -> list[dict]:
        messages: list[dict] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})

        for message in self._history(request):
            if message.role == "tool":
                messages.append({
                    "role": "tool",
                    "tool_call_id": message.tool_call_id,
                    "content": message.content,
                })
            elif message.role == "assistant" and message.tool_calls:
                messages.append({
                    "role": "assistant",
                    "content": message.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in message.tool_calls
                    ],
                })
            else:
                messages.append({"role": message.role, "content": message.content})

        return messages

    @staticmethod
    def _parse_tool_calls(raw_calls: Optional[list[dict]]) -> list[ToolCall]:
        calls = []
        for raw in raw_calls or []:
            function = raw.get("function", {})
            try:
                arguments = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Unparseable arguments for tool call {function.get('name')}; using {{}}")
                arguments = {}
            calls.append(ToolCall(id=raw["id"], name=function.get("name", ""), arguments=arguments))
        return calls

    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request),
            "temperature": self.temperature,
            **self._get_token_param(self.max_tokens),
        }
        if request.tools:
            payload["tools"] = self._convert_tools(request.tools)

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=120.0,
            )
            response.raise_for_status()
            data = response.json()

        choice = data["choices"][0]
        message = choice["message"]
        usage = data.get("usage")

        return ReasoningResponse(
            content=message.get("content") or "",
            model=data.get("model", self.model),
            tool_calls=self._parse_tool_calls(message.get("tool_calls")),
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ) if usage else None,
            finish_reason=choice.get("finish_reason"),
        )


# =============================================================================
# ANTHROPIC CLIENT
# =============================================================================

class AnthropicReasoningClient(ReasoningClient):
    """
    Anthropic messages API with tool use.

    Anthropic wants strictly alternating user/assistant turns, so tool
    results and the continuation prompt that follows them are merged into
    a single user turn.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODELS["anthropic"],
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ):
        self.model = model
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")
        self.base_url = (base_url or "https://api.anthropic.com/v1").rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature

    @staticmethod
    def _convert_tools(tools: list[ToolDefinition]) -> list[dict]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _convert_messages(self, request: ReasoningRequest) -> list[dict]:
        messages: list[dict] = []

        for message in self._history(request):
            if message.role == "tool":
                role = "user"
                blocks = [{
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                }]
            elif message.role == "assistant":
                role = "assistant"
                blocks = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls or []:
                    blocks.append({
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": call.arguments,
                    })
            else:
                role = "user"
                blocks = [{"type": "text", "text": message.content}]

            if not blocks:
                continue
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})

        return messages

    async def complete(self, request: ReasoningRequest) -> ReasoningResponse:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(request),
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if request.tools:
            payload["tools"] = self._convert_tools(request.tools)

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/messages",
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json=payload,
                timeout=120.0,
            )
            response.raise_for_status()
            data = response.json()

        text_parts = []
        tool_calls = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(id=block["id"], name=block["name"], arguments=block.get("input") or {})
                )

        usage = data.get("usage")
        input_tokens = usage.get("input_tokens", 0) if usage else 0
        output_tokens = usage.get("output_tokens", 0) if usage else 0

        return ReasoningResponse(
            content="".join(text_parts),
            model=data.get("model", self.model),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ) if usage else None,
            finish_reason=data.get("stop_reason"),
        )


# =============================================================================
# FACTORY FUNCTION
# =============================================================================

def get_provider(config: "ReasoningConfig") -> ReasoningClient:
    """
    Build a reasoning client from config.

    Example config:
        reasoning:
          provider: "anthropic"
          model: "claude-sonnet-4-20250514"
          api_key_env: "ANTHROPIC_API_KEY"

    Raises:
        ValueError: unknown provider, or the API key variable is not set
    """
    provider_type = config.provider

    if provider_type not in DEFAULT_MODELS:
        raise ValueError(
            f"Invalid reasoning provider: '{provider_type}'. "
            f"Must be one of: {', '.join(DEFAULT_MODELS)}"
        )

    api_key_env = config.api_key_env or f"{provider_type.upper()}_API_KEY"
    api_key = os.environ.get(api_key_env)
    if not api_key:
        raise ValueError(f"Provider '{provider_type}' requires {api_key_env} but it's not set")

    client_class = AnthropicReasoningClient if provider_type == "anthropic" else OpenAIReasoningClient
    return client_class(
        model=config.model or DEFAULT_MODELS[provider_type],
        api_key=api_key,
        base_url=config.base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
