import json
from typing import List, Optional

import httpx

from app.logging_config import get_logger
from app.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions API."""

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", base_url: Optional[str] = None):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url or "https://api.openai.com/v1/chat/completions"

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else 60.0

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise LLMError(f"OpenAI request timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"OpenAI request failed: {e}") from e

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text[:500]}")
            raise LLMError(f"OpenAI API error: {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError("OpenAI returned a non-JSON body") from e

        content = ""
        tool_calls: list[ToolCall] = []
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
            tool_calls = self._parse_tool_calls(message.get("tool_calls") or [])

        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
        )

    @staticmethod
    def _parse_tool_calls(raw_calls: list) -> list[ToolCall]:
        calls = []
        for raw in raw_calls:
            function = raw.get("function") or {}
            name = function.get("name")
            if not name:
                continue
            arguments = function.get("arguments") or "{}"
            try:
                parsed = json.loads(arguments) if isinstance(arguments, str) else dict(arguments)
            except (ValueError, TypeError):
                logger.warning(f"Unparseable tool arguments for {name}: {arguments!r}")
                parsed = {}
            calls.append(ToolCall(name=name, arguments=parsed if isinstance(parsed, dict) else {}, id=raw.get("id")))
        return calls
