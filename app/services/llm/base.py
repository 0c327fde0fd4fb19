from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


class LLMError(Exception):
    """Provider call failed: transport error, timeout or non-200 response."""


@dataclass
class ToolCall:
    name: str
    arguments: dict
    id: Optional[str] = None


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Run one chat completion, optionally offering tools."""
        pass
