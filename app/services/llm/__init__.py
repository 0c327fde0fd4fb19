from app.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall
from app.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider", "ToolCall"]
