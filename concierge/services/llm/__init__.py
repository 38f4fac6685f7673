from concierge.services.llm.base import LLMProvider, LLMResponse, ToolCall
from concierge.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider", "ToolCall"]
