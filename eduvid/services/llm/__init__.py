"""LLM provider abstraction layer.

Provides a unified async interface for structured text generation across
providers (OpenAI-compatible endpoints, Anthropic, Ollama).

Usage:
    from eduvid.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter(capability_config.model)
    result = await adapter.generate_text(prompt, MySchema)
"""

from eduvid.services.llm.base import LLMAdapter
from eduvid.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
