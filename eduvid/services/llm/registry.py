"""Provider registry for LLM adapters.

Routes a capability's model configuration to the adapter implementation
for its provider.
"""

import logging

from eduvid.schemas.pipeline import ModelConfig
from eduvid.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def get_adapter(model: ModelConfig) -> LLMAdapter:
    """Return the LLM adapter for ``model``.

    Routing logic:
    - "ollama"    → OllamaAdapter (base_url or localhost:11434)
    - "anthropic" → AnthropicAdapter
    - "openai"    → OpenAIAdapter (also any OpenAI-compatible base_url)

    Credentials are expected to be merged into ``model`` already.
    """
    if model.provider == "ollama":
        from eduvid.services.llm.ollama_adapter import OllamaAdapter

        base_url = model.base_url or "http://localhost:11434"
        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model.model,
            base_url,
            bool(model.api_key),
        )
        return OllamaAdapter(
            model_id=model.model,
            base_url=base_url,
            api_key=model.api_key,
            max_tokens=model.max_tokens,
        )

    if model.provider == "anthropic":
        from eduvid.services.llm.anthropic_adapter import AnthropicAdapter

        logger.debug("Routing %s to AnthropicAdapter", model.model)
        return AnthropicAdapter(
            model_id=model.model,
            api_key=model.api_key,
            base_url=model.base_url or "https://api.anthropic.com/v1",
            max_tokens=model.max_tokens,
        )

    from eduvid.services.llm.openai_adapter import OpenAIAdapter

    logger.debug("Routing %s to OpenAIAdapter", model.model)
    return OpenAIAdapter(
        model_id=model.model,
        api_key=model.api_key,
        base_url=model.base_url or "https://api.openai.com/v1",
        max_tokens=model.max_tokens,
    )
