"""Anthropic Messages API adapter over httpx."""

import logging
from typing import Optional, Type

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from eduvid.services.llm.base import LLMAdapter, extract_json, schema_instruction

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(LLMAdapter):
    """LLM adapter for the Anthropic /messages endpoint."""

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        base_url: str = "https://api.anthropic.com/v1",
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ) -> None:
        self._model = model_id
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        # The messages endpoint requires max_tokens
        self._max_tokens = max_tokens or 4096
        self._timeout = timeout

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        if not self._api_key:
            raise RuntimeError(f"No API key configured for Anthropic model {self._model}")

        payload = {
            "model": self._model,
            "system": ((system_prompt or "") + schema_instruction(schema)).lstrip(),
            "messages": [{"role": "user", "content": prompt}],
            "temperature": min(temperature, 1.0),
            "max_tokens": self._max_tokens,
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type((httpx.HTTPError, ValueError)),
            reraise=True,
        )
        async def _call() -> BaseModel:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/messages", json=payload, headers=headers
                )
                response.raise_for_status()
            blocks = response.json().get("content", [])
            text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            return schema.model_validate_json(extract_json(text))

        return await _call()
