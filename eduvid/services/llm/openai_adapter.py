"""OpenAI-compatible chat completions adapter over httpx.

Works with api.openai.com and any server implementing the same
/chat/completions endpoint. Uses JSON response mode plus schema
instructions for structured output.
"""

import logging
from typing import Optional, Type

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from eduvid.services.llm.base import LLMAdapter, extract_json, schema_instruction

logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    """LLM adapter for OpenAI-compatible chat completion endpoints."""

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ) -> None:
        self._model = model_id
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_tokens = max_tokens
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
            raise RuntimeError(f"No API key configured for OpenAI model {self._model}")

        system = (system_prompt or "") + schema_instruction(schema)
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system.lstrip()},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "stream": False,
        }
        if self._max_tokens:
            payload["max_tokens"] = self._max_tokens
        headers = {"Authorization": f"Bearer {self._api_key}"}

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type((httpx.HTTPError, ValueError)),
            reraise=True,
        )
        async def _call() -> BaseModel:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions", json=payload, headers=headers
                )
                response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"] or ""
            return schema.model_validate_json(extract_json(content))

        return await _call()
