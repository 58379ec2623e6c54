"""Ollama adapter for the LLM abstraction layer.

Talks to a local or hosted Ollama server through ollama.AsyncClient.
Structured output uses format='json' with the schema described in the
system prompt rather than a JSON Schema dict in ``format``.
"""

import logging
from typing import Optional, Type

import httpx
from ollama import AsyncClient, ResponseError
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from eduvid.services.llm.base import LLMAdapter, extract_json, schema_instruction

logger = logging.getLogger(__name__)

# Server errors, dropped connections and unparseable replies are worth another try
RETRYABLE_ERRORS = (ResponseError, httpx.HTTPError, ValueError)


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by an Ollama instance.

    Model ids may carry an "ollama/" prefix, which is dropped before the
    request. ``max_tokens`` maps to Ollama's ``num_predict`` option.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self._model = model_id.removeprefix("ollama/")
        self._max_tokens = max_tokens
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        system = ((system_prompt or "") + schema_instruction(schema)).lstrip()
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        options = {"temperature": temperature}
        if self._max_tokens:
            options["num_predict"] = self._max_tokens

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> BaseModel:
            response = await self._client.chat(
                model=self._model,
                messages=messages,
                format="json",
                options=options,
                stream=False,
            )
            return schema.model_validate_json(extract_json(response.message.content or ""))

        logger.debug(f"Requesting {schema.__name__} from ollama model {self._model}")
        return await _call()
