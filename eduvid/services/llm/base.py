"""Abstract base class for LLM provider adapters.

Defines the async interface every adapter implements: a prompt goes in,
a validated instance of the caller-supplied Pydantic schema comes out.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional, Type

from pydantic import BaseModel


def schema_instruction(schema: Type[BaseModel]) -> str:
    """Build a concise JSON schema instruction to append to the system prompt.

    LLMs follow an inline schema description more reliably than a raw JSON
    Schema dict passed through a provider-specific format parameter.
    """
    schema_json = json.dumps(schema.model_json_schema(by_alias=True), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Return ONLY the JSON object."
    )


def extract_json(raw: str) -> str:
    """Strip markdown fences or surrounding prose from a JSON response."""
    stripped = raw.strip()
    if stripped.startswith("```"):
        # Remove opening fence (```json or ```)
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3].rstrip()
        return stripped

    if stripped.startswith("{") or stripped.startswith("["):
        return stripped

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start:end + 1]
    return stripped


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Generate structured text output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature. Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.
            max_retries: Maximum number of attempts on failure.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...
