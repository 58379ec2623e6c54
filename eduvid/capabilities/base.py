"""Base classes for capabilities.

A capability receives a mapping of named inputs and returns a mapping of
named outputs. Agent capabilities talk to an LLM through an LLMAdapter and
keep reference artifacts in a working directory named after their id.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel

from eduvid.schemas.pipeline import CapabilityConfig
from eduvid.services.file_manager import FileManager
from eduvid.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Capability(ABC):
    """Anything a stage can dispatch to."""

    def __init__(self, config: CapabilityConfig):
        self.config = config

    @property
    def id(self) -> str:
        return self.config.id

    @abstractmethod
    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Produce outputs from ``inputs``. Raise on failure."""
        ...


class AgentCapability(Capability):
    """Capability backed by an LLM."""

    def __init__(self, config: CapabilityConfig, adapter: LLMAdapter, files: FileManager):
        super().__init__(config)
        self.adapter = adapter
        self.files = files

    def param(self, name: str, default: Any = None) -> Any:
        return self.config.params.get(name, default)

    async def generate(
        self, prompt: str, schema: Type[T], *, temperature: Optional[float] = None
    ) -> T:
        """Ask the backing model for a ``schema`` instance."""
        logger.debug(f"{self.id}: requesting {schema.__name__} from {self.config.model.model}")
        return await self.adapter.generate_text(
            prompt,
            schema,
            temperature=self.config.model.temperature if temperature is None else temperature,
            system_prompt=self.config.system_prompt,
            max_retries=self.config.max_retries,
        )

    async def save_artifact(self, filename: str, content: str) -> Path:
        return await asyncio.to_thread(self.files.save_text, self.id, filename, content)

    async def save_json(self, filename: str, data: Any) -> Path:
        return await self.save_artifact(filename, json.dumps(data, indent=2) + "\n")
