"""Capability registry: capability id to live handle.

Built once per run from a validated PipelineDefinition and read-only
afterwards, so branches may share it freely. Capability kinds dispatch
through a closed table; an unknown kind cannot get past definition
parsing, and an unknown id is rejected here rather than at first use.
"""

import logging
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Optional

from eduvid.capabilities import (
    AnimationCapability,
    Capability,
    CritiqueCapability,
    DirectionCapability,
    IdeationCapability,
    NarrationScriptCapability,
)
from eduvid.orchestrator.errors import CapabilityNotFound
from eduvid.schemas.pipeline import ModelConfig, PipelineDefinition
from eduvid.services.file_manager import FileManager
from eduvid.services.llm import LLMAdapter, get_adapter
from eduvid.services.renderer import ManimRenderer

logger = logging.getLogger(__name__)

CAPABILITY_KINDS = {
    "ideation": IdeationCapability,
    "direction": DirectionCapability,
    "animation": AnimationCapability,
    "narration-script": NarrationScriptCapability,
    "critique": CritiqueCapability,
}


class CapabilityRegistry:
    """Immutable mapping of capability ids to handles."""

    def __init__(self, handles: Mapping[str, Capability]):
        self._handles = MappingProxyType(dict(handles))

    def get(self, capability_id: str) -> Capability:
        try:
            return self._handles[capability_id]
        except KeyError:
            raise CapabilityNotFound(f"Capability not found: {capability_id}") from None

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._handles

    def __iter__(self) -> Iterator[str]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._handles)


def build_registry(
    definition: PipelineDefinition,
    files: Optional[FileManager] = None,
    *,
    renderer: Optional[ManimRenderer] = None,
    adapter_factory: Callable[[ModelConfig], LLMAdapter] = get_adapter,
) -> CapabilityRegistry:
    """Instantiate one handle per capability in ``definition``.

    Args:
        definition: Validated pipeline definition (credentials already merged)
        files: Artifact storage; defaults to the configured working directory
        renderer: Media renderer for animation capabilities
        adapter_factory: Builds the LLM adapter for a capability's model
    """
    files = files or FileManager()
    renderer = renderer or ManimRenderer()

    handles: dict[str, Capability] = {}
    for config in definition.capabilities:
        cls = CAPABILITY_KINDS[config.kind]
        adapter = adapter_factory(config.model)
        if cls is AnimationCapability:
            handles[config.id] = cls(config, adapter, files, renderer=renderer)
        else:
            handles[config.id] = cls(config, adapter, files)
        logger.debug(f"Registered capability {config.id} ({config.kind}, {config.model.provider})")

    return CapabilityRegistry(handles)
