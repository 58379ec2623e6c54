"""Capability implementations: the LLM-backed agents a stage dispatches to."""

from eduvid.capabilities.animation import AnimationCapability
from eduvid.capabilities.base import AgentCapability, Capability
from eduvid.capabilities.critique import CritiqueCapability
from eduvid.capabilities.direction import DirectionCapability
from eduvid.capabilities.ideation import IdeationCapability
from eduvid.capabilities.narration import NarrationScriptCapability

__all__ = [
    "AgentCapability",
    "AnimationCapability",
    "Capability",
    "CritiqueCapability",
    "DirectionCapability",
    "IdeationCapability",
    "NarrationScriptCapability",
]
