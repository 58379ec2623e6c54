"""Pydantic schemas for the declarative pipeline definition.

A PipelineDefinition is built once per run by the configuration merge
step (see eduvid.config) and is frozen afterwards.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Sentinel capability id for stages the orchestrator handles inline
NONE_CAPABILITY = "none"

CapabilityKind = Literal["ideation", "direction", "animation", "narration-script", "critique"]
Provider = Literal["openai", "anthropic", "ollama"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ModelConfig(_Frozen):
    """LLM backing a capability."""

    provider: Provider
    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    api_key: Optional[str] = None
    base_url: Optional[str] = None


class CapabilityConfig(_Frozen):
    """Configuration for one registered capability (agent)."""

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    kind: CapabilityKind
    model: ModelConfig
    system_prompt: Optional[str] = None
    max_retries: int = Field(default=3, ge=1)
    params: dict[str, Any] = Field(default_factory=dict)


class StageSpec(_Frozen):
    """One named unit of work in the pipeline."""

    id: str = Field(min_length=1)
    name: str
    capability: str = Field(min_length=1)
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    timeout: float = Field(default=120.0, gt=0)
    retry_on_failure: bool = False

    @property
    def is_inline(self) -> bool:
        return self.capability == NONE_CAPABILITY


class Resolution(_Frozen):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class VideoConfig(_Frozen):
    """Output video parameters."""

    duration: float = Field(gt=0, description="Target duration in seconds")
    fps: int
    resolution: Resolution
    quality: Literal["low", "medium", "high", "ultra"] = "high"


class AnimationFramework(_Frozen):
    name: Literal["manim", "threejs", "p5js"] = "manim"
    version: Optional[str] = None
    setup_command: Optional[str] = None
    run_command: str
    output_format: str = "mp4"


class PipelineDefinition(_Frozen):
    """Complete, validated pipeline definition. Immutable per run."""

    id: str
    name: str
    description: str = ""
    stages: tuple[StageSpec, ...]
    capabilities: tuple[CapabilityConfig, ...]
    video: VideoConfig
    animation_framework: AnimationFramework
    output_dir: str
    ideation_stage: str = "ideation"
    enable_critique: bool = False
    critique_stage: str = "critique"
    max_stage_retries: int = Field(default=1, ge=0)
    retry_delay: float = Field(default=0.0, ge=0)
    branch_limit: int = Field(default=3, gt=0)
    parallel_branches: bool = False
    branch_concurrency: int = Field(default=3, gt=0)

    def get_stage(self, stage_id: str) -> Optional[StageSpec]:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def get_capability(self, capability_id: str) -> Optional[CapabilityConfig]:
        for capability in self.capabilities:
            if capability.id == capability_id:
                return capability
        return None

    def branch_stages(self) -> list[StageSpec]:
        """Stages run once per branch, in definition order.

        Everything after the ideation stage except the critique stage,
        which the branch controller runs separately once the branch has
        produced its final video.
        """
        ids = [s.id for s in self.stages]
        start = ids.index(self.ideation_stage) + 1 if self.ideation_stage in ids else 0
        stages = [s for s in self.stages[start:] if s.id != self.critique_stage]
        return stages

    def seed_values(self) -> dict[str, Any]:
        """Run-level values every branch starts from."""
        return {
            "video_duration": self.video.duration,
            "fps": self.video.fps,
            "resolution": self.video.resolution.model_dump(),
            "quality": self.video.quality,
            "framework": self.animation_framework.name,
            "output_format": self.animation_framework.output_format,
        }


# Input names supplied by the orchestrator rather than by an earlier stage
BRANCH_SEED_NAMES = frozenset(
    {
        "topic",
        "selected_idea",
        "branch_index",
        "video_duration",
        "fps",
        "resolution",
        "quality",
        "framework",
        "output_format",
    }
)
