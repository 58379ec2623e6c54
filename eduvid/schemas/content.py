"""Pydantic schemas for structured agent output.

These define what each agent asks its LLM for. Missing fields fall back
to defaults so a partially filled response still produces a usable plan.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Difficulty = Literal["beginner", "intermediate", "advanced"]


class Idea(BaseModel):
    """One candidate video idea produced by ideation."""

    id: int = Field(default=0, description="1-based idea number")
    title: str = Field(default="Untitled", description="Compelling video title")
    description: str = Field(default="", description="2-3 sentence description")
    visual_potential: str = Field(
        default="", description="Why this topic benefits from animation"
    )
    difficulty: Difficulty = Field(default="intermediate")
    estimated_duration: float = Field(
        default=30, description="Seconds needed for a clear explanation"
    )
    key_points: list[str] = Field(default_factory=list, description="3-5 key points")

    @field_validator("difficulty", mode="before")
    @classmethod
    def default_unknown_difficulty(cls, v):
        """Unknown difficulty labels are treated as intermediate."""
        if v not in ("beginner", "intermediate", "advanced"):
            return "intermediate"
        return v


class IdeationOutput(BaseModel):
    ideas: list[Idea] = Field(description="Candidate video ideas")


class VisualTiming(BaseModel):
    appear: float = 0
    disappear: Optional[float] = None


class VisualElement(BaseModel):
    type: str = Field(default="shape", description="text/shape/graph/equation/3d-object")
    description: str = ""
    animation: str = Field(default="static", description="How it moves or changes")
    timing: VisualTiming = Field(default_factory=VisualTiming)


class CameraMovement(BaseModel):
    type: Literal["pan", "zoom", "rotate", "static"] = "static"
    description: str = ""
    start_time: float = 0
    end_time: float = 0


class Transitions(BaseModel):
    in_: str = Field(default="fade", alias="in")
    out: str = "fade"

    model_config = ConfigDict(populate_by_name=True)


class Scene(BaseModel):
    """A single scene in the director's plan."""

    scene_id: str
    title: str = "Untitled Scene"
    duration: float = 5
    start_time: float = 0
    end_time: Optional[float] = None
    description: str = ""
    visual_elements: list[VisualElement] = Field(default_factory=list)
    camera_movements: list[CameraMovement] = Field(default_factory=list)
    transitions: Transitions = Field(default_factory=Transitions)
    narration_cues: list[str] = Field(default_factory=list)

    def resolved_end_time(self) -> float:
        if self.end_time is not None:
            return self.end_time
        return self.start_time + self.duration


class OverallStructure(BaseModel):
    title: str
    total_duration: float = 30
    number_of_scenes: int = 0
    visual_style: str = "minimalist"
    color_scheme: list[str] = Field(default_factory=lambda: ["#1f1f1f", "#ffffff", "#3b82f6"])


class ScenePlan(BaseModel):
    """Complete scene-by-scene plan for one video."""

    overall_structure: OverallStructure
    scenes: list[Scene] = Field(default_factory=list)
    technical_requirements: list[str] = Field(default_factory=list)


class AnimationCode(BaseModel):
    code: str = Field(description="Complete Manim Python source")
    scene_name: str = Field(
        default="EducationalVideo", description="Name of the main Scene class"
    )


class VoiceSegment(BaseModel):
    segment_id: str = ""
    scene_id: str = ""
    text: str
    start_time: float = 0
    end_time: float = 0
    emphasis: list[str] = Field(default_factory=list)
    pause_after: float = 0
    emotion: Literal["neutral", "excited", "thoughtful", "mysterious"] = "neutral"

    @property
    def duration(self) -> float:
        return max(self.end_time - self.start_time, 0)


class VoiceScriptMetadata(BaseModel):
    total_words: int = 0
    average_words_per_second: float = 0
    total_duration: float = 0
    suggestions: list[str] = Field(default_factory=list)


class VoiceScript(BaseModel):
    segments: list[VoiceSegment]
    metadata: VoiceScriptMetadata = Field(default_factory=VoiceScriptMetadata)

    @property
    def full_text(self) -> str:
        return " ".join(s.text for s in self.segments)


class CritiqueScores(BaseModel):
    visual_clarity: int = Field(default=0, ge=0, le=10)
    pedagogical_value: int = Field(default=0, ge=0, le=10)
    pacing: int = Field(default=0, ge=0, le=10)
    audio_visual_sync: int = Field(default=0, ge=0, le=10)
    overall: int = Field(default=0, ge=0, le=10)


class Critique(BaseModel):
    scores: CritiqueScores = Field(default_factory=CritiqueScores)
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(description="Specific, actionable feedback")
