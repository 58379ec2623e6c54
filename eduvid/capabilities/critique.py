"""Quality critique of an assembled video. Advisory only."""

import logging
from pathlib import Path
from typing import Any, Dict

from eduvid.capabilities.base import AgentCapability
from eduvid.schemas.content import Critique, ScenePlan, VoiceScript

logger = logging.getLogger(__name__)

CRITIQUE_PROMPT = """Review this educational video and give constructive feedback.

Video file: {video}
Title: {title}
Planned duration: {duration} seconds
Visual style: {style}

Scenes:
{scenes}

Narration:
{narration}

Score each of visual clarity, pedagogical value, pacing, audio-visual
synchronization and overall quality from 0 to 10, list the main
strengths, and give specific, actionable improvements."""


class CritiqueCapability(AgentCapability):
    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        plan = ScenePlan.model_validate(inputs["scene_plan"])
        script = VoiceScript.model_validate(inputs["voice_script"])
        video = Path(inputs["final_video"])

        prompt = CRITIQUE_PROMPT.format(
            video=video.name,
            title=plan.overall_structure.title,
            duration=f"{plan.overall_structure.total_duration:g}",
            style=plan.overall_structure.visual_style,
            scenes="\n".join(
                f"- {s.title} ({s.start_time:g}s - {s.resolved_end_time():g}s): {s.description}"
                for s in plan.scenes
            ),
            narration=script.full_text,
        )
        critique = await self.generate(prompt, Critique)

        data = critique.model_dump()
        await self.save_json(f"{video.stem}_critique.json", data)
        logger.info(f"{self.id}: overall score {critique.scores.overall}/10 for {video.name}")
        return {"critique": data}
