"""Creative direction: plan scenes, visuals and timing for one idea."""

import logging
from typing import Any, Dict

from eduvid.capabilities.base import AgentCapability
from eduvid.schemas.content import Idea, ScenePlan
from eduvid.services.file_manager import sanitize_filename

logger = logging.getLogger(__name__)

DIRECTION_PROMPT = """Create a detailed scene-by-scene visualization plan for an educational video about:
Title: {title}
Description: {description}
Duration: {duration} seconds
Visual Style: {style}

Key points to cover:
{key_points}

Design Requirements:
1. Break down the video into logical scenes (aim for 3-7 scenes)
2. Each scene should flow naturally into the next
3. Use visual metaphors and analogies where appropriate
4. Include specific timing for all elements
5. Consider the pacing - build complexity gradually
6. Make abstract concepts concrete through visualization
7. Use color and motion to guide attention

For each scene, provide the title, description, exact timing, visual
elements with their animations, camera movements (if any), transition
effects and narration cues. Scene timings must add up to {duration} seconds."""


class DirectionCapability(AgentCapability):
    """Produce a ScenePlan for the selected idea.

    Params:
        style: Visual style hint (default "3blue1brown")
    """

    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        idea = Idea.model_validate(inputs["selected_idea"])
        duration = float(inputs.get("video_duration") or idea.estimated_duration)
        style = self.param("style", "3blue1brown")

        key_points = "\n".join(f"{i}. {p}" for i, p in enumerate(idea.key_points, start=1))
        prompt = DIRECTION_PROMPT.format(
            title=idea.title,
            description=idea.description,
            duration=f"{duration:g}",
            style=style,
            key_points=key_points or "(choose the key points yourself)",
        )
        plan = await self.generate(prompt, ScenePlan)

        if not plan.scenes:
            raise ValueError(f"Scene plan for '{idea.title}' has no scenes")

        # Normalise so downstream stages can rely on these fields
        structure = plan.overall_structure
        structure.title = structure.title or idea.title
        structure.total_duration = structure.total_duration or duration
        structure.number_of_scenes = len(plan.scenes)
        for scene in plan.scenes:
            scene.end_time = scene.resolved_end_time()

        scene_plan = plan.model_dump(by_alias=True)
        await self.save_json(f"{sanitize_filename(idea.title)}_scenes.json", scene_plan)
        logger.info(f"Planned {len(plan.scenes)} scenes for '{idea.title}'")
        return {"scene_plan": scene_plan}
