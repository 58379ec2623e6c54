"""Topic ideation: turn a broad topic into candidate video ideas."""

import logging
from typing import Any, Dict

from eduvid.capabilities.base import AgentCapability
from eduvid.schemas.content import IdeationOutput

logger = logging.getLogger(__name__)

IDEATION_PROMPT = """Generate {count} novel and educational video ideas related to "{topic}".{focus}

For each idea, provide:
1. A compelling title
2. A detailed description (2-3 sentences)
3. Visual potential - explain what makes this topic great for animation
4. Difficulty level (beginner/intermediate/advanced)
5. Estimated duration in seconds for a comprehensive explanation
6. 3-5 key points that would be covered

Focus on topics that:
- Have high visual appeal and benefit from animation
- Can be explained clearly within the time constraint
- Offer genuine educational value
- Haven't been extensively covered in popular science videos"""


class IdeationCapability(AgentCapability):
    """Generate candidate ideas for a topic.

    Params:
        number_of_ideas: How many ideas to request (default 5)
        focus_areas: Optional list of areas to emphasise
    """

    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        topic = inputs["topic"]
        count = int(self.param("number_of_ideas", 5))
        focus_areas = self.param("focus_areas") or []
        focus = f" Focus particularly on these areas: {', '.join(focus_areas)}." if focus_areas else ""

        prompt = IDEATION_PROMPT.format(count=count, topic=topic, focus=focus)
        output = await self.generate(prompt, IdeationOutput)

        ideas = []
        for index, idea in enumerate(output.ideas, start=1):
            data = idea.model_dump()
            data["id"] = data["id"] or index
            ideas.append(data)

        if not ideas:
            raise ValueError(f"Model returned no ideas for topic '{topic}'")

        ideas_file = await self.save_json("ideas.json", ideas)
        logger.info(f"Generated {len(ideas)} ideas for '{topic}'")
        return {"ideas": ideas, "ideas_file": str(ideas_file)}
