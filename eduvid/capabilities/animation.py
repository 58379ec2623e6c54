"""Animation coding: write Manim code for a scene plan and render it.

Render failures are fed back to the model for a fix, up to
``max_iterations`` attempts. Only the manim framework renders.
"""

import logging
from typing import Any, Dict, Optional

from eduvid.capabilities.base import AgentCapability
from eduvid.orchestrator.errors import CapabilityError
from eduvid.schemas.content import AnimationCode, Scene, ScenePlan
from eduvid.schemas.pipeline import CapabilityConfig
from eduvid.services.file_manager import FileManager, sanitize_filename
from eduvid.services.llm.base import LLMAdapter
from eduvid.services.renderer import ManimRenderer, RenderError

logger = logging.getLogger(__name__)

SUPPORTED_FRAMEWORKS = {"manim"}

CODING_PROMPT = """Create a Manim animation based on these scene plans:

Title: {title}
Total Duration: {duration} seconds
Visual Style: {style}
Color Scheme: {colors}

Scene Plans:
{scenes}

Technical Requirements:
{requirements}

Create a complete Manim script that:
1. Implements all scenes with proper timing
2. Uses smooth transitions between scenes
3. Follows Manim best practices
4. Includes proper imports and class structure
5. Handles all visual elements and animations
6. Uses the specified color scheme
7. Renders at {duration} seconds total

The main scene class should be named "{scene_name}".
Put the complete Python source in the "code" field."""

FIX_PROMPT = """The following Manim code has an error:

```python
{code}
```

Error message:
{error}

Fix the code to resolve this error. Make minimal changes and keep the
animation matching the original requirements. Keep the main scene class
named "{scene_name}". Put the complete fixed source in the "code" field."""


def format_scene(scene: Scene) -> str:
    lines = [
        f"Scene: {scene.title} ({scene.start_time:g}s - {scene.resolved_end_time():g}s)",
        f"Description: {scene.description}",
        "Visual Elements:",
    ]
    for element in scene.visual_elements:
        lines.append(
            f"  - {element.type}: {element.description} "
            f"(appear at {element.timing.appear:g}s, {element.animation})"
        )
    if scene.camera_movements:
        lines.append("Camera Movements:")
        for move in scene.camera_movements:
            lines.append(
                f"  - {move.type}: {move.description} ({move.start_time:g}s - {move.end_time:g}s)"
            )
    lines.append(f"Transitions: In={scene.transitions.in_}, Out={scene.transitions.out}")
    return "\n".join(lines)


class AnimationCapability(AgentCapability):
    """Generate, render and repair Manim code.

    Params:
        max_iterations: Generate/fix attempts before giving up (default 5)
        scene_name: Main Scene class name (default "EducationalVideo")
    """

    def __init__(
        self,
        config: CapabilityConfig,
        adapter: LLMAdapter,
        files: FileManager,
        renderer: Optional[ManimRenderer] = None,
    ):
        super().__init__(config, adapter, files)
        self.renderer = renderer or ManimRenderer()

    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        framework = inputs.get("framework", "manim")
        if framework not in SUPPORTED_FRAMEWORKS:
            raise CapabilityError(f"Framework {framework} not yet implemented")

        plan = ScenePlan.model_validate(inputs["scene_plan"])
        fps = int(inputs.get("fps", 60))
        resolution = inputs.get("resolution") or {"width": 1920, "height": 1080}
        max_iterations = int(self.param("max_iterations", 5))
        scene_name = self.param("scene_name", "EducationalVideo")
        filename = f"{sanitize_filename(plan.overall_structure.title)}.py"

        code: Optional[AnimationCode] = None
        last_error = ""
        for iteration in range(1, max_iterations + 1):
            if code is None:
                code = await self.generate(self._initial_prompt(plan, scene_name), AnimationCode)
            else:
                prompt = FIX_PROMPT.format(code=code.code, error=last_error, scene_name=scene_name)
                code = await self.generate(prompt, AnimationCode)

            code_file = await self.save_artifact(filename, code.code)
            try:
                result = await self.renderer.render(code_file, code.scene_name, fps, resolution)
            except RenderError as e:
                last_error = str(e)
                logger.warning(f"{self.id}: render iteration {iteration}/{max_iterations} failed")
                continue

            logger.info(f"{self.id}: rendered {result.video_file} after {iteration} iteration(s)")
            return {
                "animation_code": code.code,
                "code_file": str(code_file),
                "video_file": result.video_file,
                "render_log": result.log,
                "iterations": iteration,
            }

        raise CapabilityError(
            f"No working animation after {max_iterations} iterations: {last_error or 'unknown error'}"
        )

    def _initial_prompt(self, plan: ScenePlan, scene_name: str) -> str:
        structure = plan.overall_structure
        return CODING_PROMPT.format(
            title=structure.title,
            duration=f"{structure.total_duration:g}",
            style=structure.visual_style,
            colors=", ".join(structure.color_scheme),
            scenes="\n\n".join(format_scene(s) for s in plan.scenes),
            requirements="\n".join(plan.technical_requirements) or "None",
            scene_name=scene_name,
        )
