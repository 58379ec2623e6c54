"""Narration script: timed voice-over segments synchronised with the scenes."""

import logging
from typing import Any, Dict

from eduvid.capabilities.base import AgentCapability
from eduvid.schemas.content import ScenePlan, VoiceScript
from eduvid.services.file_manager import sanitize_filename

logger = logging.getLogger(__name__)

WORDS_PER_SECOND = {"slow": 2.0, "moderate": 2.5, "fast": 3.0}

# Lines of generated code that mark visible moments worth narrating
KEY_MOMENT_MARKERS = ("self.play", "self.wait", "Create", "Transform")

VOICE_PROMPT = """Create a narration script for an educational video with these specifications:

Title: {title}
Total Duration: {duration} seconds
Target Audience: {audience}
Tone: {tone}
Pacing: {pacing} (aim for ~{wps} words per second)

Scene Details:
{scenes}

Animation Code Reference:
```python
{moments}
```

Guidelines:
1. Synchronize narration with visual elements appearing on screen
2. Use {tone} language appropriate for {audience}
3. Include natural pauses during complex visual transitions
4. Build understanding progressively
5. Reference what's happening visually without being redundant
6. End each scene with a smooth transition to the next
7. Total word count should be approximately {words}"""


def extract_key_moments(code: str, limit: int = 20) -> str:
    moments = [line.strip() for line in code.splitlines() if any(m in line for m in KEY_MOMENT_MARKERS)]
    return "\n".join(moments[:limit])


def format_script_text(script: VoiceScript) -> str:
    meta = script.metadata
    lines = [
        f"VOICE SCRIPT: {meta.total_duration:g}s total",
        f"Total Words: {meta.total_words}",
        f"Average Speed: {meta.average_words_per_second:.1f} words/second",
        "",
    ]
    for segment in script.segments:
        lines.append(f"[{segment.start_time:.1f}s - {segment.end_time:.1f}s] Scene: {segment.scene_id}")
        lines.append(segment.text)
        if segment.pause_after:
            lines.append(f"[PAUSE {segment.pause_after:g}s]")
        lines.append("")
    if meta.suggestions:
        lines.append("SUGGESTIONS:")
        lines.extend(f"{i}. {s}" for i, s in enumerate(meta.suggestions, start=1))
    return "\n".join(lines) + "\n"


class NarrationScriptCapability(AgentCapability):
    """Write the voice-over for a planned and animated video.

    Params:
        tone: educational / conversational / formal / enthusiastic
        target_audience: general / student / expert
        pacing: slow / moderate / fast
    """

    async def execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        plan = ScenePlan.model_validate(inputs["scene_plan"])
        code = inputs.get("animation_code") or ""
        tone = self.param("tone", "educational")
        audience = self.param("target_audience", "general")
        pacing = self.param("pacing", "moderate")
        wps = WORDS_PER_SECOND.get(pacing, 2.5)
        total_duration = plan.overall_structure.total_duration

        scenes = []
        for scene in plan.scenes:
            moments = "\n".join(
                f"  - At {e.timing.appear:g}s: {e.type} appears - {e.description}"
                for e in scene.visual_elements
            )
            scenes.append(
                f"Scene {scene.scene_id}: {scene.title} "
                f"({scene.start_time:g}s - {scene.resolved_end_time():g}s)\n"
                f"Description: {scene.description}\n"
                f"Key Visual Moments:\n{moments}\n"
                f"Narration Cues: {', '.join(scene.narration_cues)}"
            )

        prompt = VOICE_PROMPT.format(
            title=plan.overall_structure.title,
            duration=f"{total_duration:g}",
            audience=audience,
            tone=tone,
            pacing=pacing,
            wps=wps,
            scenes="\n\n".join(scenes),
            moments=extract_key_moments(code),
            words=int(total_duration * wps),
        )
        script = await self.generate(prompt, VoiceScript)
        script = self._normalise(script, total_duration)

        if not script.segments:
            raise ValueError(f"Voice script for '{plan.overall_structure.title}' has no segments")

        name = sanitize_filename(plan.overall_structure.title)
        data = script.model_dump()
        data["full_text"] = script.full_text
        await self.save_json(f"{name}_script.json", data)
        await self.save_artifact(f"{name}_script.txt", format_script_text(script))
        return {"voice_script": data}

    def _normalise(self, script: VoiceScript, total_duration: float) -> VoiceScript:
        for index, segment in enumerate(script.segments, start=1):
            segment.segment_id = segment.segment_id or f"seg_{index}"
            segment.scene_id = segment.scene_id or "unknown"
            if segment.end_time <= segment.start_time:
                segment.end_time = segment.start_time + 3
        total_words = len(script.full_text.split())
        script.metadata.total_words = total_words
        script.metadata.total_duration = total_duration
        script.metadata.average_words_per_second = (
            total_words / total_duration if total_duration else 0.0
        )
        return script
