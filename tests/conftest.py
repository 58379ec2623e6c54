"""Shared fakes for pipeline tests.

Nothing here touches the network, an LLM, manim or ffmpeg: capabilities,
the narration synthesizer and the assembler are replaced with in-process
fakes that record their calls.
"""

import copy
import inspect
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from eduvid.config import Settings, deep_merge
from eduvid.defaults import DEFAULT_PIPELINE
from eduvid.orchestrator.events import EventBus
from eduvid.orchestrator.pipeline import Orchestrator
from eduvid.orchestrator.registry import CapabilityRegistry
from eduvid.orchestrator.store import RunStateStore
from eduvid.orchestrator.validation import ensure_valid, parse_definition
from eduvid.services.assembler import AssemblyResult
from eduvid.services.file_manager import FileManager
from eduvid.services.tts import NarrationResult, SegmentAudio


def make_definition(overrides: Optional[dict] = None, stage_changes: Optional[dict] = None):
    """Default pipeline with ``overrides`` merged and per-stage field changes applied."""
    document = copy.deepcopy(DEFAULT_PIPELINE)
    if stage_changes:
        for stage in document["stages"]:
            stage.update(stage_changes.get(stage["id"], {}))
    document = deep_merge(document, overrides or {})
    return ensure_valid(parse_definition(document))


def make_ideas(count: int = 5) -> list[dict]:
    return [
        {
            "id": i,
            "title": f"Idea {i}",
            "description": f"Description {i}",
            "visual_potential": "Lots of motion",
            "difficulty": "beginner",
            "estimated_duration": 30,
            "key_points": ["a", "b", "c"],
        }
        for i in range(1, count + 1)
    ]


class FakeCapability:
    """Capability double: records deep copies of its inputs, then calls ``handler``."""

    def __init__(self, handler: Callable[[dict], Any]):
        self.handler = handler
        self.calls: list[dict] = []

    async def execute(self, inputs: dict) -> dict:
        self.calls.append(copy.deepcopy(inputs))
        result = self.handler(inputs)
        if inspect.isawaitable(result):
            result = await result
        return result


def ideation_handler(inputs: dict) -> dict:
    return {"ideas": make_ideas(5)}


def direction_handler(inputs: dict) -> dict:
    idea = inputs["selected_idea"]
    return {
        "scene_plan": {
            "overall_structure": {"title": idea["title"], "total_duration": inputs["video_duration"]},
            "scenes": [{"scene_id": "scene_1", "title": "Intro", "duration": 5}],
            "technical_requirements": [],
        }
    }


def coding_handler(inputs: dict) -> dict:
    title = inputs["scene_plan"]["overall_structure"]["title"]
    return {"animation_code": f"# {title}", "video_file": f"/render/{title}.mp4"}


def voice_handler(inputs: dict) -> dict:
    return {
        "voice_script": {
            "segments": [{"segment_id": "seg_1", "scene_id": "scene_1", "text": "Hello world"}],
            "metadata": {"total_words": 2},
        }
    }


def critique_handler(inputs: dict) -> dict:
    return {"critique": {"scores": {"overall": 8}, "strengths": [], "improvements": ["More color"]}}


class FakeSynthesizer:
    def __init__(self):
        self.calls: list[tuple[list, Path]] = []

    async def synthesize(self, segments, output_dir):
        self.calls.append((list(segments), Path(output_dir)))
        audio = Path(output_dir) / "combined_narration.mp3"
        return NarrationResult(
            audio_file=str(audio),
            segments=[SegmentAudio(segment_id=s.segment_id, filepath=str(audio), duration=2.0) for s in segments],
        )


class FakeAssembler:
    def __init__(self):
        self.calls: list[tuple[str, str, str]] = []

    async def assemble(self, video_path, audio_path, output_name):
        self.calls.append((str(video_path), str(audio_path), output_name))
        return AssemblyResult(
            final_video=f"/out/{output_name}.mp4",
            duration=30.0,
            file_size=1024,
            metadata={"video_codec": "h264", "resolution": "1920x1080", "fps": 60},
        )


class Harness:
    """Everything needed to run an Orchestrator against fakes."""

    def __init__(self, tmp_path: Path):
        self.tmp_path = tmp_path
        self.capabilities = {
            "ideation-agent": FakeCapability(ideation_handler),
            "director-agent": FakeCapability(direction_handler),
            "coding-agent": FakeCapability(coding_handler),
            "voice-agent": FakeCapability(voice_handler),
            "critique-agent": FakeCapability(critique_handler),
        }
        self.synthesizer = FakeSynthesizer()
        self.assembler = FakeAssembler()
        self.events = EventBus()
        self.received = []
        self.events.subscribe(self.received.append)
        self.files = FileManager(tmp_path / "work")
        self.store = RunStateStore(tmp_path / "work")

    def set_handler(self, capability_id: str, handler: Callable[[dict], Any]) -> None:
        self.capabilities[capability_id].handler = handler

    def calls(self, capability_id: str) -> list[dict]:
        return self.capabilities[capability_id].calls

    def event_types(self) -> list[str]:
        return [e.type for e in self.received]

    def orchestrator(self, definition=None, **kwargs) -> Orchestrator:
        definition = definition or make_definition({"output_dir": str(self.tmp_path / "out")})
        return Orchestrator(
            definition,
            CapabilityRegistry(self.capabilities),
            settings=Settings(),
            files=self.files,
            store=self.store,
            events=self.events,
            synthesizer=self.synthesizer,
            assembler=self.assembler,
            **kwargs,
        )


@pytest.fixture
def harness(tmp_path) -> Harness:
    return Harness(tmp_path)


def async_stub(result: Any):
    """Coroutine function returning ``result``, or ``result(*args)`` when it is callable."""

    async def stub(*args, **kwargs):
        return result(*args) if callable(result) else result

    return stub
