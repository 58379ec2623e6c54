"""Tests for agent capabilities with a scripted LLM adapter and renderer."""

import json
from pathlib import Path

import pytest

from eduvid.capabilities import (
    AnimationCapability,
    CritiqueCapability,
    DirectionCapability,
    IdeationCapability,
    NarrationScriptCapability,
)
from eduvid.orchestrator.errors import CapabilityError, CapabilityNotFound
from eduvid.orchestrator.registry import build_registry
from eduvid.schemas.content import (
    AnimationCode,
    Critique,
    Idea,
    IdeationOutput,
    OverallStructure,
    Scene,
    ScenePlan,
    VoiceScript,
    VoiceSegment,
)
from eduvid.schemas.pipeline import CapabilityConfig, ModelConfig
from eduvid.services.file_manager import FileManager
from eduvid.services.llm import get_adapter
from eduvid.services.llm.anthropic_adapter import AnthropicAdapter
from eduvid.services.llm.base import LLMAdapter
from eduvid.services.llm.ollama_adapter import OllamaAdapter
from eduvid.services.llm.openai_adapter import OpenAIAdapter
from eduvid.services.renderer import RenderError, RenderResult
from tests.conftest import make_definition


class FakeAdapter(LLMAdapter):
    """Returns queued responses in order and records every prompt."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.schemas: list[type] = []

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.prompts.append(prompt)
        self.schemas.append(schema)
        return self.responses.pop(0)


class FakeRenderer:
    """Fails with the queued errors, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = []

    async def render(self, code_file, scene_name, fps, resolution):
        self.calls.append((Path(code_file), scene_name, fps, resolution))
        if self.errors:
            raise RenderError(self.errors.pop(0), log="traceback")
        return RenderResult(video_file=f"/media/{scene_name}.mp4", log="ok")


def config(kind: str, **params) -> CapabilityConfig:
    return CapabilityConfig(
        id=f"{kind}-agent",
        name=kind.title(),
        kind=kind,
        model=ModelConfig(provider="openai", model="gpt-test"),
        params=params,
    )


@pytest.fixture
def files(tmp_path) -> FileManager:
    return FileManager(tmp_path / "work")


SCENE_PLAN = ScenePlan(
    overall_structure=OverallStructure(title="Orbital Resonance", total_duration=30),
    scenes=[Scene(scene_id="scene_1", title="Two moons", duration=10)],
).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Ideation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ideation_numbers_and_saves_ideas(files):
    adapter = FakeAdapter(
        IdeationOutput(ideas=[Idea(title="Tides"), Idea(id=7, title="Lagrange points")])
    )
    capability = IdeationCapability(config("ideation", number_of_ideas=2, focus_areas=["orbits"]), adapter, files)

    outputs = await capability.execute({"topic": "gravity"})

    assert [i["id"] for i in outputs["ideas"]] == [1, 7]
    assert 'Generate 2 novel and educational video ideas related to "gravity"' in adapter.prompts[0]
    assert "orbits" in adapter.prompts[0]
    saved = json.loads(Path(outputs["ideas_file"]).read_text())
    assert Path(outputs["ideas_file"]) == files.base_dir / "ideation-agent" / "ideas.json"
    assert saved == outputs["ideas"]


@pytest.mark.asyncio
async def test_ideation_without_ideas_fails(files):
    capability = IdeationCapability(config("ideation"), FakeAdapter(IdeationOutput(ideas=[])), files)
    with pytest.raises(ValueError):
        await capability.execute({"topic": "gravity"})


# ---------------------------------------------------------------------------
# Direction
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_direction_normalises_plan(files):
    plan = ScenePlan(
        overall_structure=OverallStructure(title="", total_duration=0),
        scenes=[
            Scene(scene_id="s1", duration=10),
            Scene(scene_id="s2", start_time=10, duration=20),
        ],
    )
    capability = DirectionCapability(config("direction"), FakeAdapter(plan), files)

    outputs = await capability.execute(
        {"selected_idea": {"title": "Tides", "key_points": ["Moon", "Sun"]}, "video_duration": 30}
    )

    structure = outputs["scene_plan"]["overall_structure"]
    assert structure["title"] == "Tides"
    assert structure["total_duration"] == 30
    assert structure["number_of_scenes"] == 2
    assert outputs["scene_plan"]["scenes"][1]["end_time"] == 30
    assert (files.base_dir / "direction-agent" / "tides_scenes.json").is_file()


@pytest.mark.asyncio
async def test_direction_without_scenes_fails(files):
    plan = ScenePlan(overall_structure=OverallStructure(title="Tides"))
    capability = DirectionCapability(config("direction"), FakeAdapter(plan), files)
    with pytest.raises(ValueError):
        await capability.execute({"selected_idea": {"title": "Tides"}, "video_duration": 30})


# ---------------------------------------------------------------------------
# Animation
# ---------------------------------------------------------------------------

ANIMATION_INPUTS = {
    "scene_plan": SCENE_PLAN,
    "framework": "manim",
    "output_format": "mp4",
    "fps": 30,
    "resolution": {"width": 1280, "height": 720},
}


@pytest.mark.asyncio
async def test_animation_renders_first_time(files):
    renderer = FakeRenderer()
    adapter = FakeAdapter(AnimationCode(code="class Resonance(Scene): pass", scene_name="Resonance"))
    capability = AnimationCapability(config("animation"), adapter, files, renderer=renderer)

    outputs = await capability.execute(ANIMATION_INPUTS)

    assert outputs["video_file"] == "/media/Resonance.mp4"
    assert outputs["iterations"] == 1
    code_file, scene_name, fps, resolution = renderer.calls[0]
    assert code_file.name == "orbital_resonance.py"
    assert code_file.read_text() == "class Resonance(Scene): pass"
    assert (scene_name, fps, resolution) == ("Resonance", 30, {"width": 1280, "height": 720})
    assert "Scene: Two moons (0s - 10s)" in adapter.prompts[0]


@pytest.mark.asyncio
async def test_animation_fixes_render_errors(files):
    renderer = FakeRenderer("NameError: Circel is not defined")
    adapter = FakeAdapter(
        AnimationCode(code="Circel()"),
        AnimationCode(code="Circle()"),
    )
    capability = AnimationCapability(config("animation"), adapter, files, renderer=renderer)

    outputs = await capability.execute(ANIMATION_INPUTS)

    assert outputs["iterations"] == 2
    assert outputs["animation_code"] == "Circle()"
    assert "Circel()" in adapter.prompts[1]
    assert "NameError: Circel is not defined" in adapter.prompts[1]


@pytest.mark.asyncio
async def test_animation_gives_up(files):
    renderer = FakeRenderer("error one", "error two")
    adapter = FakeAdapter(AnimationCode(code="a"), AnimationCode(code="b"))
    capability = AnimationCapability(config("animation", max_iterations=2), adapter, files, renderer=renderer)

    with pytest.raises(CapabilityError, match="No working animation after 2 iterations: error two"):
        await capability.execute(ANIMATION_INPUTS)
    assert len(renderer.calls) == 2


@pytest.mark.asyncio
async def test_animation_rejects_other_frameworks(files):
    adapter = FakeAdapter()
    capability = AnimationCapability(config("animation"), adapter, files, renderer=FakeRenderer())

    with pytest.raises(CapabilityError, match="threejs"):
        await capability.execute(dict(ANIMATION_INPUTS, framework="threejs"))
    assert adapter.prompts == []


# ---------------------------------------------------------------------------
# Narration and critique
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_narration_script_fills_ids_and_metadata(files):
    script = VoiceScript(
        segments=[
            VoiceSegment(text="Two moons circle a planet.", start_time=0, end_time=5),
            VoiceSegment(segment_id="custom", text="Their periods lock.", start_time=5),
        ]
    )
    capability = NarrationScriptCapability(config("narration-script"), FakeAdapter(script), files)

    outputs = await capability.execute({"scene_plan": SCENE_PLAN, "animation_code": "self.play(Create(c))"})

    data = outputs["voice_script"]
    assert [s["segment_id"] for s in data["segments"]] == ["seg_1", "custom"]
    assert data["segments"][1]["end_time"] == 8
    assert data["metadata"]["total_words"] == 8
    assert data["full_text"] == "Two moons circle a planet. Their periods lock."
    assert (files.base_dir / "narration-script-agent" / "orbital_resonance_script.txt").is_file()


@pytest.mark.asyncio
async def test_critique(files):
    critique = Critique(improvements=["Slow down scene 1"])
    capability = CritiqueCapability(config("critique"), FakeAdapter(critique), files)
    voice_script = VoiceScript(segments=[VoiceSegment(text="Hello")]).model_dump()

    outputs = await capability.execute(
        {"final_video": "/out/video_abc_1.mp4", "scene_plan": SCENE_PLAN, "voice_script": voice_script}
    )

    assert outputs["critique"]["improvements"] == ["Slow down scene 1"]
    assert (files.base_dir / "critique-agent" / "video_abc_1_critique.json").is_file()


# ---------------------------------------------------------------------------
# Registry and adapter routing
# ---------------------------------------------------------------------------

def test_build_registry_creates_every_capability(files):
    models = []

    def factory(model):
        models.append(model.provider)
        return FakeAdapter()

    registry = build_registry(make_definition(), files, renderer=FakeRenderer(), adapter_factory=factory)

    assert registry.ids == {
        "ideation-agent",
        "director-agent",
        "coding-agent",
        "voice-agent",
        "critique-agent",
    }
    assert isinstance(registry.get("coding-agent"), AnimationCapability)
    assert isinstance(registry.get("director-agent"), DirectionCapability)
    assert models == ["openai", "anthropic", "openai", "openai", "anthropic"]
    with pytest.raises(CapabilityNotFound, match="Capability not found: nope"):
        registry.get("nope")


@pytest.mark.parametrize(
    "provider,adapter_class",
    [("openai", OpenAIAdapter), ("anthropic", AnthropicAdapter), ("ollama", OllamaAdapter)],
)
def test_get_adapter_routes_by_provider(provider, adapter_class):
    adapter = get_adapter(ModelConfig(provider=provider, model="some-model", api_key="key"))
    assert isinstance(adapter, adapter_class)
