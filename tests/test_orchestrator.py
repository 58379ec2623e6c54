"""Run-level behaviour of the Orchestrator against fake capabilities."""

import asyncio
import json

import pytest

from eduvid.config import Settings
from eduvid.orchestrator.errors import ConfigurationError
from eduvid.orchestrator.pipeline import run_pipeline
from eduvid.orchestrator.registry import CapabilityRegistry
from eduvid.orchestrator.state import TERMINAL_STATES, RunState
from eduvid.orchestrator.store import serialize_state
from tests.conftest import coding_handler, make_definition, make_ideas


def raising(message: str):
    def handler(inputs):
        raise RuntimeError(message)

    return handler


def failing_for(title: str, message: str = "render failed"):
    def handler(inputs):
        if inputs["scene_plan"]["overall_structure"]["title"] == title:
            raise RuntimeError(message)
        return coding_handler(inputs)

    return handler


# ---------------------------------------------------------------------------
# Scenario: five candidates, three branches, one render failure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gravity_scenario(harness):
    harness.set_handler("coding-agent", failing_for("Idea 2"))
    orchestrator = harness.orchestrator()

    state = await orchestrator.run("gravity")

    assert state.status == "completed"
    assert state.topic == "gravity"
    assert len(state.artifacts) == 2
    assert sorted(a.branch for a in state.artifacts) == [1, 3]
    assert len(state.errors) == 1
    error = state.errors[0]
    assert error.stage == "animation"
    assert error.branch == 2
    assert "render failed" in error.message
    assert state.end_time is not None


@pytest.mark.asyncio
async def test_only_first_three_candidates_are_branched(harness):
    state = await harness.orchestrator().run("gravity")

    titles = [c["selected_idea"]["title"] for c in harness.calls("director-agent")]
    assert titles == ["Idea 1", "Idea 2", "Idea 3"]
    assert len(state.artifacts) == 3


@pytest.mark.asyncio
async def test_retry_uses_identical_inputs_and_is_bounded(harness):
    harness.set_handler("coding-agent", failing_for("Idea 2"))
    await harness.orchestrator().run("gravity")

    branch_two = [
        c for c in harness.calls("coding-agent")
        if c["scene_plan"]["overall_structure"]["title"] == "Idea 2"
    ]
    # max_stage_retries defaults to 1: two attempts in total
    assert len(branch_two) == 2
    first, second = (json.dumps(c, sort_keys=True) for c in branch_two)
    assert first == second
    assert harness.event_types().count("stage:retry") == 1


# ---------------------------------------------------------------------------
# Run-level failure paths
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ideation_failure_fails_run_without_branches(harness):
    def broken(inputs):
        raise RuntimeError("model unavailable")

    harness.set_handler("ideation-agent", broken)
    state = await harness.orchestrator().run("gravity")

    assert state.status == "failed"
    assert state.errors and state.errors[0].stage == "ideation"
    assert harness.calls("director-agent") == []
    assert harness.calls("coding-agent") == []
    assert not any(key.startswith("branch-") for key in state.stage_outputs)
    assert "branch:start" not in harness.event_types()


@pytest.mark.asyncio
async def test_all_branches_failing_fails_run(harness):
    def broken(inputs):
        raise RuntimeError("manim crashed")

    harness.set_handler("coding-agent", broken)
    state = await harness.orchestrator().run("gravity")

    assert state.status == "failed"
    assert state.artifacts == []
    assert "ideation" in state.stage_outputs
    assert [e.stage for e in state.errors] == ["animation", "animation", "animation", "run"]
    assert "No branch produced a final video" in state.errors[-1].message


@pytest.mark.asyncio
async def test_no_candidates_fails_run(harness):
    harness.set_handler("ideation-agent", lambda inputs: {"ideas": []})
    state = await harness.orchestrator().run("gravity")

    assert state.status == "failed"
    assert state.errors[-1].stage == "run"


@pytest.mark.asyncio
async def test_malformed_candidate_fails_only_its_branch(harness):
    ideas = make_ideas(3)
    harness.set_handler("ideation-agent", lambda inputs: {"ideas": [ideas[0], "just a title", ideas[2]]})

    state = await harness.orchestrator().run("gravity")

    assert state.status == "completed"
    assert sorted(a.branch for a in state.artifacts) == [1, 3]
    assert len(state.errors) == 1
    assert state.errors[0].branch == 2
    assert state.errors[0].stage == "branch"
    assert "expected a mapping" in state.errors[0].message


@pytest.mark.asyncio
async def test_unexpected_error_is_recorded_not_raised(harness):
    async def exploding_selector(candidates):
        raise RuntimeError("terminal went away")

    orchestrator = harness.orchestrator(selector=exploding_selector)
    state = await orchestrator.run("gravity")

    assert state.status == "failed"
    assert state.errors[-1].stage == "ideation"
    assert "terminal went away" in state.errors[-1].message
    assert harness.event_types()[-1] == "run:error"


@pytest.mark.asyncio
async def test_run_never_raises_for_misbehaving_capabilities(harness):
    harness.set_handler("ideation-agent", lambda inputs: "not a mapping")
    state = await harness.orchestrator().run("gravity")

    assert state.status in TERMINAL_STATES
    assert state.status == "failed"


def test_registry_missing_capability_is_rejected_at_construction(harness):
    del harness.capabilities["voice-agent"]
    with pytest.raises(ConfigurationError) as exc_info:
        harness.orchestrator()
    assert any("voice-agent" in e for e in exc_info.value.errors)


# ---------------------------------------------------------------------------
# Critique is advisory
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_critique_attached_to_artifacts(harness):
    state = await harness.orchestrator().run("gravity")

    assert all(a.critique["scores"]["overall"] == 8 for a in state.artifacts)
    assert harness.event_types().count("critique:complete") == 3
    # Critique sees the finished video and the branch's intermediate outputs
    call = harness.calls("critique-agent")[0]
    assert call["final_video"].startswith("/out/")
    assert set(call) == {"final_video", "scene_plan", "voice_script"}


@pytest.mark.asyncio
async def test_critique_failure_keeps_artifact(harness):
    def broken(inputs):
        raise RuntimeError("reviewer offline")

    harness.set_handler("critique-agent", broken)
    state = await harness.orchestrator().run("gravity")

    assert state.status == "completed"
    assert len(state.artifacts) == 3
    assert all(a.critique is None for a in state.artifacts)
    assert harness.event_types().count("critique:error") == 3


@pytest.mark.asyncio
async def test_critique_disabled(harness):
    definition = make_definition(
        {"output_dir": str(harness.tmp_path / "out"), "enable_critique": False}
    )
    state = await harness.orchestrator(definition).run("gravity")

    assert state.status == "completed"
    assert harness.calls("critique-agent") == []


# ---------------------------------------------------------------------------
# Branch data flow
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_branch_outputs_are_recorded_per_branch(harness):
    state = await harness.orchestrator().run("gravity")

    assert "ideation" in state.stage_outputs
    for branch in (1, 2, 3):
        for stage in ("direction", "animation", "voice-script", "voice-synthesis", "final-assembly"):
            assert f"branch-{branch}/{stage}" in state.stage_outputs
    final = state.stage_outputs["branch-2/final-assembly"]
    assert final["final_video"] == state.artifacts[1].final_video


@pytest.mark.asyncio
async def test_inline_stages_use_collaborators(harness):
    state = await harness.orchestrator().run("gravity")

    assert len(harness.synthesizer.calls) == 3
    segments, audio_dir = harness.synthesizer.calls[0]
    assert segments[0].text == "Hello world"
    assert audio_dir.parts[-3:] == (state.run_id, "branch-1", "audio")

    video, audio, name = harness.assembler.calls[0]
    assert video == "/render/Idea 1.mp4"
    assert audio.endswith("combined_narration.mp3")
    assert name.endswith("_1")


@pytest.mark.asyncio
async def test_stage_inputs_only_contain_declared_names(harness):
    await harness.orchestrator().run("gravity")

    assert set(harness.calls("director-agent")[0]) == {"selected_idea", "video_duration"}
    assert set(harness.calls("voice-agent")[0]) == {"scene_plan", "animation_code"}
    coding = harness.calls("coding-agent")[0]
    assert coding["fps"] == 60
    assert coding["resolution"] == {"width": 1920, "height": 1080}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_lifecycle_events(harness):
    await harness.orchestrator().run("gravity")
    types = harness.event_types()

    assert types[0] == "run:start"
    assert types[-1] == "run:complete"
    assert types.count("branch:start") == 3
    assert types.count("branch:complete") == 3
    assert types.index("stage:start") < types.index("stage:complete")


@pytest.mark.asyncio
async def test_failing_observer_does_not_affect_run(harness):
    def bad_observer(event):
        raise RuntimeError("display broke")

    harness.events.subscribe(bad_observer)
    state = await harness.orchestrator().run("gravity")

    assert state.status == "completed"


# ---------------------------------------------------------------------------
# Persistence, cancellation, resume
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_state_persisted_for_failed_run(harness):
    harness.set_handler("ideation-agent", raising("x"))
    state = await harness.orchestrator().run("gravity")

    loaded = harness.store.load(state.run_id)
    assert loaded.status == "failed"
    assert serialize_state(loaded) == serialize_state(state)


@pytest.mark.asyncio
async def test_incremental_checkpoints(harness):
    orchestrator = harness.orchestrator(checkpoint=True)
    state = await orchestrator.run("gravity")

    loaded = harness.store.load(state.run_id)
    assert loaded.status == "completed"
    assert len(loaded.artifacts) == 3


@pytest.mark.asyncio
async def test_cancel_stops_before_next_stage(harness):
    orchestrator = harness.orchestrator()

    def ideation_then_cancel(inputs):
        orchestrator.cancel()
        return {"ideas": [{"title": "Only"}]}

    harness.set_handler("ideation-agent", ideation_then_cancel)
    state = await orchestrator.run("gravity")

    assert state.status == "cancelled"
    assert harness.calls("director-agent") == []
    assert harness.store.load(state.run_id).status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_inside_failing_stage_is_not_retried(harness):
    orchestrator = harness.orchestrator()

    def cancel_then_fail(inputs):
        orchestrator.cancel()
        raise RuntimeError("render failed")

    harness.set_handler("coding-agent", cancel_then_fail)
    state = await orchestrator.run("gravity")

    assert state.status == "cancelled"
    assert len(harness.calls("coding-agent")) == 1
    assert "stage:retry" not in harness.event_types()


@pytest.mark.asyncio
async def test_resume_reuses_ideas(harness):
    harness.set_handler("coding-agent", raising("x"))
    orchestrator = harness.orchestrator()
    failed = await orchestrator.run("gravity")
    assert failed.status == "failed"

    harness.set_handler("coding-agent", coding_handler)
    resumed = await orchestrator.resume(harness.store.load(failed.run_id))

    assert resumed.status == "completed"
    assert resumed.run_id != failed.run_id
    assert resumed.resumed_from == failed.run_id
    assert resumed.topic == "gravity"
    assert len(harness.calls("ideation-agent")) == 1
    assert resumed.stage_outputs["ideation"] == failed.stage_outputs["ideation"]
    # The failed run's file is untouched history
    assert harness.store.load(failed.run_id).status == "failed"


@pytest.mark.asyncio
async def test_resume_rejects_completed_run(harness):
    orchestrator = harness.orchestrator()
    state = await orchestrator.run("gravity")

    with pytest.raises(ValueError):
        await orchestrator.resume(state)


@pytest.mark.asyncio
async def test_resume_without_ideas_starts_from_ideation(harness):
    previous = RunState(pipeline_id="educational-video-pipeline", topic="optics")
    previous.finish("failed")

    state = await harness.orchestrator().resume(previous)

    assert state.status == "completed"
    assert harness.calls("ideation-agent") == [{"topic": "optics"}]


# ---------------------------------------------------------------------------
# Parallel branches
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_parallel_branches_respect_concurrency(harness):
    active = 0
    peak = 0

    async def slow_direction(inputs):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return {
            "scene_plan": {
                "overall_structure": {"title": inputs["selected_idea"]["title"]},
                "scenes": [],
            }
        }

    harness.set_handler("director-agent", slow_direction)
    harness.set_handler("coding-agent", failing_for("Idea 2"))
    definition = make_definition(
        {
            "output_dir": str(harness.tmp_path / "out"),
            "parallel_branches": True,
            "branch_concurrency": 2,
        }
    )
    state = await harness.orchestrator(definition).run("gravity")

    assert state.status == "completed"
    assert peak == 2
    assert sorted(a.branch for a in state.artifacts) == [1, 3]
    assert len(state.errors) == 1
    assert state.errors[0].branch == 2


@pytest.mark.asyncio
async def test_interactive_selection(harness):
    async def pick_second_and_fifth(candidates):
        assert len(candidates) == 5
        return [1, 4]

    state = await harness.orchestrator(selector=pick_second_and_fifth).run("gravity")

    assert sorted(a.branch for a in state.artifacts) == [2, 5]
    assert sorted(a.title for a in state.artifacts) == ["Idea 2", "Idea 5"]


def test_registry_is_read_only(harness):
    registry = CapabilityRegistry(harness.capabilities)
    harness.capabilities["extra"] = object()
    assert "extra" not in registry


@pytest.mark.asyncio
async def test_run_pipeline_rejects_invalid_configuration():
    with pytest.raises(ConfigurationError) as exc_info:
        await run_pipeline(
            "gravity",
            overrides={"video": {"fps": 0}},
            settings=Settings(),
        )
    assert "Video FPS must be between 1 and 120" in exc_info.value.errors
