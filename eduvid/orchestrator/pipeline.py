"""Main pipeline orchestrator.

Coordinates one run of the educational video pipeline:
- Ideation stage, then fan-out over the selected candidates
- Inline narration synthesis and final assembly stages
- Run-level terminal status: completed iff at least one artifact
- Cancellation checked before every stage
- Unconditional persistence of the final Run State
- Resume of a failed or cancelled run without repeating ideation

``run`` never raises; callers inspect the returned RunState.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from eduvid.config import Settings, load_pipeline_definition
from eduvid.orchestrator.branches import BranchController, CandidateSelector
from eduvid.orchestrator.errors import ConfigurationError, EduvidError, PipelineCancelled
from eduvid.orchestrator.events import EventBus
from eduvid.orchestrator.executor import StageExecutor
from eduvid.orchestrator.registry import CapabilityRegistry, build_registry
from eduvid.orchestrator.state import RunState, StateWriter, can_resume, get_resume_point
from eduvid.orchestrator.store import RunStateStore
from eduvid.orchestrator.validation import ensure_valid
from eduvid.schemas.content import VoiceScript
from eduvid.schemas.pipeline import PipelineDefinition, StageSpec
from eduvid.services.assembler import VideoAssembler
from eduvid.services.file_manager import FileManager
from eduvid.services.tts import NarrationSynthesizer

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs a validated PipelineDefinition against a CapabilityRegistry.

    The constructor creates the Run State (status "running"); each call to
    ``run`` or ``resume`` after the first starts a fresh one.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        registry: CapabilityRegistry,
        *,
        settings: Optional[Settings] = None,
        files: Optional[FileManager] = None,
        store: Optional[RunStateStore] = None,
        events: Optional[EventBus] = None,
        selector: Optional[CandidateSelector] = None,
        synthesizer: Optional[NarrationSynthesizer] = None,
        assembler: Optional[VideoAssembler] = None,
        checkpoint: bool = False,
    ):
        self.settings = settings or Settings()
        self.definition = definition
        self.registry = registry
        self.files = files or FileManager(self.settings.storage.working_dir)
        self.store = store or RunStateStore(self.files.base_dir)
        self.events = events or EventBus()
        self.selector = selector
        self.synthesizer = synthesizer or NarrationSynthesizer(
            self.settings.tts, self.settings.providers
        )
        self.assembler = assembler or VideoAssembler(
            definition.output_dir, self.settings.assembly
        )
        self.checkpoint = checkpoint

        self.inline_handlers = {
            "voice-synthesis": self._synthesize_narration,
            "final-assembly": self._assemble_video,
        }
        ensure_valid(definition, self.inline_handlers)
        self._check_registry()

        self._cancel_event = asyncio.Event()
        self._started = False
        self.state = RunState(pipeline_id=definition.id)

    def _check_registry(self) -> None:
        missing = [
            f"Stage '{stage.id}' references capability '{stage.capability}' "
            f"that the registry does not hold"
            for stage in self.definition.stages
            if not stage.is_inline and stage.capability not in self.registry
        ]
        if missing:
            raise ConfigurationError(missing)

    def cancel(self) -> None:
        """Ask the current run to stop before its next stage."""
        logger.info(f"Run {self.state.run_id}: cancellation requested")
        self._cancel_event.set()

    def _fresh_state(self, topic: str, resumed_from: Optional[str] = None) -> RunState:
        if self._started:
            self.state = RunState(pipeline_id=self.definition.id)
            self._cancel_event = asyncio.Event()
        self._started = True
        self.state.topic = topic
        self.state.resumed_from = resumed_from
        return self.state

    async def run(self, topic: str) -> RunState:
        """Run the full pipeline for ``topic`` and return the terminal Run State."""
        state = self._fresh_state(topic)
        return await self._execute(state)

    async def resume(self, previous: RunState) -> RunState:
        """Start a new run that continues a failed or cancelled one.

        Ideation output recorded by ``previous`` is reused so the new run
        goes straight to candidate selection; without it the new run starts
        from ideation.

        Raises:
            ValueError: If ``previous`` completed or is still running.
        """
        if not can_resume(previous):
            raise ValueError(f"Run {previous.run_id} is {previous.status} and cannot be resumed")

        state = self._fresh_state(previous.topic, resumed_from=previous.run_id)
        ideas = None
        if get_resume_point(previous, self.definition.ideation_stage) == "branches":
            ideas = previous.stage_outputs[self.definition.ideation_stage]
            # Seeded before the writer exists; the run is not visible yet
            state.record_output(self.definition.ideation_stage, ideas)
        logger.info(
            f"Run {state.run_id}: resuming {previous.run_id} "
            f"({'from branch selection' if ideas else 'from ideation'})"
        )
        return await self._execute(state, seeded=ideas is not None)

    async def _execute(self, state: RunState, seeded: bool = False) -> RunState:
        writer = StateWriter(state, checkpoint=self.store.save_async if self.checkpoint else None)
        executor = StageExecutor(
            self.definition,
            self.registry,
            writer,
            self.events,
            inline_handlers=self.inline_handlers,
            cancel_event=self._cancel_event,
        )
        branches = BranchController(
            self.definition, executor, writer, self.events, selector=self.selector
        )

        run_start = time.monotonic()
        logger.info(f"Run {state.run_id}: starting pipeline {self.definition.id} for '{state.topic}'")
        self.events.emit(
            "run:start",
            state.run_id,
            data={"topic": state.topic, "pipeline": self.definition.id, "resumed_from": state.resumed_from},
        )

        try:
            status = await self._run_stages(state, writer, executor, branches, seeded)
        except PipelineCancelled as e:
            logger.info(f"Run {state.run_id}: cancelled at stage {state.current_stage or 'start'}")
            await writer.record_error(state.current_stage or "run", str(e))
            status = "cancelled"
        except Exception as e:
            # Includes StageNotFound / CapabilityNotFound: the run ends, the caller gets a state
            logger.exception(f"Run {state.run_id}: failed at stage {state.current_stage or 'start'}")
            kind = "" if isinstance(e, EduvidError) else f"{type(e).__name__}: "
            await writer.record_error(state.current_stage or "run", f"{kind}{e}")
            status = "failed"

        state.finish(status)
        elapsed = time.monotonic() - run_start
        logger.info(
            f"Run {state.run_id}: {status} in {elapsed:.2f}s with {len(state.artifacts)} artifact(s)"
        )

        await self._persist(state)

        if status == "completed":
            self.events.emit(
                "run:complete",
                state.run_id,
                data={"status": status, "artifacts": [a.final_video for a in state.artifacts]},
            )
        else:
            last_error = state.errors[-1].message if state.errors else status
            self.events.emit("run:error", state.run_id, data={"status": status, "error": last_error})
        return state

    async def _run_stages(
        self,
        state: RunState,
        writer: StateWriter,
        executor: StageExecutor,
        branches: BranchController,
        seeded: bool,
    ) -> str:
        ideation_id = self.definition.ideation_stage
        if seeded:
            ideas = state.stage_outputs[ideation_id].get("ideas") or []
        else:
            seeds = dict(self.definition.seed_values(), topic=state.topic)
            stage = executor.get_stage(ideation_id)
            inputs = {name: seeds.get(name) for name in stage.inputs}
            result = await executor.run_stage(ideation_id, inputs)
            if not result.success:
                logger.error(f"Run {state.run_id}: ideation failed, no branches will run")
                return "failed"
            ideas = result.outputs.get("ideas") or []

        selected = await branches.select_candidates(list(ideas))
        artifacts = await branches.run_all(selected, state.topic)

        if not artifacts:
            await writer.record_error(
                "run",
                f"No branch produced a final video ({len(selected)} branch(es) attempted)",
            )
            return "failed"
        return "completed"

    async def _persist(self, state: RunState) -> Optional[Path]:
        try:
            path = await self.store.save_async(state)
        except Exception as e:
            logger.error(f"Run {state.run_id}: could not persist run state: {e}")
            return None
        logger.info(f"Run {state.run_id}: state saved to {path}")
        return path

    async def _synthesize_narration(
        self, stage: StageSpec, inputs: Dict[str, Any], branch: Optional[int]
    ) -> Dict[str, Any]:
        script = VoiceScript.model_validate(inputs["voice_script"])
        audio_dir = self.files.get_audio_dir(self.state.run_id, branch or 0)
        result = await self.synthesizer.synthesize(script.segments, audio_dir)
        return {"audio_file": result.audio_file, "segment_durations": result.segment_durations}

    async def _assemble_video(
        self, stage: StageSpec, inputs: Dict[str, Any], branch: Optional[int]
    ) -> Dict[str, Any]:
        branch_index = inputs.get("branch_index", branch)
        output_name = f"video_{self.state.run_id[:8]}_{branch_index}"
        result = await self.assembler.assemble(
            inputs["video_file"], inputs["audio_file"], output_name
        )
        return {
            "final_video": result.final_video,
            "duration": result.duration,
            "file_size": result.file_size,
            "metadata": result.metadata,
        }


async def run_pipeline(
    topic: str,
    *,
    config_path: Optional[str | Path] = None,
    preset: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
    events: Optional[EventBus] = None,
    selector: Optional[CandidateSelector] = None,
) -> RunState:
    """Load configuration, build capabilities and run the pipeline once.

    Raises:
        ConfigurationError: If the merged configuration is invalid; nothing runs.
    """
    settings = settings or Settings()
    definition = load_pipeline_definition(
        config_path, preset=preset, overrides=overrides, settings=settings
    )
    files = FileManager(settings.storage.working_dir)
    registry = build_registry(definition, files)
    orchestrator = Orchestrator(
        definition, registry, settings=settings, files=files, events=events, selector=selector
    )
    return await orchestrator.run(topic)
