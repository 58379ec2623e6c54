"""Branch controller: fan ideation candidates out into independent branches.

Each selected candidate runs the post-ideation stages in definition order.
A branch keeps its intermediate outputs in a local context; the only
shared state is the Run State, written through the StateWriter. A stage
failure ends that branch without touching its siblings.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from eduvid.orchestrator.errors import CapabilityNotFound, PipelineCancelled, StageNotFound
from eduvid.orchestrator.events import EventBus
from eduvid.orchestrator.executor import StageExecutor
from eduvid.orchestrator.state import Artifact, StateWriter
from eduvid.orchestrator.validation import FINAL_OUTPUT
from eduvid.schemas.pipeline import PipelineDefinition

logger = logging.getLogger(__name__)

# Errors that mean the pipeline itself is broken or the run is over
FATAL_ERRORS = (StageNotFound, CapabilityNotFound, PipelineCancelled)

# Receives every candidate, returns zero-based indices of the chosen ones
CandidateSelector = Callable[[Sequence[Dict[str, Any]]], Awaitable[Sequence[int]]]


def parse_selection(text: str, count: int) -> list[int]:
    """Parse a selection such as ``"1,3,5"``, ``"2-4"`` or ``"all"``.

    Numbers are 1-based as shown to the user; the result is zero-based,
    deduplicated and in the order given.

    Raises:
        ValueError: On anything that is not a valid selection.

    Examples:
        >>> parse_selection("1,3", 5)
        [0, 2]
        >>> parse_selection("all", 3)
        [0, 1, 2]
    """
    text = text.strip().lower()
    if text in ("all", "*"):
        return list(range(count))

    indices: list[int] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_text, _, end_text = part.partition("-")
            numbers = range(int(start_text), int(end_text) + 1)
        else:
            numbers = range(int(part), int(part) + 1)
        for number in numbers:
            if not 1 <= number <= count:
                raise ValueError(f"Selection {number} is out of range 1-{count}")
            if number - 1 not in indices:
                indices.append(number - 1)

    if not indices:
        raise ValueError("No ideas selected")
    return indices


class BranchController:
    """Select candidates and run one branch per selection."""

    def __init__(
        self,
        definition: PipelineDefinition,
        executor: StageExecutor,
        writer: StateWriter,
        events: EventBus,
        selector: Optional[CandidateSelector] = None,
    ):
        self.definition = definition
        self.executor = executor
        self._writer = writer
        self._events = events
        self._selector = selector

    @property
    def run_id(self) -> str:
        return self._writer.state.run_id

    async def select_candidates(
        self, candidates: Sequence[Dict[str, Any]]
    ) -> list[tuple[int, Dict[str, Any]]]:
        """Pick the candidates to branch on.

        Non-interactive: the first ``branch_limit`` candidates. Interactive:
        whatever the selector returns.

        Returns:
            (branch index, candidate) pairs; the branch index is the
            candidate's 1-based position in ``candidates``.
        """
        if self._selector is None:
            indices = list(range(min(self.definition.branch_limit, len(candidates))))
        else:
            indices = list(await self._selector(candidates))
            for index in indices:
                if not 0 <= index < len(candidates):
                    raise ValueError(f"Selected candidate {index + 1} does not exist")

        logger.info(f"Run {self.run_id}: selected {len(indices)} of {len(candidates)} candidates")
        return [(index + 1, candidates[index]) for index in indices]

    def _branch_context(self, branch: int, candidate: Dict[str, Any], topic: str) -> Dict[str, Any]:
        context = dict(self.definition.seed_values())
        context.update(topic=topic, selected_idea=candidate, branch_index=branch)
        return context

    async def run_branch(
        self, branch: int, candidate: Dict[str, Any], topic: str
    ) -> Optional[Artifact]:
        """Run every branch stage for one candidate.

        Returns:
            The branch's artifact, or None when any stage failed.

        Raises:
            StageNotFound, CapabilityNotFound, PipelineCancelled: These end
                the whole run, not just the branch.
        """
        title = f"Idea {branch}"
        if isinstance(candidate, Mapping):
            title = str(candidate.get("title") or title)
        self._events.emit("branch:start", self.run_id, branch=branch, data={"title": title})
        stage_id = ""

        try:
            if not isinstance(candidate, Mapping):
                raise TypeError(f"candidate is {type(candidate).__name__}, expected a mapping")
            context = self._branch_context(branch, candidate, topic)
            for stage in self.definition.branch_stages():
                stage_id = stage.id
                inputs = {name: context.get(name) for name in stage.inputs}
                result = await self.executor.run_stage(stage.id, inputs, branch=branch)
                if not result.success:
                    self._events.emit(
                        "branch:failed",
                        self.run_id,
                        stage_id=stage.id,
                        branch=branch,
                        data={"title": title, "error": result.error},
                    )
                    return None
                context.update(result.outputs or {})

            artifact = Artifact(
                branch=branch,
                title=title,
                final_video=str(context[FINAL_OUTPUT]),
                duration=float(context.get("duration") or 0.0),
                metadata=dict(context.get("metadata") or {}),
            )
            if self.definition.enable_critique:
                artifact.critique = await self.run_critique(branch, context)

            await self._writer.add_artifact(artifact)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            # Anything else stays inside this branch
            message = f"Branch {branch} failed unexpectedly: {e}"
            logger.exception(message)
            await self._writer.record_error(stage_id or "branch", message, branch=branch)
            self._events.emit(
                "branch:failed",
                self.run_id,
                stage_id=stage_id or None,
                branch=branch,
                data={"title": title, "error": str(e)},
            )
            return None

        self._events.emit(
            "branch:complete",
            self.run_id,
            branch=branch,
            data={"title": title, "final_video": artifact.final_video},
        )
        return artifact

    async def run_critique(self, branch: int, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Review a finished branch. Failure is reported, never fatal to the branch."""
        stage = self.executor.get_stage(self.definition.critique_stage)
        inputs = {name: context.get(name) for name in stage.inputs}
        result = await self.executor.run_stage(stage.id, inputs, branch=branch)
        if not result.success:
            logger.warning(f"Run {self.run_id}: critique of branch {branch} failed: {result.error}")
            self._events.emit(
                "critique:error",
                self.run_id,
                stage_id=stage.id,
                branch=branch,
                data={"error": result.error},
            )
            return None

        critique = (result.outputs or {}).get("critique")
        self._events.emit(
            "critique:complete",
            self.run_id,
            stage_id=stage.id,
            branch=branch,
            data={"critique": critique},
        )
        return critique

    async def run_all(
        self, selected: Sequence[tuple[int, Dict[str, Any]]], topic: str
    ) -> list[Artifact]:
        """Run every selected branch and return the artifacts that were produced.

        Branches run one after another unless the definition enables
        parallel_branches, in which case at most branch_concurrency run at
        once. A fatal error cancels the branches still running.
        """
        if not self.definition.parallel_branches:
            artifacts = []
            for branch, candidate in selected:
                artifact = await self.run_branch(branch, candidate, topic)
                if artifact is not None:
                    artifacts.append(artifact)
            return artifacts

        semaphore = asyncio.Semaphore(self.definition.branch_concurrency)

        async def bounded(branch: int, candidate: Dict[str, Any]) -> Optional[Artifact]:
            async with semaphore:
                return await self.run_branch(branch, candidate, topic)

        tasks = [asyncio.create_task(bounded(b, c)) for b, c in selected]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [artifact for artifact in results if artifact is not None]
