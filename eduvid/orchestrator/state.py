"""Run state model, lifecycle constants and resume logic.

A RunState is the single record of one orchestrator invocation. It is
created with status "running", mutated only through StateWriter while the
run is live, and frozen once it reaches a terminal status.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Literal, Optional

from pydantic import BaseModel, Field

from eduvid.orchestrator.errors import RunStateFrozen

logger = logging.getLogger(__name__)

RunStatus = Literal["running", "completed", "failed", "cancelled"]

# Run states and their meaning
RUN_STATES = {
    "running": "Run in progress",
    "completed": "At least one branch delivered an artifact",
    "failed": "Ideation failed, no branch delivered an artifact, or an unexpected error",
    "cancelled": "Run stopped by an external cancellation signal",
}

TERMINAL_STATES = {"completed", "failed", "cancelled"}

# Resume points for a new run seeded from a persisted one
RESUME_POINTS = {
    "ideation": "No usable candidates; the new run starts from ideation",
    "branches": "Ideation candidates exist; the new run starts at branch selection",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def branch_key(branch_index: int, stage_id: str) -> str:
    """Key under which a branch-local stage output is recorded."""
    return f"branch-{branch_index}/{stage_id}"


class ErrorRecord(BaseModel):
    stage: str
    message: str
    timestamp: datetime
    branch: Optional[int] = None


class Artifact(BaseModel):
    """Final output delivered by one successful branch."""

    branch: int
    title: str
    final_video: str
    duration: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    critique: Optional[Dict[str, Any]] = None


class RunState(BaseModel):
    """Mutable record of one pipeline execution."""

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pipeline_id: str
    topic: str = ""
    current_stage: str = ""
    stage_outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    errors: list[ErrorRecord] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    status: RunStatus = "running"
    resumed_from: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def _ensure_live(self) -> None:
        if self.is_terminal:
            raise RunStateFrozen(
                f"Run {self.run_id} is {self.status} and can no longer be modified"
            )

    def record_output(self, key: str, outputs: Dict[str, Any]) -> None:
        """Record a stage's outputs. Keys are write-once."""
        self._ensure_live()
        if key in self.stage_outputs:
            raise ValueError(f"Outputs for '{key}' already recorded in run {self.run_id}")
        self.stage_outputs[key] = dict(outputs)

    def record_error(self, stage: str, message: str, branch: Optional[int] = None) -> ErrorRecord:
        self._ensure_live()
        record = ErrorRecord(stage=stage, message=message, timestamp=utcnow(), branch=branch)
        self.errors.append(record)
        return record

    def add_artifact(self, artifact: Artifact) -> None:
        self._ensure_live()
        self.artifacts.append(artifact)

    def finish(self, status: RunStatus) -> None:
        """Move to a terminal status. Allowed exactly once."""
        if status not in TERMINAL_STATES:
            raise ValueError(f"'{status}' is not a terminal status")
        self._ensure_live()
        self.status = status
        self.end_time = utcnow()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class StateWriter:
    """Serialized funnel for every Run State mutation.

    Branches running concurrently all write through the same writer, so
    the append-only error list and write-once output mapping stay
    consistent. An optional checkpoint callback persists the state after
    each mutation.
    """

    def __init__(
        self,
        state: RunState,
        checkpoint: Optional[Callable[[RunState], Awaitable[None]]] = None,
    ):
        self.state = state
        self._lock = asyncio.Lock()
        self._checkpoint = checkpoint

    async def set_current_stage(self, stage_id: str) -> None:
        async with self._lock:
            self.state._ensure_live()
            self.state.current_stage = stage_id

    async def record_output(self, key: str, outputs: Dict[str, Any]) -> None:
        async with self._lock:
            self.state.record_output(key, outputs)
            await self._save()

    async def record_error(
        self, stage: str, message: str, branch: Optional[int] = None
    ) -> ErrorRecord:
        async with self._lock:
            record = self.state.record_error(stage, message, branch=branch)
            await self._save()
            return record

    async def add_artifact(self, artifact: Artifact) -> None:
        async with self._lock:
            self.state.add_artifact(artifact)
            await self._save()

    async def _save(self) -> None:
        if self._checkpoint is None:
            return
        try:
            await self._checkpoint(self.state)
        except Exception as e:
            # Incremental checkpoints are best effort; the final save is not
            logger.warning(f"Run {self.state.run_id}: checkpoint failed: {e}")


def get_resume_point(previous: RunState, ideation_stage: str = "ideation") -> str:
    """Determine where a new run seeded from ``previous`` should start.

    Args:
        previous: A persisted run state (any status)
        ideation_stage: Id of the ideation stage in the definition

    Returns:
        "branches" when the previous run recorded ideation candidates,
        otherwise "ideation".

    Examples:
        >>> get_resume_point(RunState(pipeline_id="p"))
        'ideation'
    """
    outputs = previous.stage_outputs.get(ideation_stage) or {}
    if outputs.get("ideas"):
        return "branches"
    return "ideation"


def can_resume(previous: RunState) -> bool:
    """Only finished runs that did not complete are worth resuming."""
    return previous.status in ("failed", "cancelled")
