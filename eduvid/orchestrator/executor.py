"""Stage executor: runs one stage with timeout, bounded retry and timing.

A stage either dispatches to a registered capability or, when its
capability is the "none" sentinel, to an inline handler supplied by the
orchestrator. Every attempt receives a fresh copy of the same input
snapshot. Retries are bounded by the definition's max_stage_retries and
apply only to capability-backed stages that opt in with retry_on_failure.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from eduvid.orchestrator.errors import (
    CapabilityNotFound,
    PipelineCancelled,
    StageNotFound,
    StageOutputMissing,
    StageTimeout,
)
from eduvid.orchestrator.events import EventBus
from eduvid.orchestrator.registry import CapabilityRegistry
from eduvid.orchestrator.state import StateWriter, branch_key
from eduvid.schemas.pipeline import PipelineDefinition, StageSpec

logger = logging.getLogger(__name__)

InlineHandler = Callable[[StageSpec, Dict[str, Any], Optional[int]], Awaitable[Dict[str, Any]]]


class StageResult(BaseModel):
    """Outcome of one stage invocation (all attempts included)."""

    stage_id: str
    success: bool
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration: float
    attempts: int = 1
    branch: Optional[int] = None


class StageExecutor:
    """Runs stages of one pipeline definition against one capability registry."""

    def __init__(
        self,
        definition: PipelineDefinition,
        registry: CapabilityRegistry,
        writer: StateWriter,
        events: EventBus,
        inline_handlers: Optional[Mapping[str, InlineHandler]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.definition = definition
        self.registry = registry
        self._writer = writer
        self._events = events
        self._inline_handlers = dict(inline_handlers or {})
        self._cancel_event = cancel_event

    @property
    def run_id(self) -> str:
        return self._writer.state.run_id

    def get_stage(self, stage_id: str) -> StageSpec:
        stage = self.definition.get_stage(stage_id)
        if stage is None:
            raise StageNotFound(f"Stage not found: {stage_id}")
        return stage

    def max_attempts(self, stage: StageSpec) -> int:
        if stage.retry_on_failure and not stage.is_inline:
            return self.definition.max_stage_retries + 1
        return 1

    def _resolve(
        self, stage: StageSpec, branch: Optional[int] = None
    ) -> Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]:
        if stage.is_inline:
            handler = self._inline_handlers.get(stage.id)
            if handler is None:
                raise CapabilityNotFound(f"No inline handler for stage '{stage.id}'")
            return lambda inputs: handler(stage, inputs, branch)
        return self.registry.get(stage.capability).execute

    async def run_stage(
        self,
        stage_id: str,
        inputs: Mapping[str, Any],
        *,
        branch: Optional[int] = None,
    ) -> StageResult:
        """Run ``stage_id`` with ``inputs`` and record the outcome in run state.

        Raises:
            StageNotFound: If the stage is not in the definition.
            CapabilityNotFound: If its capability or inline handler is missing.
            PipelineCancelled: If cancellation was requested before the stage
                began or while it was running. A cancelled stage is never retried.
        """
        stage = self.get_stage(stage_id)
        invoke = self._resolve(stage, branch)
        self._check_cancelled(stage)

        await self._writer.set_current_stage(stage.id)
        self._events.emit(
            "stage:start",
            self.run_id,
            stage_id=stage.id,
            branch=branch,
            data={"name": stage.name, "inputs": sorted(inputs)},
        )

        snapshot = copy.deepcopy(dict(inputs))
        max_attempts = self.max_attempts(stage)
        attempts = 0
        start = time.monotonic()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_fixed(self.definition.retry_delay),
                retry=retry_if_exception(self._retryable),
                before_sleep=self._retry_notifier(stage, branch),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        # Cancelled while waiting out retry_delay
                        self._check_cancelled(stage, f"before retrying stage '{stage.id}'")
                    outputs = await self._invoke(stage, invoke, copy.deepcopy(snapshot))
        except PipelineCancelled:
            raise
        except Exception as e:
            self._check_cancelled(stage, f"during stage '{stage.id}' ({e})")
            duration = time.monotonic() - start
            message = str(e) or type(e).__name__
            if max_attempts > 1:
                message = f"{message} (gave up after {attempts} attempts)"
            await self._writer.record_error(stage.id, message, branch=branch)
            logger.error(f"Stage {stage.id} failed after {duration:.2f}s: {message}")

            result = StageResult(
                stage_id=stage.id,
                success=False,
                error=message,
                duration=duration,
                attempts=attempts,
                branch=branch,
            )
            self._events.emit(
                "stage:error",
                self.run_id,
                stage_id=stage.id,
                branch=branch,
                data={"error": message, "duration": duration, "attempts": attempts},
            )
            return result

        duration = time.monotonic() - start
        key = branch_key(branch, stage.id) if branch is not None else stage.id
        await self._writer.record_output(key, outputs)
        logger.info(f"Stage {stage.id} completed in {duration:.2f}s")

        result = StageResult(
            stage_id=stage.id,
            success=True,
            outputs=outputs,
            duration=duration,
            attempts=attempts,
            branch=branch,
        )
        self._events.emit(
            "stage:complete",
            self.run_id,
            stage_id=stage.id,
            branch=branch,
            data={"duration": duration, "attempts": attempts, "outputs": sorted(outputs)},
        )
        return result

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _check_cancelled(self, stage: StageSpec, when: Optional[str] = None) -> None:
        if self.cancelled:
            raise PipelineCancelled(f"Run cancelled {when or f'before stage {stage.id!r}'}")

    def _retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, PipelineCancelled) or not isinstance(exc, Exception):
            return False
        return not self.cancelled

    async def _invoke(
        self,
        stage: StageSpec,
        invoke: Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]],
        inputs: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            outputs = await asyncio.wait_for(invoke(inputs), timeout=stage.timeout)
        except asyncio.TimeoutError as e:
            raise StageTimeout(f"Stage '{stage.id}' timed out after {stage.timeout:g}s") from e

        if not isinstance(outputs, Mapping):
            raise TypeError(
                f"Stage '{stage.id}' returned {type(outputs).__name__}, expected a mapping"
            )
        missing = [name for name in stage.outputs if outputs.get(name) is None]
        if missing:
            raise StageOutputMissing(
                f"Stage '{stage.id}' did not produce declared output(s): {', '.join(missing)}"
            )
        return dict(outputs)

    def _retry_notifier(self, stage: StageSpec, branch: Optional[int]):
        def notify(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            error = (str(exc) or type(exc).__name__) if exc else "unknown error"
            logger.warning(
                f"Retrying stage {stage.id} (attempt {retry_state.attempt_number} failed: {error})"
            )
            self._events.emit(
                "stage:retry",
                self.run_id,
                stage_id=stage.id,
                branch=branch,
                data={"attempt": retry_state.attempt_number, "error": error},
            )

        return notify
