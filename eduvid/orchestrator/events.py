"""Event bus for stage and run lifecycle notifications.

The orchestrator publishes events here and never talks to a console or
progress display directly. Observers (the CLI reporter, log_event, tests)
subscribe with a plain callable.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import BaseModel, Field

from eduvid.orchestrator.state import utcnow

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "run:start",
    "run:complete",
    "run:error",
    "stage:start",
    "stage:complete",
    "stage:retry",
    "stage:error",
    "branch:start",
    "branch:complete",
    "branch:failed",
    "critique:complete",
    "critique:error",
}


class PipelineEvent(BaseModel):
    type: str
    run_id: str
    stage_id: Optional[str] = None
    branch: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


EventHandler = Callable[[PipelineEvent], None]


class EventBus:
    """Synchronous publish/subscribe channel for PipelineEvents."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventHandler, Optional[frozenset[str]]]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[str]] = None,
    ) -> Callable[[], None]:
        """Register ``handler`` for all events or only ``event_types``.

        Returns a callable that removes the subscription.
        """
        types = frozenset(event_types) if event_types is not None else None
        if types is not None:
            unknown = types - EVENT_TYPES
            if unknown:
                raise ValueError(f"Unknown event types: {sorted(unknown)}")
        entry = (handler, types)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: PipelineEvent) -> None:
        for handler, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event observer failed while handling {event.type}")

    def emit(self, event_type: str, run_id: str, **fields: Any) -> PipelineEvent:
        """Build and publish an event in one call."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        event = PipelineEvent(type=event_type, run_id=run_id, **fields)
        self.publish(event)
        return event


def log_event(event: PipelineEvent) -> None:
    """Observer that mirrors lifecycle events into the logging system."""
    where = event.stage_id or "run"
    if event.branch is not None:
        where = f"branch {event.branch}: {where}"

    if event.type == "stage:complete":
        logger.info(f"[{event.run_id[:8]}] {where} completed in {event.data.get('duration', 0):.2f}s")
    elif event.type == "stage:retry":
        logger.warning(
            f"[{event.run_id[:8]}] {where} attempt {event.data.get('attempt')} failed, retrying: "
            f"{event.data.get('error')}"
        )
    elif event.type in ("stage:error", "branch:failed", "run:error", "critique:error"):
        logger.error(f"[{event.run_id[:8]}] {event.type} {where}: {event.data.get('error')}")
    else:
        logger.info(f"[{event.run_id[:8]}] {event.type} {where}")
