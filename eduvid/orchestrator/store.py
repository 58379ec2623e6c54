"""Durable storage for run states.

Each run is written to ``{base_dir}/runs/{run_id}/workflow_state.json``.
Serialization is deterministic (sorted keys, fixed indent) so writing an
unchanged state twice yields identical bytes. A file holding a terminal
state is history and is never rewritten with different content.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from eduvid.orchestrator.errors import RunStateFrozen
from eduvid.orchestrator.state import TERMINAL_STATES, RunState

logger = logging.getLogger(__name__)

STATE_FILENAME = "workflow_state.json"


def serialize_state(state: RunState) -> str:
    return json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"


class RunStateStore:
    """Read and write persisted run states under a base directory."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir).resolve()
        self.runs_dir = self.base_dir / "runs"

    def run_dir(self, run_id: str) -> Path:
        run_dir = (self.runs_dir / run_id).resolve()
        if not run_dir.is_relative_to(self.runs_dir):
            raise ValueError(f"Invalid run id: {run_id}")
        return run_dir

    def path_for(self, run_id: str) -> Path:
        return self.run_dir(run_id) / STATE_FILENAME

    def save(self, state: RunState) -> Path:
        """Write ``state`` atomically and return the file path.

        Raises:
            RunStateFrozen: If the file already holds a terminal state with
                different content.
        """
        path = self.path_for(state.run_id)
        content = serialize_state(state)

        if path.exists():
            existing = path.read_text(encoding="utf-8")
            if existing == content:
                return path
            previous_status = json.loads(existing).get("status")
            if previous_status in TERMINAL_STATES:
                raise RunStateFrozen(
                    f"Run {state.run_id} was persisted as {previous_status} and cannot be rewritten"
                )

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(f"Run {state.run_id}: state saved to {path} ({state.status})")
        return path

    async def save_async(self, state: RunState) -> Path:
        # Snapshot first so the thread never sees a half-updated model
        snapshot = state.model_copy(deep=True)
        return await asyncio.to_thread(self.save, snapshot)

    def load(self, run_id_or_path: str | Path) -> RunState:
        """Load a run by id or by explicit path to a state file or run directory."""
        candidate = Path(run_id_or_path)
        if candidate.is_dir():
            candidate = candidate / STATE_FILENAME
        if not candidate.is_file():
            candidate = self.path_for(str(run_id_or_path))
        if not candidate.is_file():
            raise FileNotFoundError(f"No persisted run found for {run_id_or_path}")
        return RunState.model_validate_json(candidate.read_text(encoding="utf-8"))

    def list_runs(self) -> list[RunState]:
        """All persisted runs, newest first."""
        if not self.runs_dir.is_dir():
            return []
        states = []
        for path in self.runs_dir.glob(f"*/{STATE_FILENAME}"):
            try:
                states.append(RunState.model_validate_json(path.read_text(encoding="utf-8")))
            except ValueError as e:
                logger.warning(f"Skipping unreadable run state {path}: {e}")
        states.sort(key=lambda s: s.start_time, reverse=True)
        return states

    def latest(self) -> Optional[RunState]:
        runs = self.list_runs()
        return runs[0] if runs else None
