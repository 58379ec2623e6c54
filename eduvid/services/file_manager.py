"""
File management service for eduvid.

Handles structured filesystem artifact storage with path traversal protection.
Capabilities write reference artifacts under their own directory; each run
gets a directory with one subdirectory per branch.
"""
import re
from pathlib import Path

from eduvid.config import settings


def sanitize_filename(name: str) -> str:
    """Lowercase ``name`` and replace anything but letters and digits with '_'."""
    return re.sub(r"[^a-z0-9]", "_", name.lower()) or "untitled"


class FileManager:
    """
    Manage filesystem artifacts for pipeline runs.

    Creates structured directories:
    - {base_dir}/{capability_id}/ - Reference artifacts written by a capability
    - {base_dir}/runs/{run_id}/branch-{n}/audio/ - Synthesized narration

    Implements path traversal protection to prevent directory escape attacks.
    """

    def __init__(self, base_dir: str | Path | None = None):
        """
        Initialize FileManager with base directory.

        Args:
            base_dir: Root directory for all run artifacts.
                     If None, uses settings.storage.working_dir
        """
        if base_dir is None:
            base_dir = settings.storage.working_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _safe_join(self, *parts: str) -> Path:
        path = self.base_dir.joinpath(*parts).resolve()
        if not path.is_relative_to(self.base_dir):
            raise ValueError(f"Invalid artifact path: {'/'.join(parts)}")
        return path

    def get_capability_dir(self, capability_id: str) -> Path:
        """
        Get or create the working directory scoped to one capability.

        Raises:
            ValueError: If capability_id resolves outside base_dir
        """
        capability_dir = self._safe_join(capability_id)
        capability_dir.mkdir(parents=True, exist_ok=True)
        return capability_dir

    def get_branch_dir(self, run_id: str, branch_index: int) -> Path:
        """
        Get or create a branch directory with subdirectories.

        Creates:
        - {base_dir}/runs/{run_id}/branch-{n}/
        - {base_dir}/runs/{run_id}/branch-{n}/audio/
        """
        branch_dir = self._safe_join("runs", run_id, f"branch-{branch_index}")
        branch_dir.mkdir(parents=True, exist_ok=True)
        (branch_dir / "audio").mkdir(exist_ok=True)
        return branch_dir

    def get_audio_dir(self, run_id: str, branch_index: int) -> Path:
        return self.get_branch_dir(run_id, branch_index) / "audio"

    def save_text(self, capability_id: str, filename: str, content: str) -> Path:
        """
        Save a text artifact under a capability's directory.

        Args:
            capability_id: Id of the capability writing the artifact
            filename: Path relative to the capability directory
            content: Text to write

        Returns:
            Path to saved file
        """
        capability_dir = self.get_capability_dir(capability_id)
        filepath = (capability_dir / filename).resolve()
        if not filepath.is_relative_to(capability_dir):
            raise ValueError(f"Invalid artifact path: {filename}")

        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(content, encoding="utf-8")
        return filepath
