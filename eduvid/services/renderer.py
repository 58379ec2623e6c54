"""Manim rendering collaborator.

Renders a generated Manim script to a video file by running the ``manim``
CLI as a child process. Failures raise RenderError carrying the render log
so the animation capability can feed it back to the LLM for a fix.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from eduvid.orchestrator.errors import EduvidError
from eduvid.services.media import run_command

logger = logging.getLogger(__name__)


class RenderError(EduvidError):
    """Rendering failed. ``log`` holds whatever output the renderer produced."""

    def __init__(self, message: str, log: str = ""):
        super().__init__(message)
        self.log = log


class RenderResult(BaseModel):
    video_file: str
    log: str = ""


def quality_flag(width: int) -> str:
    """Manim quality preset for an output width."""
    if width >= 1920:
        return "-qh"
    if width <= 854:
        return "-ql"
    return "-qm"


class ManimRenderer:
    """Render Manim scripts with the ``manim render`` command."""

    def __init__(self, executable: str = "manim", timeout: Optional[float] = None):
        self.executable = executable
        self.timeout = timeout

    def build_command(
        self, code_file: Path, scene_name: str, fps: int, resolution: dict
    ) -> list[str]:
        width = int(resolution["width"])
        height = int(resolution["height"])
        return [
            self.executable,
            "render",
            quality_flag(width),
            "--fps",
            str(fps),
            "-r",
            f"{width},{height}",
            code_file.name,
            scene_name,
        ]

    async def render(
        self,
        code_file: str | Path,
        scene_name: str,
        fps: int,
        resolution: dict,
    ) -> RenderResult:
        """Render ``scene_name`` from ``code_file``.

        The manim process is killed if this coroutine is cancelled or
        ``timeout`` runs out.

        Raises:
            RenderError: If manim exits non-zero or produces no video
        """
        code_file = Path(code_file)
        command = self.build_command(code_file, scene_name, fps, resolution)
        logger.info(f"Rendering {code_file.name}: {' '.join(command)}")
        try:
            result = await run_command(command, cwd=code_file.parent, timeout=self.timeout)
        except FileNotFoundError as e:
            raise RenderError(f"{self.executable} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise RenderError(f"Rendering timed out after {self.timeout}s") from e

        log = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            # The last lines usually carry the traceback
            tail = "\n".join(log.strip().splitlines()[-30:])
            raise RenderError(f"manim exited with status {result.returncode}:\n{tail}", log)

        video = find_rendered_video(code_file)
        if video is None:
            raise RenderError("No video file generated", log)

        logger.info(f"Rendered {video}")
        return RenderResult(video_file=str(video), log=log)


def find_rendered_video(code_file: Path) -> Optional[Path]:
    """Final video manim wrote for ``code_file``, if any."""
    media_dir = code_file.parent / "media" / "videos" / code_file.stem
    videos = sorted(media_dir.rglob("*.mp4")) if media_dir.is_dir() else []
    # Skip partial movie files manim leaves next to the final output
    videos = [v for v in videos if "partial_movie_files" not in v.parts]
    return videos[0] if videos else None
