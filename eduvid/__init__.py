"""eduvid - multi-agent educational video generation pipeline.

This module provides startup validation functions to ensure required
dependencies are available before pipeline execution begins.
Call validate_dependencies() during application startup.
"""

import logging
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Validate required system dependencies are available.

    ffmpeg and ffprobe are needed for narration synthesis and final
    assembly. Call this at startup to fail fast with installation
    instructions instead of failing in the middle of a run.

    Raises:
        RuntimeError: If ffmpeg or ffprobe is not found or not functional.
    """
    for tool in ("ffmpeg", "ffprobe"):
        try:
            result = subprocess.run(
                [tool, "-version"],
                capture_output=True,
                check=True,
                text=True,
            )
            version_line = result.stdout.split("\n")[0]
            logger.info(f"{tool} validated: {version_line}")
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise RuntimeError(
                f"{tool} not found on PATH. Install ffmpeg to use the video generation pipeline.\n"
                "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
                "macOS: brew install ffmpeg\n"
                "Windows: https://ffmpeg.org/download.html"
            ) from e
