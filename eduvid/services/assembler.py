"""Final assembly: mux the rendered animation with the narration track.

The audio is padded with silence when the video is longer and cut when
it is longer than the video, so the final artifact always runs for the
video's duration.
"""

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from eduvid.config import AssemblyConfig
from eduvid.orchestrator.errors import EduvidError
from eduvid.services.media import probe_duration, probe_video_metadata, run_ffmpeg

logger = logging.getLogger(__name__)

# Durations closer than this are treated as equal
DURATION_TOLERANCE = 0.1


class AssemblyError(EduvidError):
    """Raised when the final video cannot be assembled."""


class AssemblyResult(BaseModel):
    final_video: str
    duration: float
    file_size: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VideoAssembler:
    """Combine one video file and one audio file into the final artifact."""

    def __init__(self, output_dir: str | Path, config: Optional[AssemblyConfig] = None):
        self.output_dir = Path(output_dir)
        self.config = config or AssemblyConfig()

    async def assemble(
        self, video_path: str | Path, audio_path: str | Path, output_name: str
    ) -> AssemblyResult:
        """Mux ``video_path`` and ``audio_path`` into ``{output_name}.{format}``.

        Raises:
            AssemblyError: If either input does not exist or ffmpeg fails
        """
        video_path = Path(video_path)
        audio_path = Path(audio_path)

        # Check both inputs before doing any work
        if not video_path.is_file():
            raise AssemblyError(f"Video file not found: {video_path}")
        if not audio_path.is_file():
            raise AssemblyError(f"Audio file not found: {audio_path}")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / f"{output_name}.{self.config.output_format}"

        video_duration = await probe_duration(video_path)
        audio_duration = await probe_duration(audio_path)
        logger.info(
            f"Assembling {output_path.name}: video {video_duration:.2f}s, audio {audio_duration:.2f}s"
        )

        args = self.build_args(video_path, audio_path, output_path, video_duration, audio_duration)
        try:
            await run_ffmpeg(args)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr or "No error output"
            logger.error(f"ffmpeg error while assembling {output_path.name}: {stderr}")
            raise AssemblyError(f"Video assembly failed: {stderr[:500]}") from e

        if not output_path.is_file():
            raise AssemblyError(f"ffmpeg reported success but {output_path} was not written")

        metadata = await probe_video_metadata(output_path)
        metadata["audio_codec"] = self.config.audio_codec
        duration = metadata.pop("duration", 0.0) or video_duration

        logger.info(f"Assembly complete -> {output_path}")
        return AssemblyResult(
            final_video=str(output_path),
            duration=duration,
            file_size=output_path.stat().st_size,
            metadata=metadata,
        )

    def build_args(
        self,
        video_path: Path,
        audio_path: Path,
        output_path: Path,
        video_duration: float,
        audio_duration: float,
    ) -> list[str]:
        """ffmpeg arguments that align the audio track to the video."""
        args = [
            "-i",
            str(video_path),
            "-i",
            str(audio_path),
            "-c:v",
            self.config.video_codec,
            "-c:a",
            self.config.audio_codec,
            "-b:v",
            self.config.video_bitrate,
            "-b:a",
            self.config.audio_bitrate,
        ]
        if abs(video_duration - audio_duration) < DURATION_TOLERANCE:
            args += ["-map", "0:v:0", "-map", "1:a:0"]
        elif video_duration > audio_duration:
            # Video is longer: pad audio with silence
            args += [
                "-filter_complex",
                f"[1:a]apad=whole_dur={video_duration}[a]",
                "-map",
                "0:v:0",
                "-map",
                "[a]",
            ]
        else:
            # Audio is longer: cut it at the video's end
            args += ["-t", f"{video_duration}", "-map", "0:v:0", "-map", "1:a:0"]
        return args + [str(output_path)]
