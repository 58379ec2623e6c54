"""Child process, ffprobe and ffmpeg helpers shared by rendering, narration
synthesis and assembly.

Every command runs through run_command, which kills the child when the
awaiting task is cancelled. A stage timeout cancels its capability through
asyncio.wait_for, so a timed-out stage never leaves a render or an ffmpeg
job running behind it.
"""

import asyncio
import json
import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


async def run_command(
    command: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    timeout: Optional[float] = None,
    check: bool = False,
) -> subprocess.CompletedProcess:
    """Run ``command`` and capture its output as text.

    Raises:
        FileNotFoundError: If the executable does not exist
        subprocess.TimeoutExpired: If ``timeout`` expires (the child is killed)
        subprocess.CalledProcessError: On a non-zero exit status when ``check`` is set
    """
    command = [str(part) for part in command]
    proc = await asyncio.create_subprocess_exec(
        *command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        await _kill(proc, command[0])
        raise subprocess.TimeoutExpired(command, timeout) from e
    except asyncio.CancelledError:
        await _kill(proc, command[0])
        raise

    result = subprocess.CompletedProcess(
        command,
        proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode, command, output=result.stdout, stderr=result.stderr
        )
    return result


async def _kill(proc: asyncio.subprocess.Process, name: str) -> None:
    if proc.returncode is not None:
        return
    logger.warning(f"Killing {name} (pid {proc.pid})")
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_ffmpeg(args: list[str]) -> None:
    """Run ffmpeg with ``args``, overwriting outputs.

    Raises:
        subprocess.CalledProcessError: On a non-zero exit status
    """
    await run_command(["ffmpeg", "-y", "-loglevel", "error", *args], check=True)


async def probe_duration(path: str | Path) -> float:
    """Container duration of a media file in seconds (0.0 if unknown)."""
    try:
        result = await run_command(
            [
                "ffprobe",
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            check=True,
        )
        return float(result.stdout.strip())
    except (subprocess.CalledProcessError, ValueError) as e:
        logger.warning(f"Could not determine duration of {path}: {e}")
        return 0.0


async def probe_video_metadata(path: str | Path) -> dict:
    """Codec, resolution, fps and duration of the first video stream."""
    try:
        result = await run_command(
            [
                "ffprobe",
                "-v",
                "error",
                "-select_streams",
                "v:0",
                "-show_entries",
                "stream=codec_name,width,height,r_frame_rate",
                "-show_entries",
                "format=duration",
                "-of",
                "json",
                str(path),
            ],
            check=True,
        )
        data = json.loads(result.stdout)
        stream = data["streams"][0]
        num, _, den = stream.get("r_frame_rate", "0/1").partition("/")
        fps = float(num) / float(den) if den and float(den) else float(num or 0)
        return {
            "duration": float(data["format"]["duration"]),
            "video_codec": stream.get("codec_name", "unknown"),
            "resolution": f"{stream.get('width')}x{stream.get('height')}",
            "fps": round(fps),
        }
    except (subprocess.CalledProcessError, ValueError, KeyError, IndexError) as e:
        logger.warning(f"Could not read video metadata from {path}: {e}")
        return {"duration": 0.0, "video_codec": "unknown", "resolution": "unknown", "fps": 0}
