"""Narration synthesis collaborator.

Turns an ordered list of voice segments into one combined audio file:
each segment is synthesized separately (OpenAI speech endpoint or the
system ``say`` / ``espeak`` command), padded with its trailing pause,
measured with ffprobe and finally joined with the ffmpeg concat demuxer.
"""

import asyncio
import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from eduvid.config import ProvidersConfig, TTSConfig
from eduvid.orchestrator.errors import EduvidError
from eduvid.schemas.content import VoiceSegment
from eduvid.services.media import probe_duration, run_command, run_ffmpeg

logger = logging.getLogger(__name__)

COMBINED_FILENAME = "combined_narration.mp3"


class SynthesisError(EduvidError):
    """Narration audio could not be produced."""


class SegmentAudio(BaseModel):
    segment_id: str
    filepath: str
    duration: float


class NarrationResult(BaseModel):
    audio_file: str
    segments: list[SegmentAudio]

    @property
    def segment_durations(self) -> list[float]:
        return [s.duration for s in self.segments]


class NarrationSynthesizer:
    """Synthesize narration segments with the configured TTS provider."""

    def __init__(self, config: TTSConfig, providers: Optional[ProvidersConfig] = None):
        self.config = config
        self.providers = providers or ProvidersConfig()

    async def synthesize(
        self, segments: Sequence[VoiceSegment], output_dir: str | Path
    ) -> NarrationResult:
        """Synthesize every segment in order and combine them.

        Raises:
            SynthesisError: If there is nothing to synthesize, the provider is
                unknown, or a synthesis command fails
        """
        if not segments:
            raise SynthesisError("No narration segments to synthesize")

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        produced: list[SegmentAudio] = []
        for index, segment in enumerate(segments, start=1):
            if not segment.text.strip():
                logger.debug(f"Skipping empty narration segment {segment.segment_id}")
                continue
            filepath = output_dir / f"{index:03d}_{segment.segment_id}.mp3"
            try:
                await self._synthesize_segment(segment.text, filepath)
                if segment.pause_after > 0:
                    await _append_silence(filepath, segment.pause_after)
            except subprocess.CalledProcessError as e:
                stderr = e.stderr or ""
                raise SynthesisError(
                    f"Synthesis of segment {segment.segment_id} failed: {stderr[:500]}"
                ) from e
            duration = await probe_duration(filepath)
            produced.append(
                SegmentAudio(segment_id=segment.segment_id, filepath=str(filepath), duration=duration)
            )
            logger.debug(f"Synthesized {segment.segment_id} ({duration:.2f}s)")

        if not produced:
            raise SynthesisError("Every narration segment was empty")

        combined = output_dir / COMBINED_FILENAME
        try:
            await _combine_segments([Path(s.filepath) for s in produced], combined)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr or ""
            raise SynthesisError(f"Combining narration failed: {stderr[:500]}") from e

        logger.info(f"Narration ready: {combined} ({len(produced)} segments)")
        return NarrationResult(audio_file=str(combined), segments=produced)

    async def _synthesize_segment(self, text: str, filepath: Path) -> None:
        if self.config.provider == "openai":
            await self._synthesize_openai(text, filepath)
        elif self.config.provider == "system":
            await self._synthesize_system(text, filepath)
        else:
            raise SynthesisError(f"TTS provider {self.config.provider} not implemented")

    async def _synthesize_openai(self, text: str, filepath: Path) -> None:
        api_key = self.providers.openai_api_key
        if not api_key:
            raise SynthesisError("OpenAI API key required for TTS")

        payload = {
            "model": self.config.model,
            "input": text,
            "voice": self.config.voice or "alloy",
            "speed": self.config.speed,
        }

        @retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        )
        async def _call() -> bytes:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.post(
                    f"{self.providers.openai_base_url.rstrip('/')}/audio/speech",
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
                response.raise_for_status()
                return response.content

        try:
            audio = await _call()
        except httpx.HTTPError as e:
            raise SynthesisError(f"OpenAI TTS failed: {e}") from e
        await asyncio.to_thread(filepath.write_bytes, audio)

    async def _synthesize_system(self, text: str, filepath: Path) -> None:
        rate = int(self.config.speed * 175)  # both tools default to ~175 wpm

        if sys.platform == "darwin":
            voice = self.config.voice or "Alex"
            raw_path = filepath.with_suffix(".aiff")
            await run_command(
                ["say", "-v", voice, "-r", str(rate), "-o", str(raw_path), text], check=True
            )
        elif sys.platform.startswith("linux"):
            if shutil.which("espeak") is None:
                raise SynthesisError("espeak not found on PATH")
            raw_path = filepath.with_suffix(".wav")
            args = ["espeak", "-s", str(rate), "-w", str(raw_path)]
            if self.config.voice:
                args += ["-v", self.config.voice]
            await run_command([*args, text], check=True)
        else:
            raise SynthesisError(f"System TTS not supported on platform: {sys.platform}")

        try:
            await run_ffmpeg(["-i", str(raw_path), str(filepath)])
        finally:
            raw_path.unlink(missing_ok=True)


async def _append_silence(filepath: Path, seconds: float) -> None:
    """Append ``seconds`` of silence to an audio file in place."""
    temp_file = filepath.with_name(f"{filepath.stem}_padded{filepath.suffix}")
    await run_ffmpeg(
        [
            "-i",
            str(filepath),
            "-f",
            "lavfi",
            "-t",
            f"{seconds}",
            "-i",
            "anullsrc=r=44100:cl=stereo",
            "-filter_complex",
            "[0:a][1:a]concat=n=2:v=0:a=1",
            str(temp_file),
        ]
    )
    temp_file.replace(filepath)


async def _combine_segments(paths: list[Path], output_path: Path) -> None:
    """Join audio files with the ffmpeg concat demuxer."""
    if len(paths) == 1:
        shutil.copyfile(paths[0], output_path)
        return

    list_file = output_path.parent / "audio_list.txt"
    try:
        with open(list_file, "w") as f:
            for path in paths:
                # Use absolute paths for reliability
                f.write(f"file '{path.resolve()}'\n")

        # -safe 0: Allow absolute paths
        await run_ffmpeg(
            ["-f", "concat", "-safe", "0", "-i", str(list_file), "-c", "copy", str(output_path)]
        )
    finally:
        if list_file.exists():
            list_file.unlink()
