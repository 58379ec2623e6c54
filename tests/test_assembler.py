"""Tests for final video assembly (ffmpeg is never invoked)."""

import subprocess
from pathlib import Path

import pytest

from eduvid.services import assembler as assembler_module
from eduvid.services.assembler import AssemblyError, VideoAssembler
from tests.conftest import async_stub


@pytest.fixture
def media(tmp_path):
    video = tmp_path / "scene.mp4"
    audio = tmp_path / "narration.mp3"
    video.write_bytes(b"video")
    audio.write_bytes(b"audio")
    return video, audio


def args_for(video_duration, audio_duration):
    assembler = VideoAssembler("/out")
    return assembler.build_args(
        Path("v.mp4"), Path("a.mp3"), Path("/out/final.mp4"), video_duration, audio_duration
    )


# ---------------------------------------------------------------------------
# Input checks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_video(tmp_path, media):
    _, audio = media
    with pytest.raises(AssemblyError, match="Video file not found"):
        await VideoAssembler(tmp_path / "out").assemble(tmp_path / "nope.mp4", audio, "final")


@pytest.mark.asyncio
async def test_missing_audio(tmp_path, media):
    video, _ = media
    with pytest.raises(AssemblyError, match="Audio file not found"):
        await VideoAssembler(tmp_path / "out").assemble(video, tmp_path / "nope.mp3", "final")


# ---------------------------------------------------------------------------
# Duration alignment
# ---------------------------------------------------------------------------

def test_equal_durations_map_streams():
    args = args_for(30.0, 30.05)
    assert "-filter_complex" not in args
    assert "-t" not in args
    assert args[-1] == "/out/final.mp4"


def test_video_longer_pads_audio():
    args = args_for(30.0, 20.0)
    assert "[1:a]apad=whole_dur=30.0[a]" in args
    assert args[-3:-1] == ["-map", "[a]"]


def test_audio_longer_is_cut():
    args = args_for(20.0, 30.0)
    assert args[args.index("-t") + 1] == "20.0"


# ---------------------------------------------------------------------------
# assemble() with ffmpeg stubbed out
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_assemble_writes_output(tmp_path, media, monkeypatch):
    video, audio = media
    captured = {}

    async def fake_ffmpeg(args):
        captured["args"] = args
        Path(args[-1]).write_bytes(b"final video")

    monkeypatch.setattr(assembler_module, "run_ffmpeg", fake_ffmpeg)
    monkeypatch.setattr(
        assembler_module,
        "probe_duration",
        async_stub(lambda path: 12.0 if str(path).endswith(".mp4") else 8.0),
    )
    monkeypatch.setattr(
        assembler_module,
        "probe_video_metadata",
        async_stub({"duration": 12.0, "video_codec": "h264", "resolution": "1280x720", "fps": 30.0}),
    )

    result = await VideoAssembler(tmp_path / "out").assemble(video, audio, "video_abc_1")

    assert result.final_video == str(tmp_path / "out" / "video_abc_1.mp4")
    assert result.duration == 12.0
    assert result.file_size == len(b"final video")
    assert result.metadata == {
        "video_codec": "h264",
        "resolution": "1280x720",
        "fps": 30.0,
        "audio_codec": "aac",
    }
    assert "[1:a]apad=whole_dur=12.0[a]" in captured["args"]


@pytest.mark.asyncio
async def test_ffmpeg_failure(tmp_path, media, monkeypatch):
    video, audio = media

    async def failing_ffmpeg(args):
        raise subprocess.CalledProcessError(1, "ffmpeg", stderr="Invalid data found")

    monkeypatch.setattr(assembler_module, "run_ffmpeg", failing_ffmpeg)
    monkeypatch.setattr(assembler_module, "probe_duration", async_stub(10.0))

    with pytest.raises(AssemblyError, match="Invalid data found"):
        await VideoAssembler(tmp_path / "out").assemble(video, audio, "final")
