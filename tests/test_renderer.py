"""Tests for the manim renderer and the child process helper it runs on."""

import asyncio
import subprocess
import sys
import time
from pathlib import Path

import pytest

from eduvid.services import renderer as renderer_module
from eduvid.services.media import run_command
from eduvid.services.renderer import ManimRenderer, RenderError, quality_flag

RESOLUTION = {"width": 1280, "height": 720}

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts")


@pytest.mark.parametrize("width,flag", [(3840, "-qh"), (1920, "-qh"), (1280, "-qm"), (854, "-ql")])
def test_quality_flag(width, flag):
    assert quality_flag(width) == flag


def test_build_command():
    command = ManimRenderer().build_command(
        Path("/work/coding-agent/tides.py"), "Tides", 30, RESOLUTION
    )
    assert command == ["manim", "render", "-qm", "--fps", "30", "-r", "1280,720", "tides.py", "Tides"]


def fake_command(returncode=0, stdout="", stderr="", create=None, calls=None):
    async def run(command, cwd=None, timeout=None, check=False):
        if calls is not None:
            calls.append({"command": command, "cwd": cwd, "timeout": timeout})
        for relative in create or []:
            path = Path(cwd) / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"mp4")
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    return run


def fake_manim(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "fake-manim"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(0o755)
    return script


# ---------------------------------------------------------------------------
# render() with the manim command stubbed out
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_render_finds_final_video(tmp_path, monkeypatch):
    code_file = tmp_path / "tides.py"
    code_file.write_text("class Tides(Scene): pass")
    calls = []
    monkeypatch.setattr(
        renderer_module,
        "run_command",
        fake_command(
            stdout="File ready",
            create=[
                "media/videos/tides/720p30/partial_movie_files/Tides/a.mp4",
                "media/videos/tides/720p30/Tides.mp4",
            ],
            calls=calls,
        ),
    )

    result = await ManimRenderer(timeout=120).render(code_file, "Tides", 30, RESOLUTION)

    assert result.video_file == str(tmp_path / "media/videos/tides/720p30/Tides.mp4")
    assert result.log == "File ready"
    assert calls[0]["cwd"] == tmp_path
    assert calls[0]["timeout"] == 120


@pytest.mark.asyncio
async def test_render_failure_carries_log(tmp_path, monkeypatch):
    code_file = tmp_path / "tides.py"
    code_file.write_text("broken")
    monkeypatch.setattr(
        renderer_module, "run_command", fake_command(returncode=1, stderr="NameError: Circel")
    )

    with pytest.raises(RenderError, match="NameError: Circel") as exc_info:
        await ManimRenderer().render(code_file, "Tides", 30, RESOLUTION)
    assert exc_info.value.log == "NameError: Circel"


@pytest.mark.asyncio
async def test_render_without_output(tmp_path, monkeypatch):
    code_file = tmp_path / "tides.py"
    code_file.write_text("class Tides(Scene): pass")
    monkeypatch.setattr(renderer_module, "run_command", fake_command())

    with pytest.raises(RenderError, match="No video file generated"):
        await ManimRenderer().render(code_file, "Tides", 30, RESOLUTION)


@pytest.mark.asyncio
async def test_missing_executable(tmp_path):
    code_file = tmp_path / "tides.py"
    code_file.write_text("class Tides(Scene): pass")
    renderer = ManimRenderer(executable=str(tmp_path / "no-such-manim"))

    with pytest.raises(RenderError, match="not found on PATH"):
        await renderer.render(code_file, "Tides", 30, RESOLUTION)


# ---------------------------------------------------------------------------
# Real child processes
# ---------------------------------------------------------------------------

@posix_only
@pytest.mark.asyncio
async def test_timed_out_render_leaves_no_running_child(tmp_path):
    marker = tmp_path / "marker.txt"
    script = fake_manim(tmp_path, f'echo start >> "{marker}"\nsleep 1\necho done >> "{marker}"\n')
    code_file = tmp_path / "tides.py"
    code_file.write_text("class Tides(Scene): pass")

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(
            ManimRenderer(executable=str(script)).render(code_file, "Tides", 30, RESOLUTION),
            timeout=0.5,
        )
    await asyncio.sleep(1.5)

    assert marker.read_text().split() == ["start"]


@posix_only
@pytest.mark.asyncio
async def test_render_timeout_kills_manim(tmp_path):
    marker = tmp_path / "marker.txt"
    script = fake_manim(tmp_path, f'sleep 1\necho done >> "{marker}"\n')
    code_file = tmp_path / "tides.py"
    code_file.write_text("class Tides(Scene): pass")

    with pytest.raises(RenderError, match="timed out after 0.2s"):
        await ManimRenderer(executable=str(script), timeout=0.2).render(
            code_file, "Tides", 30, RESOLUTION
        )
    await asyncio.sleep(1.5)

    assert not marker.exists()


@posix_only
@pytest.mark.asyncio
async def test_run_command_captures_output(tmp_path):
    result = await run_command(["sh", "-c", "pwd; echo warning >&2"], cwd=tmp_path)

    assert result.returncode == 0
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()
    assert result.stderr == "warning\n"


@posix_only
@pytest.mark.asyncio
async def test_run_command_check_raises_with_stderr():
    with pytest.raises(subprocess.CalledProcessError) as exc_info:
        await run_command(["sh", "-c", "echo bad input >&2; exit 3"], check=True)

    assert exc_info.value.returncode == 3
    assert exc_info.value.stderr == "bad input\n"


@posix_only
@pytest.mark.asyncio
async def test_run_command_timeout():
    start = time.monotonic()
    with pytest.raises(subprocess.TimeoutExpired):
        await run_command(["sleep", "5"], timeout=0.2)
    assert time.monotonic() - start < 4
