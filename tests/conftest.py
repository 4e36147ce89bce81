"""Shared test fixtures."""

import io
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

PROGRESS_STDERR = (
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mp4':\n"
    "frame=   25 fps=0.0 q=-1.0 size=     256kB time=00:00:01.00 bitrate=2097.2kbits/s speed=2x\n"
    "frame=   50 fps= 49 q=-1.0 size=     512kB time=00:00:02.00 bitrate=2097.2kbits/s speed=2x\n"
)


class FakePopen:
    """Stands in for subprocess.Popen running ffmpeg."""

    def __init__(self, cmd, stderr_text: str = "", returncode: int = 0, **kwargs):
        self.cmd = cmd
        self.stderr = io.StringIO(stderr_text)
        self.returncode = returncode
        self.killed = False

    def wait(self, timeout=None):
        return self.returncode

    def kill(self):
        self.killed = True


class FakeFFmpeg:
    """Records ffmpeg invocations and writes each command's output file."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.fail_when: str | None = None
        self.skip_output_when: str | None = None

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        joined = " ".join(cmd)
        if self.fail_when and self.fail_when in joined:
            return FakePopen(cmd, "Conversion failed!\n", returncode=1)
        out = Path(cmd[-1])
        skip = self.skip_output_when and self.skip_output_when in joined
        if out.parent.is_dir() and not skip:
            out.write_bytes(b"\x00" * 64)
        return FakePopen(cmd, PROGRESS_STDERR)

    def find(self, needle: str) -> list[list[str]]:
        return [c for c in self.calls if needle in " ".join(c)]


@pytest.fixture
def sample_plan_path() -> Path:
    return FIXTURES_DIR / "sample_plan.json"


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFFmpeg:
    fake = FakeFFmpeg()
    monkeypatch.setattr("cutline.ffutil.subprocess.Popen", fake)
    return fake


@pytest.fixture
def local_video(tmp_path) -> Path:
    path = tmp_path / "media" / "clip.mp4"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"fake video data")
    return path


@pytest.fixture
def local_image(tmp_path) -> Path:
    path = tmp_path / "media" / "still.png"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"fake png data")
    return path
