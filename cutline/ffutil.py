"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import re
import shutil
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable

from cutline.errors import EngineError, RenderTimeoutError
from cutline.models import ProbeResult

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"

TIME_RE = re.compile(r"time=(\d+:\d{2}:\d{2}(?:\.\d+)?|\d+:\d{2}(?:\.\d+)?)")

# Substrings of ffmpeg's periodic status line.
_PROGRESS_MARKERS = ("time=", "frame=", "fps=", "bitrate=", "speed=")

_STDERR_TAIL_LINES = 200


class FFmpegNotFoundError(EngineError):
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in (FFMPEG, FFPROBE):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def parse_time(value: str) -> float:
    """Convert ``HH:MM:SS.xx`` or ``MM:SS.xx`` to seconds."""
    parts = value.strip().split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        if len(parts) == 2:
            return int(parts[0]) * 60 + float(parts[1])
        return float(value)
    except ValueError:
        return 0.0


def parse_progress_time(line: str) -> float | None:
    """Return elapsed seconds from an ffmpeg status line, or None."""
    match = TIME_RE.search(line)
    if match is None:
        return None
    return parse_time(match.group(1))


def trim_diagnostics(output: str, max_lines: int = 5, max_chars: int = 500) -> str:
    """Drop repeating progress lines and keep the tail of ffmpeg's stderr."""
    lines = [
        line for line in output.splitlines()
        if line.strip() and not any(m in line for m in _PROGRESS_MARKERS)
    ]
    if lines:
        return "\n".join(lines[-max_lines:])
    return output[-max_chars:].strip()


def probe(input_path: Path | str, timeout: float | None = None) -> ProbeResult:
    """Extract media metadata via ffprobe.

    ``input_path`` may also be a URL (e.g. a stream manifest).
    """
    cmd = [
        FFPROBE,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True, timeout=timeout
        )
    except FileNotFoundError as e:
        raise FFmpegNotFoundError(f"{FFPROBE} not found on PATH") from e
    except subprocess.TimeoutExpired as e:
        raise RenderTimeoutError(
            f"ffprobe timed out after {timeout}s on {input_path}",
            elapsed=float(timeout or 0.0),
            timeout=float(timeout or 0.0),
        ) from e
    except subprocess.CalledProcessError as e:
        raise EngineError(
            f"ffprobe failed (rc={e.returncode}) on {input_path}",
            diagnostics=trim_diagnostics(e.stderr or ""),
        ) from e

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise EngineError(f"Failed to parse ffprobe output for {input_path}") from e

    streams = data.get("streams", [])
    video_stream = next(
        (s for s in streams if s.get("codec_type") == "video"), None
    )
    audio_stream = next(
        (s for s in streams if s.get("codec_type") == "audio"), None
    )

    if video_stream is None:
        raise EngineError(f"No video stream found in {input_path}")

    # Parse fps from r_frame_rate (e.g. "30/1")
    num, _, den = video_stream.get("r_frame_rate", "0/1").partition("/")
    fps = int(num) / int(den) if den and int(den) else 0.0

    return ProbeResult(
        duration=float(data.get("format", {}).get("duration") or 0.0),
        width=int(video_stream.get("width") or 0),
        height=int(video_stream.get("height") or 0),
        fps=fps,
        codec_video=video_stream.get("codec_name", ""),
        audio_sample_rate=int(audio_stream["sample_rate"]) if audio_stream else None,
        codec_audio=audio_stream.get("codec_name") if audio_stream else None,
    )


def run_ffmpeg(
    args: list[str],
    on_progress: Callable[[float], None] | None = None,
    timeout: float | None = None,
) -> None:
    """Run ffmpeg to completion, reporting elapsed media time as it goes.

    ``on_progress`` receives the seconds processed so far, parsed from the
    ``time=`` markers ffmpeg writes to stderr. When ``timeout`` is set the
    process is killed once it runs that long and RenderTimeoutError is
    raised. A non-zero exit raises EngineError carrying the trimmed stderr.
    """
    cmd = [FFMPEG, "-hide_banner", "-y", *args]
    logger.debug("Running: %s", " ".join(cmd))

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise EngineError(f"Failed to start {FFMPEG}: {e}") from e

    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        proc.kill()

    timer = threading.Timer(timeout, _kill) if timeout else None
    tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
    started = time.monotonic()

    if timer is not None:
        timer.daemon = True
        timer.start()
    try:
        for line in proc.stderr:
            tail.append(line)
            if on_progress is None:
                continue
            elapsed = parse_progress_time(line)
            if elapsed is not None:
                on_progress(elapsed)
        returncode = proc.wait()
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        if timer is not None:
            timer.cancel()
        proc.stderr.close()

    diagnostics = trim_diagnostics("".join(tail))
    if timed_out.is_set():
        elapsed = time.monotonic() - started
        raise RenderTimeoutError(
            f"ffmpeg timed out after {timeout:g}s",
            elapsed=elapsed,
            timeout=timeout,
            diagnostics=diagnostics,
        )
    if returncode != 0:
        logger.error("ffmpeg exited with code %d: %s", returncode, diagnostics)
        raise EngineError(
            f"ffmpeg exited with code {returncode}", diagnostics=diagnostics
        )


def write_concat_list(paths: list[Path], list_path: Path) -> Path:
    """Write a concat-demuxer list file referencing ``paths`` in order."""
    lines = []
    for p in paths:
        escaped = str(p).replace("\\", "/").replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def convert_image(input_path: Path, output_path: Path) -> Path:
    """Re-encode a still image into the format implied by ``output_path``."""
    run_ffmpeg(["-i", str(input_path), str(output_path)])
    return output_path
