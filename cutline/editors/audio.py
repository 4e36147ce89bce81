"""Extra audio tracks: trimming, volume and mixing onto the output."""

import logging
from dataclasses import dataclass
from pathlib import Path

from cutline import ffutil
from cutline.config import RenderConfig
from cutline.errors import AcquisitionError, RenderError
from cutline.fetch import download, url_extension
from cutline.models import AudioTrack

logger = logging.getLogger(__name__)

MIX = "mix"
REPLACE = "replace"


@dataclass
class PreparedAudio:
    path: Path
    start_time: float
    volume: float


def active_tracks(tracks: list[AudioTrack]) -> list[AudioTrack]:
    """Apply solo/mute: solo tracks win, muted tracks never play."""
    if any(t.solo for t in tracks):
        return [t for t in tracks if t.solo and not t.muted]
    return [t for t in tracks if not t.muted]


def _process_args(
    src: Path, dest: Path, track: AudioTrack, extract_duration: float, config: RenderConfig
) -> list[str]:
    args = ["-i", str(src), "-map", "0:a:0"]
    if track.trim_start > 0:
        args += ["-ss", f"{track.trim_start:.3f}"]
    args += ["-t", f"{extract_duration:.3f}"]
    if track.volume != 1.0:
        args += ["-af", f"volume={track.volume:.3f}"]
    args += [
        "-c:a", "aac",
        "-b:a", config.encode.audio_bitrate,
        "-ar", "44100",
        "-ac", "2",
        str(dest),
    ]
    return args


def prepare_audio_tracks(
    tracks: list[AudioTrack],
    work_dir: Path,
    total_duration: float,
    config: RenderConfig,
) -> list[PreparedAudio]:
    """Download active tracks and trim/scale them in a single ffmpeg pass each.

    Tracks that start at or after the end of the video are skipped.
    """
    prepared: list[PreparedAudio] = []
    tracks = active_tracks(tracks)

    for index, track in enumerate(tracks):
        available = total_duration - track.start_time
        if available <= 0:
            logger.info("Audio track %d starts after the video ends, skipping", index + 1)
            continue

        full_length = track.original_duration or track.duration
        trim_end = track.trim_end if track.trim_end is not None else full_length
        trim_duration = trim_end - track.trim_start
        clip_to_video = track.start_time + track.duration > total_duration

        needs_trim = track.trim_start > 0 or trim_end < full_length
        needs_volume = track.volume != 1.0

        src = work_dir / f"audio-{index}{url_extension(track.url, '.mp3')}"
        try:
            download(track.url, src, timeout=config.download_timeout)
            path = src
            if needs_trim or needs_volume or clip_to_video:
                extract = min(available, trim_duration) if clip_to_video else trim_duration
                path = work_dir / f"audio-{index}-processed.m4a"
                ffutil.run_ffmpeg(
                    _process_args(src, path, track, extract, config),
                    timeout=config.ffmpeg_timeout,
                )
        except RenderError as e:
            raise AcquisitionError(
                f"Failed to process audio track {track.url}: {e.message}", url=track.url
            ) from e

        logger.info(
            "Prepared audio %d/%d: start=%gs, duration=%gs, volume=%g",
            index + 1, len(tracks), track.start_time, track.duration, track.volume,
        )
        prepared.append(PreparedAudio(path, track.start_time, track.volume))

    return prepared


def build_audio_mix(
    prepared: list[PreparedAudio],
    first_input_index: int,
    mode: str = MIX,
) -> tuple[list[str], str]:
    """Return filter_complex parts and the label of the final audio stream.

    In ``mix`` mode the video's own audio ``[0:a]`` joins the mix; in
    ``replace`` mode only the extra tracks are heard.
    """
    if not prepared:
        return [], "0:a"

    parts: list[str] = []
    labels: list[str] = []
    for i, audio in enumerate(prepared):
        delay = round(audio.start_time * 1000)
        parts.append(f"[{first_input_index + i}:a]adelay={delay}|{delay}[a{i}]")
        labels.append(f"a{i}")

    if mode == MIX:
        labels.append("0:a")

    if len(labels) == 1:
        return parts, labels[0]

    inputs = "".join(f"[{label}]" for label in labels)
    parts.append(f"{inputs}amix=inputs={len(labels)}:duration=longest[amixed]")
    return parts, "amixed"
