"""Cut editor: extracts keep-segments and joins them into the output."""

import logging
from pathlib import Path
from typing import Callable

from cutline import ffutil
from cutline.config import RenderConfig
from cutline.editors.audio import PreparedAudio, build_audio_mix
from cutline.editors.overlays import OverlayGraph
from cutline.models import TimeRange
from cutline.policy import EncodeDecision, QualityProfile

logger = logging.getLogger(__name__)


def _video_encode_args(profile: QualityProfile) -> list[str]:
    return ["-c:v", "libx264", "-preset", profile.preset, "-crf", str(profile.crf)]


def extract_segment_args(
    source: Path, segment: TimeRange, output_path: Path, decision: EncodeDecision,
    config: RenderConfig,
) -> list[str]:
    """Arguments for one keep-segment.

    ``-ss`` follows ``-i`` (output seeking) so the cut lands on the exact
    frame even away from keyframes.
    """
    args = [
        "-i", str(source),
        "-ss", f"{segment.start:.3f}",
        "-t", f"{segment.duration:.3f}",
        "-avoid_negative_ts", "make_zero",
    ]
    if decision.reencode:
        args += [
            *_video_encode_args(decision.profile),
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", config.encode.audio_bitrate,
        ]
    else:
        args += ["-c", "copy"]
    args.append(str(output_path))
    return args


def extract_segment(
    source: Path,
    segment: TimeRange,
    output_path: Path,
    decision: EncodeDecision,
    config: RenderConfig,
    on_progress: Callable[[float], None] | None = None,
) -> Path:
    ffutil.run_ffmpeg(
        extract_segment_args(source, segment, output_path, decision, config),
        on_progress=on_progress,
        timeout=config.ffmpeg_timeout,
    )
    return output_path


def concat_args(
    list_path: Path,
    output_path: Path,
    decision: EncodeDecision,
    config: RenderConfig,
    overlay_graph: OverlayGraph | None = None,
    audio: list[PreparedAudio] | None = None,
    audio_mode: str = "mix",
) -> list[str]:
    """Arguments for the final concat-demuxer pass.

    Input 0 is the segment list, followed by overlay images and then extra
    audio tracks. Overlay and audio graphs share one ``-filter_complex``.
    """
    overlay_graph = overlay_graph or OverlayGraph()
    audio = audio or []

    args = ["-f", "concat", "-safe", "0", "-fflags", "+genpts", "-i", str(list_path)]

    if not decision.reencode:
        args += ["-c", "copy", "-avoid_negative_ts", "make_zero", str(output_path)]
        return args

    for image_path in overlay_graph.inputs:
        args += ["-i", str(image_path)]
    for track in audio:
        args += ["-i", str(track.path)]

    filter_parts: list[str] = []
    video_stream = "0:v"
    if overlay_graph:
        filter_parts.append(overlay_graph.filter_complex)
        video_stream = overlay_graph.output_stream

    audio_parts, audio_stream = build_audio_mix(
        audio, 1 + len(overlay_graph.inputs), audio_mode
    )
    filter_parts += audio_parts

    if filter_parts:
        args += ["-filter_complex", ";".join(filter_parts)]
        args += ["-map", f"[{video_stream}]" if overlay_graph else "0:v"]
        args += ["-map", f"[{audio_stream}]" if audio_parts else "0:a?"]
    else:
        args += ["-map", "0:v", "-map", "0:a?"]

    args += [
        *_video_encode_args(decision.profile),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", config.encode.audio_bitrate,
        "-movflags", "+faststart",
        str(output_path),
    ]
    return args


def concat_segments(
    segment_paths: list[Path],
    output_path: Path,
    work_dir: Path,
    decision: EncodeDecision,
    config: RenderConfig,
    overlay_graph: OverlayGraph | None = None,
    audio: list[PreparedAudio] | None = None,
    audio_mode: str = "mix",
    on_progress: Callable[[float], None] | None = None,
) -> Path:
    """Join extracted segments (re-encoding per ``decision``) into ``output_path``."""
    if not segment_paths:
        raise ValueError("concat_segments called with empty segment list")

    list_path = ffutil.write_concat_list(segment_paths, work_dir / "concat.txt")
    args = concat_args(
        list_path, output_path, decision, config, overlay_graph, audio, audio_mode
    )
    if decision.reencode:
        logger.info(
            "Encoding output (%s; CRF %d, %s)",
            ", ".join(decision.reasons), decision.profile.crf, decision.profile.preset,
        )
    else:
        logger.info("Joining %d segment(s) with stream copy", len(segment_paths))

    ffutil.run_ffmpeg(args, on_progress=on_progress, timeout=config.ffmpeg_timeout)
    return output_path
