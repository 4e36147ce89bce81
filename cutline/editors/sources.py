"""Source normalizer: resolves each plan source to a local, uniform video file."""

import logging
from dataclasses import dataclass
from pathlib import Path

from cutline import ffutil
from cutline.config import RenderConfig
from cutline.errors import AcquisitionError, EngineError, RenderError
from cutline.fetch import download, image_extension
from cutline.models import ImageSource, Source, StreamSource, VideoSource
from cutline.policy import (
    QualityProfile,
    SourceMix,
    decide_source_concat,
    stream_transcode_profile,
)

logger = logging.getLogger(__name__)

QUALITY_WARNING = (
    "Mixing adaptive-stream and flat video sources may reduce quality "
    "due to multiple encoding passes"
)


@dataclass
class NormalizedSource:
    path: Path
    transcoded: bool = False


def _uniform_output_args(config: RenderConfig) -> list[str]:
    """Frame rate, pixel format and audio layout every normalized clip shares."""
    return [
        "-r", str(config.frame_rate),
        "-pix_fmt", "yuv420p",
        "-fps_mode", "cfr",
        "-c:a", "aac",
        "-b:a", config.encode.audio_bitrate,
        "-ar", "44100",
        "-ac", "2",
    ]


def _encode_args(profile: QualityProfile) -> list[str]:
    return ["-c:v", "libx264", "-preset", profile.preset, "-crf", str(profile.crf)]


def fetch_image(url: str, dest_stem: Path, timeout: float) -> Path:
    """Download a still image, converting WebP to PNG for ffmpeg's image demuxer."""
    ext = image_extension(url)
    image_path = dest_stem.with_name(f"{dest_stem.name}.{ext}")
    download(url, image_path, timeout=timeout)
    if ext == "webp":
        png_path = image_path.with_suffix(".png")
        logger.info("Converting WebP to PNG: %s", image_path.name)
        ffutil.convert_image(image_path, png_path)
        return png_path
    return image_path


def image_to_video(
    source: ImageSource, output_path: Path, work_dir: Path, index: int, config: RenderConfig
) -> Path:
    duration = source.duration or config.image_duration
    image_path = fetch_image(source.url, work_dir / f"image-{index}", config.download_timeout)

    logger.info("Converting image to video (%gs): %s", duration, source.url)
    ffutil.run_ffmpeg(
        [
            "-loop", "1",
            "-i", str(image_path),
            "-f", "lavfi",
            "-i", "anullsrc=channel_layout=stereo:sample_rate=44100",
            "-t", f"{duration:.3f}",
            "-c:v", "libx264",
            *_uniform_output_args(config),
            "-shortest",
            str(output_path),
        ],
        timeout=config.ffmpeg_timeout,
    )
    return output_path


def check_stream_restrictions(url: str, config: RenderConfig) -> None:
    """Probe a stream and reject it if it exceeds the configured limits."""
    limits = config.stream
    if not limits.enable_restrictions:
        return

    info = ffutil.probe(url, timeout=config.probe_timeout)
    logger.info(
        "Stream metadata: duration=%.1fs, resolution=%dx%d",
        info.duration, info.width, info.height,
    )
    if info.duration > limits.max_duration:
        raise AcquisitionError(
            f"Stream duration ({round(info.duration)}s) exceeds maximum "
            f"allowed ({limits.max_duration:g}s)",
            url=url,
        )
    if info.width > limits.max_width or info.height > limits.max_height:
        raise AcquisitionError(
            f"Stream resolution ({info.width}x{info.height}) exceeds maximum "
            f"allowed ({limits.max_width}x{limits.max_height})",
            url=url,
        )


def transcode_stream(
    source: StreamSource, output_path: Path, config: RenderConfig, multi_source: bool
) -> Path:
    check_stream_restrictions(source.url, config)

    profile = stream_transcode_profile(config, multi_source)
    restricted = config.stream.enable_restrictions
    timeout = config.stream.transcode_timeout if restricted else config.ffmpeg_timeout
    logger.info("Transcoding stream to MP4 (CRF %d, %s): %s", profile.crf, profile.preset, source.url)

    ffutil.run_ffmpeg(
        [
            "-i", source.url,
            *_encode_args(profile),
            *_uniform_output_args(config),
            "-movflags", "+faststart",
            str(output_path),
        ],
        timeout=timeout,
    )

    if restricted:
        size_mb = output_path.stat().st_size / (1024 * 1024)
        if size_mb > config.stream.max_file_size_mb:
            output_path.unlink()
            raise AcquisitionError(
                f"Transcoded stream size ({round(size_mb)}MB) exceeds maximum "
                f"allowed ({config.stream.max_file_size_mb:g}MB)",
                url=source.url,
            )
    return output_path


def normalize_source(
    source: Source,
    index: int,
    work_dir: Path,
    config: RenderConfig,
    multi_source: bool,
) -> NormalizedSource:
    """Resolve one source to ``work_dir/source-{index}.mp4``.

    Any failure removes the partial output and raises AcquisitionError
    naming the source.
    """
    output_path = work_dir / f"source-{index}.mp4"
    try:
        if isinstance(source, ImageSource):
            image_to_video(source, output_path, work_dir, index, config)
            return NormalizedSource(output_path, transcoded=True)
        if isinstance(source, StreamSource):
            transcode_stream(source, output_path, config, multi_source)
            return NormalizedSource(output_path, transcoded=True)
        if isinstance(source, VideoSource):
            download(source.url, output_path, timeout=config.download_timeout)
            return NormalizedSource(output_path)
        raise TypeError(f"Unknown source type: {type(source).__name__}")
    except RenderError as e:
        output_path.unlink(missing_ok=True)
        if isinstance(e, AcquisitionError):
            e.source_index = index
            e.url = e.url or source.url
            raise
        message = f"Source {index + 1} ({source.url}) failed: {e.message}"
        diagnostics = e.diagnostics if isinstance(e, EngineError) else ""
        if diagnostics:
            message = f"{message}\n{diagnostics}"
        raise AcquisitionError(message, source_index=index, url=source.url) from e


def normalize_sources(
    sources: list[Source], work_dir: Path, config: RenderConfig
) -> list[NormalizedSource]:
    """Normalize every source sequentially, preserving plan order."""
    multi_source = len(sources) > 1
    normalized = []
    for index, source in enumerate(sources):
        logger.info("Processing source %d/%d...", index + 1, len(sources))
        normalized.append(normalize_source(source, index, work_dir, config, multi_source))
    return normalized


def quality_warning(sources: list[Source]) -> str | None:
    """Warn when stream and flat video sources are mixed in one plan."""
    has_stream = any(isinstance(s, StreamSource) for s in sources)
    has_flat = any(isinstance(s, VideoSource) for s in sources)
    if has_stream and has_flat:
        logger.warning(QUALITY_WARNING)
        return QUALITY_WARNING
    return None


def _streams_mismatch(paths: list[Path], config: RenderConfig) -> bool:
    """True when the probed files disagree on codec, resolution or frame rate."""
    signatures = set()
    for path in paths:
        info = ffutil.probe(path, timeout=config.probe_timeout)
        signatures.add((info.codec_video, info.width, info.height, round(info.fps, 2)))
    return len(signatures) > 1


def concatenate_sources(
    sources: list[Source],
    normalized: list[NormalizedSource],
    work_dir: Path,
    config: RenderConfig,
    on_progress=None,
) -> tuple[Path, bool]:
    """Join normalized sources into one working video.

    Returns ``(path, reencoded)``. Stream copy is used unless the decision
    table finds mixed formats.
    """
    paths = [n.path for n in normalized]
    has_stream = any(isinstance(s, StreamSource) for s in sources)
    has_image = any(isinstance(s, ImageSource) for s in sources)
    mismatched = False
    if not (has_stream or has_image):
        mismatched = _streams_mismatch(paths, config)

    decision = decide_source_concat(
        SourceMix(
            source_count=len(sources),
            has_stream=has_stream,
            has_image=has_image,
            mismatched_streams=mismatched,
        ),
        config,
    )

    list_path = ffutil.write_concat_list(paths, work_dir / "sources.txt")
    output_path = work_dir / "concatenated.mp4"
    args = ["-f", "concat", "-safe", "0"]

    if decision.reencode:
        logger.info(
            "Re-encoding sources for concatenation (%s; CRF %d, %s)",
            ", ".join(decision.reasons), decision.profile.crf, decision.profile.preset,
        )
        args += [
            "-fflags", "+genpts",
            "-i", str(list_path),
            *_encode_args(decision.profile),
            *_uniform_output_args(config),
            "-movflags", "+faststart",
            str(output_path),
        ]
    else:
        logger.info("Concatenating %d sources with stream copy", len(paths))
        args += ["-i", str(list_path), "-c", "copy", str(output_path)]

    ffutil.run_ffmpeg(args, on_progress=on_progress, timeout=config.ffmpeg_timeout)
    return output_path, decision.reencode
