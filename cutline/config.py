"""Render configuration: read-only settings shared by every job."""

import json
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class EncodeConfig:
    """Quality settings for the ordinary output encode."""

    preset: str = "veryfast"
    crf: int = 20
    audio_bitrate: str = "192k"


@dataclass
class StreamConfig:
    """Adaptive-stream transcoding quality and optional restrictions."""

    enable_restrictions: bool = False
    max_duration: float = 3600.0
    max_width: int = 1920
    max_height: int = 1080
    max_file_size_mb: float = 5000.0
    transcode_timeout: float = 7200.0
    preset: str = "medium"
    crf_single: int = 18
    crf_multi: int = 10


@dataclass
class RenderConfig:
    """Top-level render configuration."""

    output_dir: Path = Path("output")
    min_cut_duration: float = 0.05
    min_transcode_segment: float = 0.35
    image_duration: float = 5.0
    frame_rate: int = 25
    intermediate_crf: int = 10
    ffmpeg_timeout: float | None = None
    probe_timeout: float = 60.0
    download_timeout: float = 300.0
    verify_attempts: int = 10
    verify_interval: float = 0.2
    extract_weight: float = 0.7
    encode_weight: float = 0.3
    encode: EncodeConfig = field(default_factory=EncodeConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)


def load_config(path: str | Path) -> RenderConfig:
    """Load a RenderConfig from a JSON file; omitted keys keep their defaults."""
    path = Path(path)
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config file must contain a JSON object")

    encode = EncodeConfig(**data.pop("encode")) if "encode" in data else EncodeConfig()
    stream = StreamConfig(**data.pop("stream")) if "stream" in data else StreamConfig()
    if "output_dir" in data:
        data["output_dir"] = Path(data["output_dir"])

    return RenderConfig(encode=encode, stream=stream, **data)
