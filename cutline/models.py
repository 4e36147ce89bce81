"""Shared data types used across cutline."""

from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlparse

STREAM_MANIFEST_EXTENSIONS = (".mpd", ".m3u8")


@dataclass
class TimeRange:
    """A half-open start/end interval in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    codec_video: str
    audio_sample_rate: int | None = None
    codec_audio: str | None = None


# --- Sources ---


@dataclass
class VideoSource:
    """A flat media file, used byte-for-byte."""

    url: str


@dataclass
class StreamSource:
    """An adaptive-stream manifest that must be transcoded to a flat file."""

    url: str


@dataclass
class ImageSource:
    """A still image shown for ``duration`` seconds."""

    url: str
    duration: float = 5.0


Source = VideoSource | StreamSource | ImageSource


def is_stream_manifest(url: str) -> bool:
    """True when the URL path ends in an adaptive-stream manifest extension."""
    path = urlparse(url).path or url
    return PurePosixPath(path).suffix.lower() in STREAM_MANIFEST_EXTENSIONS


# --- Overlays ---


@dataclass
class TextOverlay:
    id: int
    start: float
    end: float
    x: float
    y: float
    text: str
    font_size: int = 24
    font_color: str = "white"
    background_color: str = "black@0.5"
    opacity: float = 1.0


@dataclass
class ImageOverlay:
    id: int
    start: float
    end: float
    x: float
    y: float
    image_url: str
    width: int = 200
    height: int = 200
    opacity: float = 1.0


@dataclass
class ShapeOverlay:
    id: int
    start: float
    end: float
    x: float
    y: float
    shape: str = "rectangle"
    width: int = 200
    height: int = 200
    color: str | int = "#FF0000"
    stroke_width: int = 3
    fill: bool = False
    opacity: float = 1.0


Overlay = TextOverlay | ImageOverlay | ShapeOverlay


# --- Audio ---


@dataclass
class AudioTrack:
    """An extra audio file placed on the output timeline at ``start_time``."""

    url: str
    start_time: float
    duration: float
    volume: float = 1.0
    trim_start: float = 0.0
    trim_end: float | None = None
    original_duration: float | None = None
    muted: bool = False
    solo: bool = False
