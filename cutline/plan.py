"""Edit plan schema: the contract between the editor UI/CLI and the engine.

Plans arrive as the editor's JSON payload (camelCase keys). The caller is
expected to have schema-validated it already; parsing here only maps keys
onto the typed variants and rejects payloads it cannot interpret.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path

from cutline.errors import PlanningError
from cutline.models import (
    AudioTrack,
    ImageOverlay,
    ImageSource,
    Overlay,
    ShapeOverlay,
    Source,
    StreamSource,
    TextOverlay,
    TimeRange,
    VideoSource,
    is_stream_manifest,
)

AUDIO_MIX_MODES = ("mix", "replace")
OUTPUT_FORMATS = ("mp4",)
SHAPES = ("rectangle",)


@dataclass
class EditPlan:
    """Top-level edit plan. One plan renders into exactly one job."""

    sources: list[Source]
    trim_start: float
    trim_end: float
    cuts: list[TimeRange] = field(default_factory=list)
    overlays: list[Overlay] = field(default_factory=list)
    audio_tracks: list[AudioTrack] = field(default_factory=list)
    audio_mix_mode: str = "mix"
    format: str = "mp4"

    def validate(self) -> None:
        """Reject semantically impossible plans with a PlanningError."""
        if not self.sources:
            raise PlanningError("At least one source is required")
        if self.trim_start >= self.trim_end:
            raise PlanningError(
                f"trimStart ({self.trim_start}) must be before trimEnd ({self.trim_end})"
            )
        seen_ids = set()
        for overlay in self.overlays:
            if overlay.start >= overlay.end:
                raise PlanningError(
                    f"Overlay {overlay.id} has an invalid time window "
                    f"({overlay.start} >= {overlay.end})"
                )
            if overlay.id in seen_ids:
                raise PlanningError(f"Duplicate overlay id: {overlay.id}")
            seen_ids.add(overlay.id)
            if isinstance(overlay, ShapeOverlay) and overlay.shape not in SHAPES:
                raise PlanningError(
                    f"Overlay {overlay.id} has an unsupported shape: {overlay.shape}"
                )
        if self.audio_mix_mode not in AUDIO_MIX_MODES:
            raise PlanningError(f"Unknown audio mix mode: {self.audio_mix_mode}")
        if self.format not in OUTPUT_FORMATS:
            raise PlanningError(f"Unsupported output format: {self.format}")


def _parse_source(data: dict) -> Source:
    url = data["url"]
    kind = data.get("type", "video")
    if kind == "image":
        return ImageSource(url=url, duration=float(data.get("duration") or 5.0))
    if kind == "video":
        if is_stream_manifest(url):
            return StreamSource(url=url)
        return VideoSource(url=url)
    raise ValueError(f"Unknown source type: {kind!r}")


def _flag(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false, got {value!r}")
    return value


def _parse_overlay(data: dict) -> Overlay:
    kind = data.get("type")
    common = dict(
        id=data["id"],
        start=float(data["start"]),
        end=float(data["end"]),
        x=float(data["x"]),
        y=float(data["y"]),
        opacity=float(data.get("opacity", 1.0)),
    )
    if kind == "text":
        return TextOverlay(
            text=data["text"],
            font_size=int(data.get("fontSize") or 24),
            font_color=data.get("fontColor") or "white",
            background_color=data.get("backgroundColor", "black@0.5"),
            **common,
        )
    if kind == "image":
        return ImageOverlay(
            image_url=data["imageUrl"],
            width=int(data.get("width") or 200),
            height=int(data.get("height") or 200),
            **common,
        )
    if kind == "shape":
        return ShapeOverlay(
            shape=data.get("shapeType", "rectangle"),
            width=int(data.get("width") or 200),
            height=int(data.get("height") or 200),
            color=data.get("color") or "#FF0000",
            stroke_width=int(data.get("strokeWidth") or 3),
            fill=_flag(data, "fill"),
            **common,
        )
    raise ValueError(f"Unknown overlay type: {kind!r}")


def _parse_audio(data: dict) -> AudioTrack:
    return AudioTrack(
        url=data["url"],
        start_time=float(data.get("startTime", 0.0)),
        duration=float(data["duration"]),
        volume=float(data.get("volume", 1.0)),
        trim_start=float(data.get("audioTrimStart") or 0.0),
        trim_end=data.get("audioTrimEnd"),
        original_duration=data.get("originalDuration"),
        muted=_flag(data, "muted"),
        solo=_flag(data, "solo"),
    )


def parse_plan(data: dict) -> EditPlan:
    """Build an EditPlan from the editor's JSON payload."""
    if not isinstance(data, dict):
        raise ValueError("Plan must be a JSON object")

    raw_sources = data.get("sources")
    if not raw_sources and data.get("sourceUrl"):
        raw_sources = [{"url": data["sourceUrl"], "type": "video"}]
    if not raw_sources:
        raise ValueError("Plan must contain at least one source")
    if "trimStart" not in data or "trimEnd" not in data:
        raise ValueError("Plan must contain 'trimStart' and 'trimEnd' fields")

    try:
        return EditPlan(
            sources=[_parse_source(s) for s in raw_sources],
            trim_start=float(data["trimStart"]),
            trim_end=float(data["trimEnd"]),
            cuts=[
                TimeRange(start=float(c["start"]), end=float(c["end"]))
                for c in data.get("cuts", [])
            ],
            overlays=[_parse_overlay(o) for o in data.get("overlays", [])],
            audio_tracks=[_parse_audio(a) for a in data.get("audioSources", [])],
            audio_mix_mode=data.get("audioMixMode", "mix"),
            format=data.get("format", "mp4"),
        )
    except KeyError as e:
        raise ValueError(f"Plan is missing required field {e}") from e
    except (TypeError, AttributeError) as e:
        raise ValueError(f"Malformed plan: {e}") from e


def load_plan(path: str | Path) -> EditPlan:
    """Load an edit plan from a JSON file."""
    path = Path(path)
    return parse_plan(json.loads(path.read_text()))
