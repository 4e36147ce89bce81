"""Overlay compiler: builds one filter_complex chain for timed overlays."""

import logging
import math
import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from cutline.models import ImageOverlay, Overlay, ShapeOverlay, TextOverlay

logger = logging.getLogger(__name__)

BASE_STREAM = "0:v"
LOOP_FPS = 30

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}$")
_TRANSPARENT = ("", "none", "transparent")


@dataclass
class OverlayGraph:
    """A compiled overlay chain.

    ``inputs`` lists the extra image files the graph reads, in the order
    they must be added as ffmpeg inputs starting at ``first_input_index``.
    An empty graph is falsy and means no overlay processing is needed.
    """

    filter_complex: str = ""
    output_stream: str = ""
    inputs: list[Path] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.filter_complex)


def _num(value: float) -> str:
    """Format a number with up to three decimals and no trailing zeros."""
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def escape_text(text: str) -> str:
    """Escape a string for use inside a quoted drawtext ``text=`` value."""
    return (
        text.replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "\\'")
        .replace("[", "\\[")
        .replace("]", "\\]")
        .replace(",", "\\,")
    )


def color_to_hex(color: str | int, opacity: float = 1.0) -> str:
    """Convert ``#RRGGBB`` (or a decimal RGB integer) to ffmpeg ``0xRRGGBBAA``."""
    if isinstance(color, int):
        hex_part = f"{color & 0xFFFFFF:06X}"
    else:
        hex_part = color.lstrip("#")
    if not _HEX_RE.match(hex_part):
        logger.warning("Invalid hex color %r, using default FF0000", color)
        hex_part = "FF0000"

    alpha = round(min(max(opacity, 0.0), 1.0) * 255) if opacity < 1 else 255
    return f"0x{hex_part.upper()}{alpha:02X}"


def _enable(overlay: Overlay) -> str:
    return f"enable='between(t,{_num(overlay.start)},{_num(overlay.end)})'"


def _text_stage(overlay: TextOverlay, src: str, out: str) -> str:
    opts = [
        f"text='{escape_text(overlay.text)}'",
        f"fontsize={overlay.font_size}",
        f"fontcolor={overlay.font_color}@{_num(overlay.opacity)}",
    ]
    bg = (overlay.background_color or "").strip()
    if bg.lower() not in _TRANSPARENT:
        opts += ["box=1", f"boxcolor={bg}", "boxborderw=5"]
    opts += [f"x=W*{_num(overlay.x)}/100", f"y=H*{_num(overlay.y)}/100", _enable(overlay)]
    return f"[{src}]drawtext={':'.join(opts)}[{out}]"


def _image_stage(
    overlay: ImageOverlay, input_index: int, src: str, out: str, total_duration: float
) -> str:
    loop_size = math.ceil(total_duration * LOOP_FPS)
    looped = f"looped{input_index}"
    scaled = f"scaled{input_index}"
    parts = [
        f"[{input_index}:v]loop=loop=-1:size={loop_size}:start=0[{looped}]",
    ]
    scale = (
        f"[{looped}]scale=w={overlay.width}:h={overlay.height}"
        f":force_original_aspect_ratio=decrease"
    )
    if overlay.opacity < 1:
        scale += f",format=rgba,colorchannelmixer=aa={_num(overlay.opacity)}"
    parts.append(f"{scale}[{scaled}]")
    parts.append(
        f"[{src}][{scaled}]overlay=W*{_num(overlay.x)}/100:H*{_num(overlay.y)}/100"
        f":shortest=1:{_enable(overlay)}[{out}]"
    )
    return ";".join(parts)


def _shape_stage(overlay: ShapeOverlay, src: str, out: str) -> str:
    if overlay.shape != "rectangle":
        raise ValueError(f"Unsupported shape: {overlay.shape}")
    thickness = "fill" if overlay.fill else str(overlay.stroke_width)
    return (
        f"[{src}]drawbox=x=iw*{_num(overlay.x)}/100:y=ih*{_num(overlay.y)}/100"
        f":w={overlay.width}:h={overlay.height}"
        f":color={color_to_hex(overlay.color, overlay.opacity)}"
        f":t={thickness}:{_enable(overlay)}[{out}]"
    )


def clip_overlays(overlays: list[Overlay], total_duration: float) -> list[Overlay]:
    """Sort by start and clip each window to ``[0, total_duration]``.

    Overlays whose clipped window is empty are dropped.
    """
    clipped: list[Overlay] = []
    for overlay in sorted(overlays, key=lambda o: o.start):
        start = max(overlay.start, 0.0)
        end = min(overlay.end, total_duration)
        if end <= start:
            logger.info("Overlay %s lies outside the output, skipping", overlay.id)
            continue
        if (start, end) != (overlay.start, overlay.end):
            overlay = replace(overlay, start=start, end=end)
        clipped.append(overlay)
    return clipped


def compile_overlays(
    overlays: list[Overlay],
    image_paths: dict[int, Path],
    total_duration: float,
    first_input_index: int = 1,
) -> OverlayGraph:
    """Chain one filter stage per overlay onto the base video stream.

    Stage *i* reads the output of stage *i-1* and writes ``v{i}``; every
    stage is gated with ``between(t,start,end)``. ``image_paths`` maps image
    overlay ids to local files.
    """
    active = clip_overlays(overlays, total_duration)
    if not active:
        return OverlayGraph()

    stages: list[str] = []
    inputs: list[Path] = []
    current = BASE_STREAM

    for overlay in active:
        out = f"v{len(stages) + 1}"
        if isinstance(overlay, TextOverlay):
            stage = _text_stage(overlay, current, out)
        elif isinstance(overlay, ImageOverlay):
            path = image_paths.get(overlay.id)
            if path is None:
                logger.warning("No local file for image overlay %s, skipping", overlay.id)
                continue
            input_index = first_input_index + len(inputs)
            inputs.append(path)
            stage = _image_stage(overlay, input_index, current, out, total_duration)
        elif isinstance(overlay, ShapeOverlay):
            stage = _shape_stage(overlay, current, out)
        else:
            raise TypeError(f"Unknown overlay type: {type(overlay).__name__}")
        stages.append(stage)
        current = out

    if not stages:
        return OverlayGraph()

    logger.debug("Overlay graph: %d stage(s), output [%s]", len(stages), current)
    return OverlayGraph(";".join(stages), current, inputs)
