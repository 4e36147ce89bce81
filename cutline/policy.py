"""Stream-copy vs. re-encode decisions, expressed as ordered rule tables.

Each table is a list of ``(reason, predicate)`` rows; the first matching row
forces a re-encode and its reason is reported. No match means stream copy.
The quality profile is chosen separately so both halves can be tested alone.
"""

from dataclasses import dataclass, field
from typing import Callable

from cutline.config import RenderConfig

COPY = "copy"
REENCODE = "reencode"


@dataclass(frozen=True)
class QualityProfile:
    name: str
    preset: str
    crf: int


@dataclass(frozen=True)
class EncodeDecision:
    mode: str
    profile: QualityProfile | None = None
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reencode(self) -> bool:
        return self.mode == REENCODE


@dataclass(frozen=True)
class SourceMix:
    """What the normalized sources of a plan look like."""

    source_count: int
    has_stream: bool = False
    has_image: bool = False
    mismatched_streams: bool = False


@dataclass(frozen=True)
class FinalInputs:
    """Inputs of the final concatenation/encode decision."""

    has_overlays: bool
    segment_count: int
    shortest_segment: float
    has_stream: bool = False
    has_audio_tracks: bool = False


Rule = tuple[str, Callable[..., bool]]


# --- Quality profiles ---


def output_profile(config: RenderConfig) -> QualityProfile:
    return QualityProfile("output", config.encode.preset, config.encode.crf)


def stream_output_profile(config: RenderConfig) -> QualityProfile:
    # Stream material has already been through one lossy pass.
    return QualityProfile("stream", config.stream.preset, config.stream.crf_single)


def intermediate_profile(config: RenderConfig) -> QualityProfile:
    return QualityProfile("intermediate", config.encode.preset, config.intermediate_crf)


def stream_transcode_profile(config: RenderConfig, multi_source: bool) -> QualityProfile:
    """Near-lossless when another re-encode follows (multi-source), else normal."""
    if multi_source:
        return QualityProfile("stream-multi", config.stream.preset, config.stream.crf_multi)
    return QualityProfile("stream-single", config.stream.preset, config.stream.crf_single)


# --- Tables ---

SOURCE_CONCAT_RULES: list[Rule] = [
    ("adaptive stream source present", lambda m: m.has_stream),
    ("image source present", lambda m: m.has_image),
    ("codec, resolution or frame rate differ", lambda m: m.mismatched_streams),
]

SEGMENT_RULES: list[Rule] = [
    ("overlays require re-encoding", lambda duration, has_overlays, minimum: has_overlays),
    ("segment shorter than minimum", lambda duration, has_overlays, minimum: duration < minimum),
]

FINAL_RULES: list[Rule] = [
    ("overlays present", lambda f, minimum: f.has_overlays),
    ("audio tracks present", lambda f, minimum: f.has_audio_tracks),
    ("multiple segments", lambda f, minimum: f.segment_count > 1),
    ("segment shorter than minimum", lambda f, minimum: f.shortest_segment < minimum),
]


def _evaluate(rules: list[Rule], *args) -> tuple[str, ...]:
    return tuple(reason for reason, predicate in rules if predicate(*args))


def decide_source_concat(mix: SourceMix, config: RenderConfig) -> EncodeDecision:
    reasons = _evaluate(SOURCE_CONCAT_RULES, mix)
    if not reasons:
        return EncodeDecision(COPY)
    profile = stream_output_profile(config) if mix.has_stream else output_profile(config)
    return EncodeDecision(REENCODE, profile, reasons)


def decide_segment(
    duration: float, has_overlays: bool, config: RenderConfig
) -> EncodeDecision:
    reasons = _evaluate(SEGMENT_RULES, duration, has_overlays, config.min_transcode_segment)
    if not reasons:
        return EncodeDecision(COPY)
    return EncodeDecision(REENCODE, intermediate_profile(config), reasons)


def decide_final(inputs: FinalInputs, config: RenderConfig) -> EncodeDecision:
    reasons = _evaluate(FINAL_RULES, inputs, config.min_transcode_segment)
    if not reasons:
        return EncodeDecision(COPY)
    profile = stream_output_profile(config) if inputs.has_stream else output_profile(config)
    return EncodeDecision(REENCODE, profile, reasons)
