"""Orchestrator: renders an EditPlan through a sequence of ffmpeg passes."""

import logging
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from cutline import ffutil
from cutline.analyzers.segments import plan_keep_segments, total_duration
from cutline.config import RenderConfig
from cutline.editors.audio import PreparedAudio, prepare_audio_tracks
from cutline.editors.cut import concat_segments, extract_segment
from cutline.editors.overlays import OverlayGraph, clip_overlays, compile_overlays
from cutline.editors.sources import (
    concatenate_sources,
    fetch_image,
    normalize_sources,
    quality_warning,
)
from cutline.errors import (
    AcquisitionError,
    EngineError,
    PlanningError,
    RenderError,
    VerificationError,
)
from cutline.models import ImageOverlay, StreamSource, TimeRange
from cutline.plan import EditPlan
from cutline.policy import FinalInputs, decide_final, decide_segment
from cutline.progress import ProgressAggregator

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PLANNING = "planning"
    NORMALIZING = "normalizing"
    EXTRACTING = "extracting"
    CONCATENATING = "concatenating"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderResult:
    job_id: str
    output_path: Path
    segments: list[TimeRange] = field(default_factory=list)
    transcoded: bool = False
    warning: str | None = None

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "outputPath": str(self.output_path),
            "segments": [s.to_dict() for s in self.segments],
            "transcoded": self.transcoded,
            "warning": self.warning,
        }


def wait_for_output(path: Path, attempts: int, interval: float) -> None:
    """Poll until ``path`` exists with a non-zero size.

    ffmpeg can exit before the filesystem shows the fully flushed file.
    """
    for attempt in range(attempts):
        if path.is_file() and path.stat().st_size > 0:
            return
        if attempt < attempts - 1:
            time.sleep(interval)
    raise VerificationError(
        f"Output file {path} is missing or empty after {attempts} checks"
    )


class RenderJob:
    """One render of one EditPlan.

    Owns its id, temporary working directory, keep-segments and progress
    counter; nothing is shared with other jobs except the read-only config.
    """

    def __init__(
        self,
        plan: EditPlan,
        config: RenderConfig | None = None,
        output_dir: Path | None = None,
        on_progress: Callable[[str, int], None] | None = None,
        job_id: str | None = None,
    ) -> None:
        self.plan = plan
        self.config = config or RenderConfig()
        self.output_dir = Path(output_dir or self.config.output_dir)
        self.job_id = job_id or uuid.uuid4().hex
        self.state = JobState.PLANNING
        self.segments: list[TimeRange] = []
        self.work_dir: Path | None = None
        self.result: RenderResult | None = None
        self.error: RenderError | None = None
        self._on_progress = on_progress
        self.progress: ProgressAggregator | None = None

    def _enter(self, state: JobState) -> None:
        logger.info("[%s] %s", self.job_id, state.value.capitalize())
        self.state = state
        if self.progress:
            self.progress.notify(state.value)

    def prepare(self) -> list[TimeRange]:
        """Run the planning stage alone so callers can reject a plan up front."""
        if self.progress is None:
            try:
                self.segments = self._plan()
            except RenderError as e:
                self._fail(e)
                raise
        return self.segments

    def run(self) -> RenderResult:
        """Execute the pipeline; the working directory is removed on every path."""
        output_path = self.output_dir / f"{self.job_id}.{self.plan.format}"
        try:
            if self.progress is None:
                self.segments = self._plan()
            with tempfile.TemporaryDirectory(prefix=f"cutline-{self.job_id}-") as tmp:
                self.work_dir = Path(tmp)
                self.result = self._render(Path(tmp), output_path)
            self.work_dir = None
        except RenderError as e:
            self._fail(e, output_path)
            raise
        except OSError as e:
            err = EngineError(f"I/O failure while rendering: {e}")
            self._fail(err, output_path)
            raise err from e
        except Exception as e:
            err = EngineError(f"Unexpected failure while rendering: {e}")
            self._fail(err, output_path)
            raise err from e

        self.state = JobState.DONE
        self.progress.complete()
        logger.info("[%s] Done: %s", self.job_id, output_path)
        return self.result

    def _fail(self, error: RenderError, output_path: Path | None = None) -> None:
        if error.stage is None:
            error.stage = self.state.value
        self.error = error
        self.state = JobState.FAILED
        self.work_dir = None
        if output_path is not None:
            output_path.unlink(missing_ok=True)
        logger.error("[%s] Failed during %s: %s", self.job_id, error.stage, error.message)

    # --- Stages ---

    def _plan(self) -> list[TimeRange]:
        self.plan.validate()
        segments = plan_keep_segments(
            self.plan.trim_start,
            self.plan.trim_end,
            self.plan.cuts,
            min_duration=self.config.min_cut_duration,
        )
        if not segments:
            raise PlanningError("No video content would remain after trimming/cuts")

        duration = total_duration(segments)
        logger.info(
            "[%s] Starting render with %d source(s): %d segment(s), total duration: %.2fs",
            self.job_id, len(self.plan.sources), len(segments), duration,
        )
        self.progress = ProgressAggregator(
            duration,
            on_progress=self._on_progress,
            weights={
                "extract": self.config.extract_weight,
                "encode": self.config.encode_weight,
            },
        )
        self.progress.start("planning")
        return segments

    def _render(self, work_dir: Path, output_path: Path) -> RenderResult:
        config = self.config
        plan = self.plan
        duration = total_duration(self.segments)
        warning = quality_warning(plan.sources)
        has_stream = any(isinstance(s, StreamSource) for s in plan.sources)

        # --- Normalizing ---
        self._enter(JobState.NORMALIZING)
        normalized = normalize_sources(plan.sources, work_dir, config)
        transcoded = any(n.transcoded for n in normalized)
        if len(normalized) > 1:
            logger.info("[%s] Concatenating %d sources...", self.job_id, len(normalized))
            source_path, reencoded = concatenate_sources(
                plan.sources, normalized, work_dir, config
            )
            transcoded = transcoded or reencoded
        else:
            source_path = normalized[0].path

        overlays = clip_overlays(plan.overlays, duration)
        image_paths = self._fetch_overlay_images(overlays, work_dir)
        audio = self._prepare_audio(work_dir, duration)

        # --- Extracting ---
        self._enter(JobState.EXTRACTING)
        segment_paths: list[Path] = []
        for index, segment in enumerate(self.segments):
            decision = decide_segment(segment.duration, bool(overlays), config)
            transcoded = transcoded or decision.reencode
            stage = self.progress.track("extract", segment.duration)
            segment_paths.append(
                extract_segment(
                    source_path,
                    segment,
                    work_dir / f"segment-{index}.mp4",
                    decision,
                    config,
                    on_progress=stage.update,
                )
            )
            stage.done()

        # --- Concatenating ---
        self._enter(JobState.CONCATENATING)
        graph = (
            compile_overlays(overlays, image_paths, duration)
            if overlays else OverlayGraph()
        )
        decision = decide_final(
            FinalInputs(
                has_overlays=bool(graph),
                segment_count=len(self.segments),
                shortest_segment=min(s.duration for s in self.segments),
                has_stream=has_stream,
                has_audio_tracks=bool(audio),
            ),
            config,
        )
        transcoded = transcoded or decision.reencode
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stage = self.progress.track("encode", duration)
        concat_segments(
            segment_paths,
            output_path,
            work_dir,
            decision,
            config,
            overlay_graph=graph,
            audio=audio,
            audio_mode=plan.audio_mix_mode,
            on_progress=stage.update,
        )
        stage.done()

        # --- Verifying ---
        self._enter(JobState.VERIFYING)
        wait_for_output(output_path, config.verify_attempts, config.verify_interval)

        return RenderResult(
            job_id=self.job_id,
            output_path=output_path,
            segments=list(self.segments),
            transcoded=transcoded,
            warning=warning,
        )

    def _fetch_overlay_images(self, overlays, work_dir: Path) -> dict[int, Path]:
        images = [o for o in overlays if isinstance(o, ImageOverlay)]
        if not images:
            return {}
        logger.info("[%s] Downloading %d image overlay(s)...", self.job_id, len(images))
        paths: dict[int, Path] = {}
        for overlay in images:
            try:
                paths[overlay.id] = fetch_image(
                    overlay.image_url,
                    work_dir / f"overlay-{overlay.id}",
                    self.config.download_timeout,
                )
            except RenderError as e:
                raise AcquisitionError(
                    f"Failed to download image overlay {overlay.image_url}: {e.message}",
                    url=overlay.image_url,
                ) from e
        return paths

    def _prepare_audio(self, work_dir: Path, duration: float) -> list[PreparedAudio]:
        if not self.plan.audio_tracks:
            return []
        return prepare_audio_tracks(self.plan.audio_tracks, work_dir, duration, self.config)


def render(
    plan: EditPlan,
    config: RenderConfig | None = None,
    output_dir: Path | None = None,
    on_progress: Callable[[str, int], None] | None = None,
) -> RenderResult:
    """Render ``plan`` and return the result.

    Args:
        plan: Parsed edit plan.
        config: Render settings; defaults apply when omitted.
        output_dir: Where the output file is written (defaults to config).
        on_progress: Optional callback(stage_name, percent).
    """
    ffutil.check_ffmpeg()
    return RenderJob(plan, config, output_dir, on_progress).run()
