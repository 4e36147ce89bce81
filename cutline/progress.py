"""Job-wide progress aggregation across weighted ffmpeg stages."""

import logging
import math
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {"extract": 0.7, "encode": 0.3}


class StageProgress:
    """Progress of one ffmpeg invocation within a weighted stage."""

    def __init__(
        self, aggregator: "ProgressAggregator", stage: str, duration: float, weight: float
    ) -> None:
        self._aggregator = aggregator
        self.stage = stage
        self.duration = duration
        self.weighted_duration = duration * weight
        self._base = aggregator.work_done
        self._finished = False

    def update(self, elapsed: float) -> None:
        """Report ``elapsed`` seconds of this invocation's media processed."""
        if self.duration > 0:
            fraction = min(max(elapsed / self.duration, 0.0), 1.0)
        else:
            fraction = 1.0
        work = self._base + fraction * self.weighted_duration
        self._aggregator.publish(self.stage, work / self._aggregator.total_work)

    def done(self) -> None:
        """Mark the invocation finished and credit its full weighted work."""
        if self._finished:
            return
        self._finished = True
        self._aggregator.work_done = self._base + self.weighted_duration
        self._aggregator.publish(
            self.stage, self._aggregator.work_done / self._aggregator.total_work
        )


class ProgressAggregator:
    """Maps per-invocation progress onto one monotonic job percentage.

    Total work is ``total_duration`` times the sum of the stage weights. A
    percentage is published only when it is strictly greater than the last
    one, and it stays below 100 until :meth:`complete` is called.
    """

    def __init__(
        self,
        total_duration: float,
        on_progress: Callable[[str, int], None] | None = None,
        weights: dict[str, float] | None = None,
    ) -> None:
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        self.total_duration = total_duration
        self.total_work = total_duration * sum(self.weights.values())
        self.work_done = 0.0
        self.last_published = 0
        self._on_progress = on_progress

    def start(self, stage: str = "Starting") -> None:
        self._emit(stage, 1)

    def track(self, stage: str, duration: float) -> StageProgress:
        """Begin an invocation of ``stage`` covering ``duration`` seconds."""
        if stage not in self.weights:
            raise KeyError(f"Unknown progress stage: {stage}")
        return StageProgress(self, stage, duration, self.weights[stage])

    def publish(self, stage: str, fraction: float) -> None:
        if self.total_work <= 0:
            return
        # Round half up, then hold below 100 until the job is verified.
        percent = math.floor(fraction * 100 + 0.5)
        self._emit(stage, min(max(percent, 1), 99))

    def notify(self, stage: str) -> None:
        """Report a stage change without moving the percentage."""
        if self._on_progress:
            self._on_progress(stage, self.last_published)

    def complete(self, stage: str = "Done") -> None:
        self._emit(stage, 100)

    def _emit(self, stage: str, percent: int) -> None:
        if percent <= self.last_published:
            return
        self.last_published = percent
        logger.debug("Progress %d%% (%s)", percent, stage)
        if self._on_progress:
            self._on_progress(stage, percent)
