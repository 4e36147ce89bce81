"""Tests for the render orchestrator, driven through a fake ffmpeg."""

from pathlib import Path
from unittest.mock import patch

import pytest

from cutline.config import RenderConfig
from cutline.editors.sources import QUALITY_WARNING
from cutline.engine import JobState, RenderJob, RenderResult, render, wait_for_output
from cutline.errors import AcquisitionError, EngineError, PlanningError, VerificationError
from cutline.ffutil import FFmpegNotFoundError
from cutline.models import (
    ImageOverlay,
    ShapeOverlay,
    StreamSource,
    TextOverlay,
    TimeRange,
    VideoSource,
)
from cutline.plan import EditPlan

STREAM_URL = "https://cdn.example.com/live/stream.mpd"


class Recorder:
    def __init__(self):
        self.events: list[tuple[str, int]] = []

    def __call__(self, stage: str, percent: int) -> None:
        self.events.append((stage, percent))

    @property
    def percents(self) -> list[int]:
        return [p for _, p in self.events]


def _plan(sources, **kw) -> EditPlan:
    kw.setdefault("trim_start", 0.0)
    kw.setdefault("trim_end", 10.0)
    return EditPlan(sources=sources, **kw)


@pytest.fixture
def out_dir(tmp_path) -> Path:
    return tmp_path / "out"


class TestRenderResult:
    def test_to_dict(self):
        result = RenderResult("abc", Path("out/abc.mp4"), [TimeRange(0, 2)], True, None)
        assert result.to_dict() == {
            "jobId": "abc",
            "outputPath": str(Path("out/abc.mp4")),
            "segments": [{"start": 0, "end": 2}],
            "transcoded": True,
            "warning": None,
        }


class TestWaitForOutput:
    def test_present(self, tmp_path):
        path = tmp_path / "out.mp4"
        path.write_bytes(b"x")
        wait_for_output(path, attempts=1, interval=0)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "out.mp4"
        path.touch()
        with pytest.raises(VerificationError):
            wait_for_output(path, attempts=3, interval=0)


class TestPlanning:
    def test_everything_cut(self, fake_ffmpeg, local_video, out_dir):
        plan = _plan([VideoSource(str(local_video))], cuts=[TimeRange(0, 10)])
        job = RenderJob(plan, output_dir=out_dir)

        with pytest.raises(PlanningError, match="No video content") as exc:
            job.run()

        assert exc.value.stage == "planning"
        assert job.state is JobState.FAILED
        assert fake_ffmpeg.calls == []

    def test_prepare_returns_segments(self, local_video, out_dir):
        plan = _plan([VideoSource(str(local_video))], cuts=[TimeRange(2, 4)])
        rec = Recorder()
        job = RenderJob(plan, output_dir=out_dir, on_progress=rec)
        assert job.prepare() == [TimeRange(0, 2), TimeRange(4, 10)]
        assert rec.events == [("planning", 1)]


class TestSingleSource:
    def test_stream_copy_path(self, fake_ffmpeg, local_video, out_dir):
        rec = Recorder()
        job = RenderJob(
            _plan([VideoSource(str(local_video))]), output_dir=out_dir,
            on_progress=rec, job_id="job1",
        )

        result = job.run()

        assert result.output_path == out_dir / "job1.mp4"
        assert result.output_path.exists()
        assert result.transcoded is False
        assert result.warning is None
        assert job.state is JobState.DONE
        extract, final = fake_ffmpeg.calls
        assert "libx264" not in extract and "libx264" not in final
        assert not Path(extract[-1]).parent.exists()

        assert rec.percents == sorted(rec.percents)
        assert rec.events[-1] == ("Done", 100)
        assert 100 not in rec.percents[:-1]
        stages = [s for s, _ in rec.events]
        for state in ("normalizing", "extracting", "concatenating", "verifying"):
            assert state in stages

    def test_cuts_produce_one_extraction_per_segment(self, fake_ffmpeg, local_video, out_dir):
        plan = _plan([VideoSource(str(local_video))], cuts=[TimeRange(3, 5), TimeRange(7, 8)])
        result = RenderJob(plan, output_dir=out_dir).run()

        assert len(result.segments) == 3
        assert len(fake_ffmpeg.find("segment-")) == 3
        assert result.transcoded is True

    def test_overlays_gated_in_final_pass(self, fake_ffmpeg, local_video, out_dir):
        overlay = TextOverlay(id=1, start=1, end=3, x=5, y=5, text="Hello")
        plan = _plan([VideoSource(str(local_video))], overlays=[overlay])

        result = RenderJob(plan, output_dir=out_dir).run()

        final = fake_ffmpeg.calls[-1]
        graph = final[final.index("-filter_complex") + 1]
        assert "drawtext=text='Hello'" in graph
        assert "enable='between(t,1,3)'" in graph
        extract = fake_ffmpeg.calls[0]
        assert extract[extract.index("-crf") + 1] == "10"
        assert result.transcoded is True

    def test_single_stream_quality(self, fake_ffmpeg, out_dir):
        result = RenderJob(_plan([StreamSource(STREAM_URL)]), output_dir=out_dir).run()

        transcode = fake_ffmpeg.find(STREAM_URL)[0]
        assert transcode[transcode.index("-crf") + 1] == "18"
        assert result.transcoded is True


class TestMultiSource:
    def test_stream_and_flat_warns(self, fake_ffmpeg, local_video, out_dir):
        plan = _plan([StreamSource(STREAM_URL), VideoSource(str(local_video))])

        result = RenderJob(plan, output_dir=out_dir).run()

        assert result.warning == QUALITY_WARNING
        transcode = fake_ffmpeg.find(STREAM_URL)[0]
        assert transcode[transcode.index("-crf") + 1] == "10"
        assert fake_ffmpeg.find("concatenated.mp4")


class TestFailures:
    def test_ffmpeg_failure_cleans_up(self, fake_ffmpeg, local_video, out_dir):
        fake_ffmpeg.fail_when = "segment-0"
        job = RenderJob(_plan([VideoSource(str(local_video))]), output_dir=out_dir, job_id="job2")

        with pytest.raises(EngineError) as exc:
            job.run()

        assert exc.value.stage == "extracting"
        assert "Conversion failed!" in exc.value.diagnostics
        assert job.state is JobState.FAILED
        assert job.error is exc.value
        assert not (out_dir / "job2.mp4").exists()
        assert not Path(fake_ffmpeg.calls[0][-1]).parent.exists()

    def test_missing_source(self, fake_ffmpeg, tmp_path, out_dir):
        job = RenderJob(_plan([VideoSource(str(tmp_path / "gone.mp4"))]), output_dir=out_dir)
        with pytest.raises(AcquisitionError) as exc:
            job.run()
        assert exc.value.stage == "normalizing"
        assert fake_ffmpeg.calls == []

    def test_output_never_appears(self, fake_ffmpeg, local_video, out_dir):
        fake_ffmpeg.skip_output_when = "job3.mp4"
        config = RenderConfig(verify_attempts=2, verify_interval=0)
        job = RenderJob(
            _plan([VideoSource(str(local_video))]), config=config,
            output_dir=out_dir, job_id="job3",
        )

        with pytest.raises(VerificationError) as exc:
            job.run()

        assert exc.value.stage == "verifying"

    def test_unsupported_shape_rejected_before_any_work(self, fake_ffmpeg, local_video, out_dir):
        overlay = ShapeOverlay(id=1, start=0, end=2, x=0, y=0, shape="circle")
        job = RenderJob(_plan([VideoSource(str(local_video))], overlays=[overlay]), output_dir=out_dir)

        with pytest.raises(PlanningError, match="unsupported shape"):
            job.run()

        assert job.state is JobState.FAILED
        assert fake_ffmpeg.calls == []

    @patch("cutline.engine.compile_overlays", side_effect=RuntimeError("graph exploded"))
    def test_unexpected_error_fails_job(self, mock_compile, fake_ffmpeg, local_video, out_dir):
        overlay = TextOverlay(id=1, start=0, end=2, x=0, y=0, text="Hi")
        job = RenderJob(
            _plan([VideoSource(str(local_video))], overlays=[overlay]),
            output_dir=out_dir, job_id="job5",
        )

        with pytest.raises(EngineError, match="graph exploded") as exc:
            job.run()

        assert isinstance(exc.value.__cause__, RuntimeError)
        assert exc.value.stage == "concatenating"
        assert job.state is JobState.FAILED
        assert job.error is exc.value
        assert not (out_dir / "job5.mp4").exists()
        assert not Path(fake_ffmpeg.calls[0][-1]).parent.exists()

    def test_duplicate_image_overlay_ids_rejected(self, fake_ffmpeg, local_video, local_image, out_dir):
        overlays = [
            ImageOverlay(id=7, start=0, end=2, x=0, y=0, image_url=str(local_image)),
            ImageOverlay(id=7, start=3, end=5, x=0, y=0, image_url=str(local_image)),
        ]
        job = RenderJob(_plan([VideoSource(str(local_video))], overlays=overlays), output_dir=out_dir)

        with pytest.raises(PlanningError, match="Duplicate overlay id"):
            job.run()
        assert fake_ffmpeg.calls == []

    def test_progress_never_reaches_100_on_failure(self, fake_ffmpeg, local_video, out_dir):
        fake_ffmpeg.fail_when = "job4.mp4"
        rec = Recorder()
        job = RenderJob(
            _plan([VideoSource(str(local_video))]), output_dir=out_dir,
            on_progress=rec, job_id="job4",
        )
        with pytest.raises(EngineError):
            job.run()
        assert 100 not in rec.percents


class TestRender:
    @patch("cutline.ffutil.shutil.which", return_value=None)
    def test_requires_ffmpeg(self, mock_which, local_video):
        with pytest.raises(FFmpegNotFoundError):
            render(_plan([VideoSource(str(local_video))]))
