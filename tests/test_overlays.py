"""Tests for the overlay filter-graph compiler."""

import re
from pathlib import Path

import pytest

from cutline.editors.overlays import (
    OverlayGraph,
    clip_overlays,
    color_to_hex,
    compile_overlays,
    escape_text,
)
from cutline.models import ImageOverlay, ShapeOverlay, TextOverlay

ENABLE_RE = re.compile(r"between\(t,([\d.]+),([\d.]+)\)")


def _text(id=1, start=1.0, end=4.0, **kw) -> TextOverlay:
    return TextOverlay(id=id, start=start, end=end, x=10, y=20, text=kw.pop("text", "Hi"), **kw)


def _image(id=2, start=0.0, end=5.0, **kw) -> ImageOverlay:
    return ImageOverlay(id=id, start=start, end=end, x=50, y=50, image_url=f"https://x/{id}.png", **kw)


def _shape(id=3, start=2.0, end=3.0, **kw) -> ShapeOverlay:
    return ShapeOverlay(id=id, start=start, end=end, x=25, y=75, **kw)


def _active_windows(graph: OverlayGraph, t: float) -> int:
    return sum(
        1 for a, b in ENABLE_RE.findall(graph.filter_complex)
        if float(a) <= t <= float(b)
    )


class TestEmptyGraph:
    def test_no_overlays(self):
        graph = compile_overlays([], {}, 10.0)
        assert graph.filter_complex == ""
        assert graph.output_stream == ""
        assert graph.inputs == []
        assert not graph

    def test_all_outside_output(self):
        graph = compile_overlays([_text(start=20, end=30)], {}, 10.0)
        assert not graph


class TestTextOverlay:
    def test_with_background_box(self):
        graph = compile_overlays([_text()], {}, 10.0)
        assert graph.filter_complex == (
            "[0:v]drawtext=text='Hi':fontsize=24:fontcolor=white@1"
            ":box=1:boxcolor=black@0.5:boxborderw=5"
            ":x=W*10/100:y=H*20/100:enable='between(t,1,4)'[v1]"
        )
        assert graph.output_stream == "v1"

    @pytest.mark.parametrize("bg", ["transparent", "none", ""])
    def test_transparent_background(self, bg):
        graph = compile_overlays([_text(background_color=bg)], {}, 10.0)
        assert "box=1" not in graph.filter_complex

    def test_escaping(self):
        assert escape_text("a:b,c'd[e]") == "a\\:b\\,c\\'d\\[e\\]"

    def test_opacity(self):
        graph = compile_overlays([_text(opacity=0.25, font_color="red")], {}, 10.0)
        assert "fontcolor=red@0.25" in graph.filter_complex


class TestImageOverlay:
    def test_loop_scale_overlay(self):
        graph = compile_overlays([_image()], {2: Path("/tmp/logo.png")}, 4.5)
        assert graph.inputs == [Path("/tmp/logo.png")]
        assert graph.filter_complex == (
            "[1:v]loop=loop=-1:size=135:start=0[looped1];"
            "[looped1]scale=w=200:h=200:force_original_aspect_ratio=decrease[scaled1];"
            "[0:v][scaled1]overlay=W*50/100:H*50/100:shortest=1"
            ":enable='between(t,0,4.5)'[v1]"
        )

    def test_translucent_image(self):
        graph = compile_overlays([_image(opacity=0.5)], {2: Path("a.png")}, 10.0)
        assert "format=rgba,colorchannelmixer=aa=0.5" in graph.filter_complex

    def test_inputs_follow_sorted_order(self):
        late = _image(id=7, start=6.0, end=8.0)
        early = _image(id=8, start=1.0, end=2.0)
        paths = {7: Path("late.png"), 8: Path("early.png")}
        graph = compile_overlays([late, early], paths, 10.0, first_input_index=1)
        assert graph.inputs == [Path("early.png"), Path("late.png")]
        assert "[1:v]loop" in graph.filter_complex.split(";")[0]

    def test_missing_image_skipped(self):
        graph = compile_overlays([_image()], {}, 10.0)
        assert not graph


class TestShapeOverlay:
    def test_stroked_rectangle(self):
        graph = compile_overlays([_shape(stroke_width=4)], {}, 10.0)
        assert graph.filter_complex == (
            "[0:v]drawbox=x=iw*25/100:y=ih*75/100:w=200:h=200"
            ":color=0xFF0000FF:t=4:enable='between(t,2,3)'[v1]"
        )

    def test_filled_rectangle(self):
        graph = compile_overlays([_shape(fill=True, color="#00ff00", opacity=0.5)], {}, 10.0)
        assert ":color=0x00FF0080:t=fill:" in graph.filter_complex

    def test_unsupported_shape(self):
        with pytest.raises(ValueError, match="Unsupported shape"):
            compile_overlays([_shape(shape="circle")], {}, 10.0)


class TestColorToHex:
    def test_opaque(self):
        assert color_to_hex("#336699") == "0x336699FF"

    def test_alpha_from_opacity(self):
        assert color_to_hex("#336699", 0.2) == "0x33669933"

    def test_decimal_color(self):
        assert color_to_hex(16711680) == "0xFF0000FF"

    def test_invalid_falls_back_to_red(self):
        assert color_to_hex("blue") == "0xFF0000FF"


class TestChaining:
    def test_stages_chain_in_start_order(self):
        overlays = [_shape(start=5, end=6), _text(start=1, end=2), _image(start=3, end=4)]
        graph = compile_overlays(overlays, {2: Path("i.png")}, 10.0)
        chain = graph.filter_complex
        assert chain.index("drawtext") < chain.index("overlay=") < chain.index("drawbox")
        assert "[0:v]drawtext" in chain
        assert "[v1][scaled1]overlay" in chain
        assert "[v2]drawbox" in chain
        assert graph.output_stream == "v3"

    def test_deterministic(self):
        overlays = [_text(), _image(), _shape()]
        paths = {2: Path("i.png")}
        first = compile_overlays(overlays, paths, 10.0)
        second = compile_overlays(list(overlays), dict(paths), 10.0)
        assert first == second

    def test_disjoint_windows_are_gated(self):
        overlays = [_text(start=1, end=2), _shape(start=5, end=6)]
        graph = compile_overlays(overlays, {}, 10.0)
        assert ENABLE_RE.findall(graph.filter_complex) == [("1", "2"), ("5", "6")]
        for t in (0.0, 0.5, 3.0, 4.9, 7.0, 9.9):
            assert _active_windows(graph, t) == 0
        assert _active_windows(graph, 1.5) == 1
        assert _active_windows(graph, 5.5) == 1


class TestClipOverlays:
    def test_clips_to_output_duration(self):
        clipped = clip_overlays([_text(start=-2, end=15)], 10.0)
        assert (clipped[0].start, clipped[0].end) == (0.0, 10.0)

    def test_stable_sort(self):
        a, b = _text(id=1, start=2), _text(id=2, start=2)
        assert [o.id for o in clip_overlays([a, b], 10.0)] == [1, 2]
