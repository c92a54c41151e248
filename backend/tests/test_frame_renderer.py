"""Tests for Pillow frame rasterization."""

import pytest
from PIL import Image

from voxport.render.frame_renderer import (
    FrameRenderer,
    RenderTask,
    _parse_hex_color,
    frame_size,
)
from voxport.render.storyboard import FrameDescriptor, LineWord
from voxport.schemas.export import (
    BackgroundSpec,
    StyleTemplate,
    TypographySpec,
    WatermarkSpec,
)

RED = (255, 0, 0)


@pytest.fixture
def red_template() -> StyleTemplate:
    """Black background, large type, pure red highlight, no watermark."""
    return StyleTemplate(
        aspect="square",
        background=BackgroundSpec(type="solid", colors=("#000000",)),
        typography=TypographySpec(font_size_px=96, highlight_color="#FF0000"),
        watermark=WatermarkSpec(position="none"),
    )


def _frame(active: bool, opacity: float = 1.0) -> FrameDescriptor:
    state = "active" if active else "spoken"
    return FrameDescriptor(
        index=0,
        kind="word" if active else "pause",
        start_ms=0,
        end_ms=400,
        lines=((LineWord("HELLO", state), LineWord("MOON", "upcoming")),),
        opacity=opacity,
    )


def _count(image: Image.Image, rgb: tuple[int, int, int]) -> int:
    return sum(1 for pixel in image.getdata() if pixel == rgb)


class TestParseHexColor:
    def test_six_digit(self):
        assert _parse_hex_color("#7C5DFA") == (124, 93, 250)

    def test_short_form(self):
        assert _parse_hex_color("#fff") == (255, 255, 255)

    def test_invalid_uses_default(self):
        assert _parse_hex_color("not-a-colour", "0a0a0a") == (10, 10, 10)


class TestFrameSize:
    @pytest.mark.parametrize(
        "aspect,expected",
        [("portrait", (1080, 1920)), ("square", (1080, 1080)), ("landscape", (1920, 1080))],
    )
    def test_full_scale(self, aspect, expected):
        assert frame_size(aspect) == expected

    def test_scaled_dimensions_are_even(self):
        w, h = frame_size("portrait", 0.37)

        assert (w, h) == (398, 710)


class TestFrameRenderer:
    def test_writes_png_of_template_size(self, tmp_path, portrait_template):
        renderer = FrameRenderer(scale=0.25)
        output = tmp_path / "frame_00000.png"

        rendered = renderer.render(RenderTask(_frame(active=True), portrait_template, output))

        assert rendered.path == output
        assert rendered.index == 0
        assert rendered.duration_ms == 400
        with Image.open(output) as image:
            assert image.format == "PNG"
            assert image.size == (270, 480)

    def test_active_word_uses_highlight_colour(self, tmp_path, red_template):
        renderer = FrameRenderer(scale=0.5)

        active = renderer.render(RenderTask(_frame(active=True), red_template, tmp_path / "a.png"))
        spoken = renderer.render(RenderTask(_frame(active=False), red_template, tmp_path / "b.png"))

        with Image.open(active.path) as image:
            assert _count(image.convert("RGB"), RED) > 0
        with Image.open(spoken.path) as image:
            assert _count(image.convert("RGB"), RED) == 0

    def test_faded_active_word_is_translucent(self, tmp_path, red_template):
        renderer = FrameRenderer(scale=0.5)

        rendered = renderer.render(RenderTask(_frame(active=True, opacity=0.4), red_template, tmp_path / "f.png"))

        with Image.open(rendered.path) as image:
            assert _count(image.convert("RGB"), RED) == 0

    def test_idle_frame_is_plain_background(self, tmp_path, red_template):
        renderer = FrameRenderer(scale=0.25)
        idle = FrameDescriptor(index=3, kind="idle", start_ms=0, end_ms=100)

        rendered = renderer.render(RenderTask(idle, red_template, tmp_path / "idle.png"))

        with Image.open(rendered.path) as image:
            colours = {pixel for pixel in image.convert("RGB").getdata()}
        assert colours == {(0, 0, 0)}
        assert rendered.index == 3

    def test_gradient_background(self, tmp_path):
        template = StyleTemplate(
            aspect="square",
            background=BackgroundSpec(type="gradient", colors=("#000000", "#FFFFFF")),
            watermark=WatermarkSpec(position="none"),
        )
        renderer = FrameRenderer(scale=0.25)
        idle = FrameDescriptor(index=0, kind="idle", start_ms=0, end_ms=100)

        rendered = renderer.render(RenderTask(idle, template, tmp_path / "g.png"))

        with Image.open(rendered.path) as image:
            rgb = image.convert("RGB")
            w, h = rgb.size
            assert rgb.getpixel((w // 2, 0)) == (0, 0, 0)
            assert rgb.getpixel((w // 2, h - 1)) == (255, 255, 255)

    def test_does_not_create_missing_directory(self, tmp_path, red_template):
        renderer = FrameRenderer(scale=0.25)
        removed = tmp_path / "cleaned_up"

        with pytest.raises(FileNotFoundError):
            renderer.render(RenderTask(_frame(active=True), red_template, removed / "frame_00000.png"))

        assert not removed.exists()
