"""Frame rasterization with Pillow.

Draws one storyboard frame into a PNG: background, translucent card, the
visible caption lines (spoken / active / upcoming colours) and a watermark.
Safe to call from several threads at once; fonts and backgrounds are cached.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from voxport.render.storyboard import FrameDescriptor
from voxport.schemas.export import StyleTemplate

logger = logging.getLogger(__name__)

DIMENSIONS: dict[str, tuple[int, int]] = {
    "portrait": (1080, 1920),
    "square": (1080, 1080),
    "landscape": (1920, 1080),
}

CARD_FILL = (0, 0, 0, 31)  # rgba(0,0,0,0.12)
CARD_RADIUS = 24
WATERMARK_SIZE = 24

FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/System/Library/Fonts/Helvetica.ttc",
]


@dataclass(frozen=True)
class RenderTask:
    frame: FrameDescriptor
    template: StyleTemplate
    output_path: Path


@dataclass(frozen=True)
class RenderedFrame:
    index: int
    path: Path
    duration_ms: int


def _parse_hex_color(color_str: str, default: str = "ffffff") -> tuple[int, int, int]:
    """Parse hex color string to (r, g, b) tuple. Falls back to default for invalid colors."""
    hex_c = color_str.lstrip("#")
    if len(hex_c) == 3:
        hex_c = "".join([c * 2 for c in hex_c])
    if len(hex_c) < 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_c[:6]):
        hex_c = default
    return int(hex_c[0:2], 16), int(hex_c[2:4], 16), int(hex_c[4:6], 16)


def frame_size(aspect: str, scale: float = 1.0) -> tuple[int, int]:
    """Canvas size for an aspect; always even so yuv420p encoding accepts it."""
    base_w, base_h = DIMENSIONS.get(aspect, DIMENSIONS["portrait"])
    w = max(2, int(base_w * scale))
    h = max(2, int(base_h * scale))
    return w - w % 2, h - h % 2


@lru_cache(maxsize=64)
def _get_font(size: int, font_path: str = "") -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load the configured font, then common system fonts, then Pillow's default."""
    candidates = [font_path] if font_path else []
    candidates.extend(FONT_CANDIDATES)
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default(size)


@lru_cache(maxsize=16)
def _background(kind: str, colors: tuple[str, ...], size: tuple[int, int]) -> Image.Image:
    w, h = size
    stops = [_parse_hex_color(c, "0a0a0a") for c in colors] or [(10, 10, 10)]

    if kind != "gradient" or len(stops) == 1:
        return Image.new("RGB", size, stops[0])

    # Vertical multi-stop gradient built as a 1px column, then stretched
    column = Image.new("RGB", (1, h))
    pixels = column.load()
    segments = len(stops) - 1
    for y in range(h):
        t = y / max(1, h - 1) * segments
        i = min(int(t), segments - 1)
        frac = t - i
        a, b = stops[i], stops[i + 1]
        pixels[0, y] = tuple(int(a[c] + (b[c] - a[c]) * frac) for c in range(3))
    return column.resize(size, Image.NEAREST)


class FrameRenderer:
    """Rasterizes FrameDescriptors for a given template."""

    def __init__(self, scale: float = 1.0, font_path: str = ""):
        self.scale = scale
        self.font_path = font_path

    def render(self, task: RenderTask) -> RenderedFrame:
        """Write one PNG. The output directory must already exist."""
        template = task.template
        frame = task.frame
        size = frame_size(template.aspect, self.scale)

        image = _background(
            template.background.type, tuple(template.background.colors), size
        ).convert("RGBA")
        overlay = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)

        self._draw_card(draw, size, template)
        self._draw_lines(draw, size, frame, template)
        self._draw_watermark(draw, size, template)

        image = Image.alpha_composite(image, overlay).convert("RGB")

        image.save(task.output_path, "PNG")
        return RenderedFrame(index=frame.index, path=task.output_path, duration_ms=frame.duration_ms)

    def _px(self, value: float) -> int:
        return max(1, int(round(value * self.scale)))

    def _draw_card(self, draw: ImageDraw.ImageDraw, size: tuple[int, int], template: StyleTemplate) -> None:
        w, h = size
        inset = self._px(template.layout.padding_px / 2)
        if w - 2 * inset < 2 or h - 2 * inset < 2:
            return
        draw.rounded_rectangle(
            (inset, inset, w - inset, h - inset),
            radius=self._px(CARD_RADIUS),
            fill=CARD_FILL,
        )

    def _draw_lines(
        self,
        draw: ImageDraw.ImageDraw,
        size: tuple[int, int],
        frame: FrameDescriptor,
        template: StyleTemplate,
    ) -> None:
        if not frame.lines:
            return

        w, h = size
        typo = template.typography
        font_size = self._px(typo.font_size_px)
        font = _get_font(font_size, self.font_path)
        active_size = self._px(typo.font_size_px * frame.scale)
        active_font = _get_font(active_size, self.font_path)
        space = font.getlength(" ")
        line_height = int(font_size * typo.line_height)

        colors = {
            "spoken": _parse_hex_color(typo.text_color),
            "active": _parse_hex_color(typo.highlight_color),
            "upcoming": _parse_hex_color(typo.muted_color, "a1a1aa"),
        }

        top = (h - line_height * len(frame.lines)) // 2
        for row, line in enumerate(frame.lines):
            widths = [
                (active_font if word.state == "active" else font).getlength(word.text)
                for word in line
            ]
            line_width = sum(widths) + space * max(0, len(line) - 1)
            x = (w - line_width) / 2
            y = top + row * line_height

            for word, width in zip(line, widths):
                rgb = colors.get(word.state, colors["spoken"])
                if word.state == "active":
                    alpha = int(255 * frame.opacity)
                    # Keep enlarged words on the line's baseline
                    draw.text(
                        (x, y - (active_size - font_size)),
                        word.text,
                        font=active_font,
                        fill=(*rgb, alpha),
                    )
                else:
                    draw.text((x, y), word.text, font=font, fill=(*rgb, 255))
                x += width + space

    def _draw_watermark(self, draw: ImageDraw.ImageDraw, size: tuple[int, int], template: StyleTemplate) -> None:
        mark = template.watermark
        if mark.position == "none" or not mark.text:
            return

        w, h = size
        font = _get_font(self._px(WATERMARK_SIZE), self.font_path)
        text_w = font.getlength(mark.text)
        pad = self._px(template.layout.padding_px)
        text_h = self._px(WATERMARK_SIZE)

        x = pad if mark.position.endswith("left") else w - pad - text_w
        y = pad if mark.position.startswith("top") else h - pad - text_h
        if mark.position == "center":
            x, y = (w - text_w) / 2, (h - text_h) / 2

        rgb = _parse_hex_color(template.typography.muted_color, "a1a1aa")
        draw.text((x, y), mark.text, font=font, fill=(*rgb, int(255 * mark.opacity)))
