"""Storyboard builder: turns a timed manifest into an ordered frame timeline.

Each frame is a still image shown for ``duration_ms``. Frames are contiguous
from 0 to the total duration so the concat demuxer output lines up with the
audio track:

- idle frames cover silence before, between and after segments
- word frames highlight one timed word (split into sub-frames for animations)
- pause frames cover silence between words inside a segment
- segment frames cover segments with no word timing
"""

import logging
from dataclasses import dataclass
from typing import Callable

from voxport.schemas.export import Manifest, Segment, StyleTemplate

logger = logging.getLogger(__name__)

MIN_FRAME_MS = 10
GAP_THRESHOLD_MS = 10
ANIMATION_STEP_MS = 80

POP_SCALES = (1.15, 1.08, 1.0)
FADE_OPACITIES = (0.4, 0.7, 1.0)

MAX_CAROUSEL_SLIDES = 8

FRAME_KINDS = ("idle", "word", "pause", "segment", "slide")
WORD_STATES = ("spoken", "active", "upcoming")


@dataclass(frozen=True)
class LineWord:
    text: str
    state: str


@dataclass(frozen=True)
class FrameDescriptor:
    """Everything needed to rasterize one frame, independent of its neighbours."""

    index: int
    kind: str
    start_ms: int
    end_ms: int
    lines: tuple[tuple[LineWord, ...], ...] = ()
    scale: float = 1.0
    opacity: float = 1.0

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def active_word(self) -> str | None:
        for line in self.lines:
            for word in line:
                if word.state == "active":
                    return word.text
        return None


# =============================================================================
# Layout
# =============================================================================


def layout_lines(
    words: list[str],
    max_lines: int,
    max_chars_per_line: int,
) -> list[list[list[int]]]:
    """Greedy line breaking, then paging.

    Returns a list of pages; each page holds up to ``max_lines`` lines and each
    line is a list of indices into ``words``. A word longer than the line
    limit gets a line of its own.
    """
    lines: list[list[int]] = []
    current: list[int] = []
    current_len = 0

    for i, word in enumerate(words):
        tentative = current_len + (1 if current else 0) + len(word)
        if current and tentative > max_chars_per_line:
            lines.append(current)
            current = [i]
            current_len = len(word)
        else:
            current.append(i)
            current_len = tentative

    if current:
        lines.append(current)

    return [lines[i:i + max_lines] for i in range(0, len(lines), max_lines)]


def _page_for(pages: list[list[list[int]]], word_index: int) -> list[list[int]]:
    for page in pages:
        if any(word_index in line for line in page):
            return page
    return pages[0] if pages else []


def _visible_lines(
    words: list[str],
    pages: list[list[list[int]]],
    focus: int,
    state_of: Callable[[int], str],
) -> tuple[tuple[LineWord, ...], ...]:
    page = _page_for(pages, focus)
    return tuple(
        tuple(LineWord(words[i], state_of(i)) for i in line)
        for line in page
    )


# =============================================================================
# Timeline assembly
# =============================================================================


def _animation_steps(animation: str, duration_ms: int) -> list[tuple[float, float]]:
    """(scale, opacity) per sub-frame for a word of ``duration_ms``."""
    if animation not in ("pop", "fade"):
        return [(1.0, 1.0)]

    if duration_ms > 3 * ANIMATION_STEP_MS:
        picks = (0, 1, 2)
    elif duration_ms >= 2 * ANIMATION_STEP_MS:
        picks = (0, 2)
    else:
        return [(1.0, 1.0)]

    if animation == "pop":
        return [(POP_SCALES[p], 1.0) for p in picks]
    return [(1.0, FADE_OPACITIES[p]) for p in picks]


class _Timeline:
    """Appends contiguous frames starting at a running cursor."""

    def __init__(self, min_frame_ms: int):
        self.min_frame_ms = min_frame_ms
        self.cursor = 0
        self.frames: list[FrameDescriptor] = []

    def emit(
        self,
        kind: str,
        end_ms: int,
        lines: tuple[tuple[LineWord, ...], ...] = (),
        scale: float = 1.0,
        opacity: float = 1.0,
    ) -> None:
        start = self.cursor
        end = max(end_ms, start + self.min_frame_ms)
        self.frames.append(
            FrameDescriptor(
                index=len(self.frames),
                kind=kind,
                start_ms=start,
                end_ms=end,
                lines=lines,
                scale=scale,
                opacity=opacity,
            )
        )
        self.cursor = end

    def gap(self, kind: str, until_ms: int, lines: tuple = ()) -> None:
        """Emit a filler frame if the gap up to ``until_ms`` is significant.

        Smaller gaps are left for the next frame, which starts at the cursor.
        """
        if until_ms - self.cursor > GAP_THRESHOLD_MS:
            self.emit(kind, until_ms, lines)

    def emit_word(
        self,
        end_ms: int,
        lines: tuple[tuple[LineWord, ...], ...],
        animation: str,
    ) -> None:
        start = self.cursor
        duration = max(end_ms - start, self.min_frame_ms)
        steps = _animation_steps(animation, duration)
        part = duration // len(steps)

        for i, (scale, opacity) in enumerate(steps):
            last = i == len(steps) - 1
            part_end = start + duration if last else start + part * (i + 1)
            self.emit("word", part_end, lines, scale=scale, opacity=opacity)

    def extend_last(self, end_ms: int) -> None:
        """Stretch the final frame so the timeline ends exactly at ``end_ms``."""
        if not self.frames or end_ms <= self.cursor:
            return
        last = self.frames[-1]
        self.frames[-1] = FrameDescriptor(
            index=last.index,
            kind=last.kind,
            start_ms=last.start_ms,
            end_ms=end_ms,
            lines=last.lines,
            scale=last.scale,
            opacity=last.opacity,
        )
        self.cursor = end_ms


def _add_segment(timeline: _Timeline, segment: Segment, template: StyleTemplate) -> None:
    layout = template.layout
    words = segment.tokens
    pages = layout_lines(words, layout.max_lines, layout.max_chars_per_line)

    if not segment.words or template.highlight_mode == "segment":
        lines = _visible_lines(words, pages, 0, lambda i: "spoken") if words else ()
        timeline.emit("segment", segment.end_ms, lines)
        return

    timed = segment.words
    last_index = len(timed) - 1

    for i, word in enumerate(timed):
        # Silence before this word: everything so far spoken, the rest upcoming
        timeline.gap(
            "pause",
            word.start_ms,
            _visible_lines(
                words, pages, max(i - 1, 0), lambda j, i=i: "spoken" if j < i else "upcoming"
            ),
        )

        def state_of(j: int, i: int = i) -> str:
            if j < i:
                return "spoken"
            return "active" if j == i else "upcoming"

        timeline.emit_word(
            word.end_ms,
            _visible_lines(words, pages, i, state_of),
            template.animation,
        )

    timeline.gap(
        "pause",
        segment.end_ms,
        _visible_lines(words, pages, last_index, lambda j: "spoken"),
    )


def build_storyboard(
    manifest: Manifest,
    template: StyleTemplate,
    total_duration_ms: int | None = None,
    min_frame_ms: int = MIN_FRAME_MS,
) -> list[FrameDescriptor]:
    """Build the ordered frame timeline for a video export.

    Args:
        manifest: Timed segments (and optionally words)
        template: Style template; ``animation`` and ``layout`` are used here
        total_duration_ms: Audio length; trailing silence is filled up to it
        min_frame_ms: Shortest frame the encoder is given

    Returns:
        Frames indexed 0..N-1 in time order, covering 0 to the total duration
    """
    total = max(total_duration_ms or 0, manifest.total_duration_ms)
    timeline = _Timeline(min_frame_ms)

    for segment in manifest.segments:
        timeline.gap("idle", segment.start_ms)
        _add_segment(timeline, segment, template)

    if total - timeline.cursor > GAP_THRESHOLD_MS:
        timeline.emit("idle", total)
    else:
        timeline.extend_last(total)

    logger.info(
        f"[STORYBOARD] {len(timeline.frames)} frames for {len(manifest.segments)} segments "
        f"({timeline.cursor}ms, animation={template.animation})"
    )
    return timeline.frames


def build_carousel(
    manifest: Manifest,
    template: StyleTemplate,
    max_slides: int = MAX_CAROUSEL_SLIDES,
) -> list[FrameDescriptor]:
    """One slide per page of each segment's text, capped at ``max_slides``."""
    layout = template.layout
    slides: list[FrameDescriptor] = []

    for segment in manifest.segments:
        words = segment.tokens
        for page in layout_lines(words, layout.max_lines, layout.max_chars_per_line):
            if len(slides) >= max_slides:
                return slides
            lines = tuple(
                tuple(LineWord(words[i], "spoken") for i in line) for line in page
            )
            slides.append(
                FrameDescriptor(
                    index=len(slides),
                    kind="slide",
                    start_ms=segment.start_ms,
                    end_ms=segment.end_ms,
                    lines=lines,
                )
            )

    return slides


def choose_fps(num_frames: int) -> int:
    """Output frame rate: denser storyboards get a higher rate."""
    if num_frames > 120:
        return 60
    if num_frames > 60:
        return 30
    return 24
