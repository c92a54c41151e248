"""Tests for storyboard construction (frame timing, layout, carousel)."""

import pytest

from voxport.render.storyboard import (
    FADE_OPACITIES,
    POP_SCALES,
    build_carousel,
    build_storyboard,
    choose_fps,
    layout_lines,
)
from voxport.schemas.export import LayoutSpec, Manifest, StyleTemplate


def _manifest(*segments: dict) -> Manifest:
    return Manifest.model_validate({"segments": list(segments)})


def _assert_contiguous(frames, total_ms: int) -> None:
    assert frames[0].start_ms == 0
    for prev, nxt in zip(frames, frames[1:]):
        assert prev.end_ms == nxt.start_ms
    assert frames[-1].end_ms == total_ms
    assert sum(f.duration_ms for f in frames) == total_ms
    assert [f.index for f in frames] == list(range(len(frames)))


class TestBuildStoryboard:
    """Frame timeline built from a timed manifest."""

    def test_frame_sequence_for_sample(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template)

        assert [f.kind for f in frames] == [
            "word", "pause", "word", "pause", "word",
            "idle",
            "word", "word", "pause", "word",
            "idle",
            "segment",
        ]
        assert [(f.start_ms, f.end_ms) for f in frames[:3]] == [(0, 400), (400, 450), (450, 900)]
        assert (frames[-1].start_ms, frames[-1].end_ms) == (3300, 5000)

    def test_durations_cover_manifest(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template)

        _assert_contiguous(frames, 5000)

    def test_trailing_silence_becomes_idle(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template, total_duration_ms=6500)

        assert frames[-1].kind == "idle"
        assert (frames[-1].start_ms, frames[-1].end_ms) == (5000, 6500)
        _assert_contiguous(frames, 6500)

    def test_leading_silence_becomes_idle(self, plain_template):
        manifest = _manifest({"startMs": 500, "endMs": 900, "text": "late start"})

        frames = build_storyboard(manifest, plain_template)

        assert [f.kind for f in frames] == ["idle", "segment"]
        assert (frames[0].start_ms, frames[0].end_ms) == (0, 500)

    def test_small_gaps_are_absorbed(self, plain_template):
        manifest = _manifest(
            {
                "startMs": 0,
                "endMs": 300,
                "text": "tight words",
                "words": [
                    {"word": "tight", "startMs": 0, "endMs": 100},
                    {"word": "words", "startMs": 105, "endMs": 300},
                ],
            }
        )

        frames = build_storyboard(manifest, plain_template)

        assert [f.kind for f in frames] == ["word", "word"]
        assert (frames[1].start_ms, frames[1].end_ms) == (100, 300)

    def test_tiny_trailing_gap_extends_last_frame(self, plain_template):
        manifest = _manifest({"startMs": 0, "endMs": 1000, "text": "one segment"})

        frames = build_storyboard(manifest, plain_template, total_duration_ms=1008)

        assert len(frames) == 1
        assert frames[0].end_ms == 1008

    def test_minimum_frame_duration(self, plain_template):
        manifest = _manifest(
            {
                "startMs": 0,
                "endMs": 3,
                "text": "blip",
                "words": [{"word": "blip", "startMs": 0, "endMs": 3}],
            }
        )

        frames = build_storyboard(manifest, plain_template)

        assert frames[0].duration_ms == 10

    def test_segment_without_words_is_single_frame(self, plain_template):
        manifest = _manifest({"startMs": 0, "endMs": 2000, "text": "no timing at all"})

        frames = build_storyboard(manifest, plain_template)

        assert len(frames) == 1
        assert frames[0].kind == "segment"
        assert frames[0].active_word is None
        words = [w.text for line in frames[0].lines for w in line]
        assert words == ["no", "timing", "at", "all"]

    def test_segment_highlight_mode_skips_word_frames(self, sample_manifest, plain_template):
        template = plain_template.model_copy(update={"highlight_mode": "segment"})

        frames = build_storyboard(sample_manifest, template)

        assert [f.kind for f in frames] == ["segment", "idle", "segment", "idle", "segment"]

    def test_empty_manifest_with_audio_is_one_idle_frame(self, plain_template):
        frames = build_storyboard(Manifest(), plain_template, total_duration_ms=2000)

        assert len(frames) == 1
        assert frames[0].kind == "idle"
        assert frames[0].duration_ms == 2000


class TestWordStates:
    """Per-word spoken / active / upcoming tagging."""

    def test_active_word_and_neighbours(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template)
        there = frames[2]

        states = {w.text: w.state for line in there.lines for w in line}
        assert there.active_word == "there"
        assert states == {"hello": "spoken", "there": "active", "friends": "upcoming"}

    def test_pause_frame_has_no_active_word(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template)
        pause = frames[1]

        states = {w.text: w.state for line in pause.lines for w in line}
        assert pause.active_word is None
        assert states == {"hello": "spoken", "there": "upcoming", "friends": "upcoming"}

    def test_idle_frame_has_no_lines(self, sample_manifest, plain_template):
        frames = build_storyboard(sample_manifest, plain_template)

        assert frames[5].kind == "idle"
        assert frames[5].lines == ()

    def test_long_segment_is_paged_to_active_word(self):
        template = StyleTemplate(layout=LayoutSpec(max_lines=2, max_chars_per_line=9))
        words = [
            {"word": f"w{i:03d}", "startMs": i * 100, "endMs": i * 100 + 100}
            for i in range(10)
        ]
        manifest = _manifest({"startMs": 0, "endMs": 1000, "text": "", "words": words})

        frames = build_storyboard(manifest, template)
        frame = frames[6]

        visible = [w.text for line in frame.lines for w in line]
        assert frame.active_word == "w006"
        assert visible == ["w004", "w005", "w006", "w007"]


class TestAnimations:
    """Pop and fade sub-frames."""

    def _single_word(self, duration_ms: int) -> Manifest:
        return _manifest(
            {
                "startMs": 0,
                "endMs": duration_ms,
                "text": "pop",
                "words": [{"word": "pop", "startMs": 0, "endMs": duration_ms}],
            }
        )

    def test_pop_long_word_has_three_subframes(self):
        template = StyleTemplate(animation="pop")

        frames = build_storyboard(self._single_word(300), template)

        assert [f.scale for f in frames] == list(POP_SCALES)
        assert [f.duration_ms for f in frames] == [100, 100, 100]
        assert all(f.kind == "word" for f in frames)

    def test_pop_medium_word_has_two_subframes(self):
        template = StyleTemplate(animation="pop")

        frames = build_storyboard(self._single_word(200), template)

        assert [f.scale for f in frames] == [1.15, 1.0]
        assert sum(f.duration_ms for f in frames) == 200

    def test_pop_short_word_is_not_split(self):
        template = StyleTemplate(animation="pop")

        frames = build_storyboard(self._single_word(150), template)

        assert len(frames) == 1
        assert frames[0].scale == 1.0

    def test_subframes_sum_to_word_duration(self):
        template = StyleTemplate(animation="pop")

        frames = build_storyboard(self._single_word(250), template)

        assert [f.duration_ms for f in frames] == [83, 83, 84]
        scales = [f.scale for f in frames]
        assert scales == sorted(scales, reverse=True)

    def test_fade_opacity_increases(self):
        template = StyleTemplate(animation="fade")

        frames = build_storyboard(self._single_word(300), template)

        assert [f.opacity for f in frames] == list(FADE_OPACITIES)
        assert all(f.scale == 1.0 for f in frames)

    def test_animated_timeline_stays_contiguous(self, sample_manifest, portrait_template):
        frames = build_storyboard(sample_manifest, portrait_template, total_duration_ms=5200)

        _assert_contiguous(frames, 5200)


class TestLayoutLines:
    """Greedy line breaking and paging."""

    def test_breaks_at_char_limit(self):
        pages = layout_lines(["hello", "there", "friends"], max_lines=4, max_chars_per_line=18)

        assert pages == [[[0, 1], [2]]]

    def test_pages_by_max_lines(self):
        pages = layout_lines(["aaaa"] * 10, max_lines=2, max_chars_per_line=9)

        assert len(pages) == 3
        assert pages[0] == [[0, 1], [2, 3]]
        assert pages[2] == [[8, 9]]

    def test_overlong_word_gets_own_line(self):
        pages = layout_lines(["a", "supercalifragilistic", "b"], max_lines=4, max_chars_per_line=8)

        assert pages == [[[0], [1], [2]]]

    def test_empty_input(self):
        assert layout_lines([], max_lines=4, max_chars_per_line=18) == []


class TestBuildCarousel:
    """Slide descriptors for carousel exports."""

    def test_one_slide_per_segment(self, sample_manifest, portrait_template):
        slides = build_carousel(sample_manifest, portrait_template)

        assert len(slides) == 3
        assert all(s.kind == "slide" for s in slides)
        assert [s.index for s in slides] == [0, 1, 2]
        assert all(w.state == "spoken" for s in slides for line in s.lines for w in line)

    def test_capped_at_max_slides(self, portrait_template):
        manifest = _manifest(
            *[
                {"startMs": i * 1000, "endMs": i * 1000 + 900, "text": f"segment {i}"}
                for i in range(20)
            ]
        )

        slides = build_carousel(manifest, portrait_template)

        assert len(slides) == 8


class TestChooseFps:
    @pytest.mark.parametrize(
        "num_frames,expected",
        [(1, 24), (60, 24), (61, 30), (120, 30), (121, 60), (5000, 60)],
    )
    def test_fps_thresholds(self, num_frames, expected):
        assert choose_fps(num_frames) == expected
