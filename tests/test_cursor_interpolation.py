"""Tests for cursorcast.cursor_interpolation — position and click-state lookup."""

import pytest

from cursorcast.cursor_interpolation import (
    CursorState,
    find_keyframe_index,
    interpolate_cursor,
    is_click_active,
)
from cursorcast.models import KEYFRAME_CLICK, CursorKeyframe


def _click(t: float, x: float = 0, y: float = 0) -> CursorKeyframe:
    return CursorKeyframe(x=x, y=y, timestamp=t, kind=KEYFRAME_CLICK)


# ── find_keyframe_index ─────────────────────────────────────────────


class TestFindKeyframeIndex:
    def test_empty(self) -> None:
        assert find_keyframe_index([], 100) == -1

    def test_before_first(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert find_keyframe_index(click_keyframes, -50) == 0

    def test_after_last(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert find_keyframe_index(click_keyframes, 9999) == len(click_keyframes) - 1

    def test_exact_hit(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert find_keyframe_index(click_keyframes, 400) == 1

    def test_between(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert find_keyframe_index(click_keyframes, 1000) == 2

    def test_rightmost_of_equal_timestamps(self) -> None:
        kfs = [CursorKeyframe(x=float(i), y=0, timestamp=t) for i, t in enumerate([0, 0, 100, 100, 200])]
        assert find_keyframe_index(kfs, 0) == 1
        assert find_keyframe_index(kfs, 100) == 3
        assert find_keyframe_index(kfs, 150) == 3

    def test_matches_linear_scan(self) -> None:
        kfs = [CursorKeyframe(x=0, y=0, timestamp=t) for t in (10, 20, 20, 35, 50, 80)]
        for t in range(0, 100, 5):
            expected = max([i for i, kf in enumerate(kfs) if kf.timestamp <= t], default=0)
            assert find_keyframe_index(kfs, t) == expected


# ── is_click_active ─────────────────────────────────────────────────


class TestIsClickActive:
    def test_click_window(self) -> None:
        kfs = [_click(500)]
        assert is_click_active(kfs, 450, 100) is False
        assert is_click_active(kfs, 500, 100) is True
        assert is_click_active(kfs, 599, 100) is True
        assert is_click_active(kfs, 601, 100) is False

    def test_window_end_inclusive(self) -> None:
        assert is_click_active([_click(500)], 600, 100) is True

    def test_moves_never_click(self, linear_keyframes: list[CursorKeyframe]) -> None:
        assert not any(is_click_active(linear_keyframes, t) for t in range(0, 1200, 50))

    def test_multiple_clicks(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert is_click_active(click_keyframes, 550)
        assert not is_click_active(click_keyframes, 1000)
        assert is_click_active(click_keyframes, 1520)

    def test_custom_window(self) -> None:
        assert is_click_active([_click(0)], 250, click_window_ms=300)


# ── interpolate_cursor ──────────────────────────────────────────────


class TestInterpolateCursor:
    def test_midpoint(self, linear_keyframes: list[CursorKeyframe]) -> None:
        state = interpolate_cursor(linear_keyframes, 500)
        assert state == CursorState(50, 0, False)

    def test_empty_is_hidden(self) -> None:
        assert interpolate_cursor([], 100) is None

    def test_hidden_before_first_keyframe(self) -> None:
        kfs = [CursorKeyframe(x=5, y=5, timestamp=200)]
        assert interpolate_cursor(kfs, 199.9) is None
        assert interpolate_cursor(kfs, 200) == CursorState(5, 5, False)

    def test_holds_after_last(self, linear_keyframes: list[CursorKeyframe]) -> None:
        assert interpolate_cursor(linear_keyframes, 5000) == CursorState(100, 0, False)

    def test_exact_keyframe(self, click_keyframes: list[CursorKeyframe]) -> None:
        state = interpolate_cursor(click_keyframes, 400)
        assert (state.x, state.y) == (200, 150)

    def test_two_dimensional(self, click_keyframes: list[CursorKeyframe]) -> None:
        state = interpolate_cursor(click_keyframes, 200)
        assert state.x == pytest.approx(150)
        assert state.y == pytest.approx(125)

    def test_coincident_timestamps(self) -> None:
        kfs = [
            CursorKeyframe(x=0, y=0, timestamp=100),
            CursorKeyframe(x=10, y=10, timestamp=100),
            CursorKeyframe(x=20, y=20, timestamp=200),
        ]
        state = interpolate_cursor(kfs, 150)
        assert (state.x, state.y) == (15, 15)

    def test_clicking_flag(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert interpolate_cursor(click_keyframes, 520).clicking
        assert not interpolate_cursor(click_keyframes, 700).clicking

    def test_pure(self, click_keyframes: list[CursorKeyframe]) -> None:
        assert interpolate_cursor(click_keyframes, 777) == interpolate_cursor(click_keyframes, 777)
