"""Tests for cursorcast.svg_path — path-data normalization and flattening."""

import math

import pytest

from cursorcast.errors import ParseError
from cursorcast.svg_path import (
    CURVE_SEGMENTS,
    arc_to_cubics,
    flatten_path,
    iter_path_commands,
)


def _cmds(d: str) -> list:
    return list(iter_path_commands(d))


# ── iter_path_commands ──────────────────────────────────────────────


class TestIterPathCommands:
    def test_absolute_lines(self) -> None:
        assert _cmds("M1 2 L3 4 Z") == [("M", 1, 2), ("L", 3, 4), ("Z",)]

    def test_relative_lines(self) -> None:
        assert _cmds("m1 2 l3 4") == [("M", 1, 2), ("L", 4, 6)]

    def test_implicit_lineto_after_move(self) -> None:
        assert _cmds("M0 0 10 0 10 10") == [("M", 0, 0), ("L", 10, 0), ("L", 10, 10)]

    def test_horizontal_vertical(self) -> None:
        assert _cmds("M1 1H5V7h-2v-1") == [
            ("M", 1, 1), ("L", 5, 1), ("L", 5, 7), ("L", 3, 7), ("L", 3, 6),
        ]

    def test_compact_numbers(self) -> None:
        # "-.5.5" is two numbers: -0.5 and 0.5
        assert _cmds("M-.5.5L1e1,2E0") == [("M", -0.5, 0.5), ("L", 10.0, 2.0)]

    def test_close_returns_to_subpath_start(self) -> None:
        cmds = _cmds("M2 3 l4 0 z l1 1")
        assert cmds[-1] == ("L", 3, 4)

    def test_smooth_cubic_reflects_control(self) -> None:
        cmds = _cmds("M0 0 C0 10 10 10 10 0 S20 -10 20 0")
        assert cmds[2] == ("C", 10, -10, 20, -10, 20, 0)

    def test_smooth_cubic_without_previous_curve(self) -> None:
        cmds = _cmds("M5 5 S10 10 15 5")
        assert cmds[1] == ("C", 5, 5, 10, 10, 15, 5)

    def test_smooth_quadratic(self) -> None:
        cmds = _cmds("M0 0 Q5 10 10 0 T20 0")
        assert cmds[2] == ("Q", 15, -10, 20, 0)

    def test_arc_becomes_cubics(self) -> None:
        cmds = _cmds("M0 0 A10 10 0 0 1 20 0")
        assert all(c[0] == "C" for c in cmds[1:])
        assert cmds[-1][-2:] == (20, 0)

    def test_packed_arc_flags(self) -> None:
        # Flags may be written without separators.
        assert _cmds("M0 0a5 5 0 1020 0") == _cmds("M0 0a5 5 0 1 0 20 0")

    @pytest.mark.parametrize("bad", ["L1 2", "M1", "M1 2 X3 4", "M0 0 A1 1 0 2 0 1 1"])
    def test_malformed(self, bad: str) -> None:
        with pytest.raises(ParseError):
            _cmds(bad)


# ── arc_to_cubics ───────────────────────────────────────────────────


class TestArcToCubics:
    def test_same_endpoints_draws_nothing(self) -> None:
        assert arc_to_cubics(1, 1, 5, 5, 0, False, True, 1, 1) == []

    def test_zero_radius_is_line(self) -> None:
        assert arc_to_cubics(0, 0, 0, 5, 0, False, True, 10, 0) == [("L", 10, 0)]

    def test_half_circle_splits_into_quarters(self) -> None:
        cubics = arc_to_cubics(0, 0, 10, 10, 0, False, True, 20, 0)
        assert len(cubics) == 2

    def test_midpoint_lies_on_circle(self) -> None:
        cubics = arc_to_cubics(0, 0, 10, 10, 0, False, True, 20, 0)
        mid = cubics[0][-2:]
        assert math.hypot(mid[0] - 10, mid[1]) == pytest.approx(10, abs=1e-6)

    def test_small_radius_scaled_up(self) -> None:
        cubics = arc_to_cubics(0, 0, 1, 1, 0, False, True, 20, 0)
        assert cubics[-1][-2:] == (20, 0)
        mid = cubics[0][-2:]
        assert math.hypot(mid[0] - 10, mid[1]) == pytest.approx(10, abs=1e-6)


# ── flatten_path ────────────────────────────────────────────────────


class TestFlattenPath:
    def test_polygon(self) -> None:
        subpaths = flatten_path("M0 0 L10 0 L10 10 Z")
        assert subpaths == [([(0, 0), (10, 0), (10, 10)], True)]

    def test_open_polyline(self) -> None:
        assert flatten_path("M0 0 L5 5") == [([(0, 0), (5, 5)], False)]

    def test_curve_sampling(self) -> None:
        (points, closed), = flatten_path("M0 0 C0 10 10 10 10 0")
        assert len(points) == 1 + CURVE_SEGMENTS
        assert points[-1] == pytest.approx((10, 0))
        assert not closed

    def test_multiple_subpaths(self) -> None:
        subpaths = flatten_path("M0 0 L1 1 M5 5 L6 6 Z")
        assert [closed for _pts, closed in subpaths] == [False, True]

    def test_lone_move_dropped(self) -> None:
        assert flatten_path("M3 3") == []

    def test_deterministic(self) -> None:
        d = "M4 4a8 8 0 1 0 16 0a8 8 0 1 0-16 0z"
        assert flatten_path(d) == flatten_path(d)
