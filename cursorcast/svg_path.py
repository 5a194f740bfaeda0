"""SVG path-data reader.

Normalizes a ``d`` attribute into a small absolute command set so every
drawing surface only has to understand five commands:

    ("M", x, y)                      move to
    ("L", x, y)                      line to
    ("C", x1, y1, x2, y2, x, y)      cubic Bézier
    ("Q", x1, y1, x, y)              quadratic Bézier
    ("Z",)                           close subpath

Relative commands, H/V, the smooth variants S/T and elliptical arcs are
all rewritten into that set.  Arcs become one cubic per quarter turn.
"""

import math
from typing import Iterator, List, Tuple

from .errors import ParseError

PathCommand = Tuple
Point = Tuple[float, float]

_COMMAND_CHARS = set("MmLlHhVvCcSsQqTtAaZz")

# Segments used to flatten one Bézier curve into a polyline.
CURVE_SEGMENTS = 16


class _PathReader:
    """Character-level scanner over path data."""

    def __init__(self, d: str) -> None:
        self._d = d
        self._pos = 0

    def _skip_separators(self) -> None:
        d = self._d
        while self._pos < len(d) and (d[self._pos].isspace() or d[self._pos] == ","):
            self._pos += 1

    def at_end(self) -> bool:
        self._skip_separators()
        return self._pos >= len(self._d)

    def peek_command(self) -> bool:
        self._skip_separators()
        return self._pos < len(self._d) and self._d[self._pos] in _COMMAND_CHARS

    def command(self) -> str:
        self._skip_separators()
        ch = self._d[self._pos]
        if ch not in _COMMAND_CHARS:
            raise ParseError(f"Expected path command at offset {self._pos} in {self._d!r}")
        self._pos += 1
        return ch

    def number(self) -> float:
        self._skip_separators()
        d = self._d
        start = self._pos
        i = start
        if i < len(d) and d[i] in "+-":
            i += 1
        digits = False
        while i < len(d) and d[i].isdigit():
            i += 1
            digits = True
        if i < len(d) and d[i] == ".":
            i += 1
            while i < len(d) and d[i].isdigit():
                i += 1
                digits = True
        if not digits:
            raise ParseError(f"Expected number at offset {start} in {d!r}")
        if i < len(d) and d[i] in "eE":
            j = i + 1
            if j < len(d) and d[j] in "+-":
                j += 1
            if j < len(d) and d[j].isdigit():
                while j < len(d) and d[j].isdigit():
                    j += 1
                i = j
        self._pos = i
        return float(d[start:i])

    def flag(self) -> bool:
        """Arc flags are a single 0/1 character and may be packed ("a1 1 0 01 2 2")."""
        self._skip_separators()
        if self._pos >= len(self._d) or self._d[self._pos] not in "01":
            raise ParseError(f"Expected arc flag at offset {self._pos} in {self._d!r}")
        value = self._d[self._pos] == "1"
        self._pos += 1
        return value


def _vector_angle(ux: float, uy: float, vx: float, vy: float) -> float:
    return math.atan2(ux * vy - uy * vx, ux * vx + uy * vy)


def arc_to_cubics(
    x1: float, y1: float,
    rx: float, ry: float, phi_deg: float,
    large_arc: bool, sweep: bool,
    x2: float, y2: float,
) -> List[PathCommand]:
    """Convert an SVG endpoint-parameterized arc to cubic Bézier commands.

    Follows the SVG implementation notes (F.6.5 / F.6.6): out-of-range
    radii are scaled up, zero radii degrade to a straight line.
    """
    if x1 == x2 and y1 == y2:
        return []
    rx, ry = abs(rx), abs(ry)
    if rx == 0 or ry == 0:
        return [("L", x2, y2)]

    phi = math.radians(phi_deg % 360.0)
    cos_phi, sin_phi = math.cos(phi), math.sin(phi)

    dx2 = (x1 - x2) / 2.0
    dy2 = (y1 - y2) / 2.0
    x1p = cos_phi * dx2 + sin_phi * dy2
    y1p = -sin_phi * dx2 + cos_phi * dy2

    lam = (x1p * x1p) / (rx * rx) + (y1p * y1p) / (ry * ry)
    if lam > 1:
        s = math.sqrt(lam)
        rx *= s
        ry *= s

    num = rx * rx * ry * ry - rx * rx * y1p * y1p - ry * ry * x1p * x1p
    den = rx * rx * y1p * y1p + ry * ry * x1p * x1p
    coef = math.sqrt(max(0.0, num / den)) if den else 0.0
    if large_arc == sweep:
        coef = -coef
    cxp = coef * rx * y1p / ry
    cyp = -coef * ry * x1p / rx

    cx = cos_phi * cxp - sin_phi * cyp + (x1 + x2) / 2.0
    cy = sin_phi * cxp + cos_phi * cyp + (y1 + y2) / 2.0

    ux, uy = (x1p - cxp) / rx, (y1p - cyp) / ry
    vx, vy = (-x1p - cxp) / rx, (-y1p - cyp) / ry
    theta1 = _vector_angle(1.0, 0.0, ux, uy)
    dtheta = _vector_angle(ux, uy, vx, vy)
    if not sweep and dtheta > 0:
        dtheta -= 2 * math.pi
    elif sweep and dtheta < 0:
        dtheta += 2 * math.pi

    segments = max(1, int(math.ceil(abs(dtheta) / (math.pi / 2) - 1e-9)))
    delta = dtheta / segments
    k = 4.0 / 3.0 * math.tan(delta / 4.0)

    def _map(px: float, py: float) -> Point:
        return (
            cx + rx * px * cos_phi - ry * py * sin_phi,
            cy + rx * px * sin_phi + ry * py * cos_phi,
        )

    out: List[PathCommand] = []
    for i in range(segments):
        a1 = theta1 + i * delta
        a2 = a1 + delta
        cos1, sin1 = math.cos(a1), math.sin(a1)
        cos2, sin2 = math.cos(a2), math.sin(a2)
        c1 = _map(cos1 - k * sin1, sin1 + k * cos1)
        c2 = _map(cos2 + k * sin2, sin2 - k * cos2)
        end = (x2, y2) if i == segments - 1 else _map(cos2, sin2)
        out.append(("C", c1[0], c1[1], c2[0], c2[1], end[0], end[1]))
    return out


def iter_path_commands(d: str) -> Iterator[PathCommand]:
    """Yield normalized absolute commands for path data *d*.

    Raises :class:`ParseError` on malformed data.
    """
    reader = _PathReader(d)
    cx = cy = 0.0            # current point
    sx = sy = 0.0            # subpath start
    last_cmd = ""
    last_ctrl: Point = (0.0, 0.0)   # reflected control point for S/T
    cmd = ""

    while not reader.at_end():
        if reader.peek_command():
            cmd = reader.command()
            if last_cmd == "" and cmd not in "Mm":
                raise ParseError(f"Path data must start with a moveto: {d!r}")
        elif not cmd or cmd in "Zz":
            raise ParseError(f"Path data must start with a command: {d!r}")
        # else: implicit repetition of the previous command

        upper = cmd.upper()
        rel = cmd.islower()
        ox, oy = (cx, cy) if rel else (0.0, 0.0)

        if upper == "Z":
            yield ("Z",)
            cx, cy = sx, sy
            last_cmd = "Z"
            cmd = ""
            continue

        if upper == "M":
            x, y = reader.number() + ox, reader.number() + oy
            yield ("M", x, y)
            cx, cy = sx, sy = x, y
            last_cmd = "M"
            # Subsequent coordinate pairs are implicit line-tos.
            cmd = "l" if rel else "L"
            continue

        if upper == "L":
            x, y = reader.number() + ox, reader.number() + oy
            yield ("L", x, y)
            cx, cy = x, y
        elif upper == "H":
            x = reader.number() + ox
            yield ("L", x, cy)
            cx = x
        elif upper == "V":
            y = reader.number() + (cy if rel else 0.0)
            yield ("L", cx, y)
            cy = y
        elif upper == "C":
            x1, y1 = reader.number() + ox, reader.number() + oy
            x2, y2 = reader.number() + ox, reader.number() + oy
            x, y = reader.number() + ox, reader.number() + oy
            yield ("C", x1, y1, x2, y2, x, y)
            last_ctrl = (x2, y2)
            cx, cy = x, y
        elif upper == "S":
            if last_cmd in ("C", "S"):
                x1, y1 = 2 * cx - last_ctrl[0], 2 * cy - last_ctrl[1]
            else:
                x1, y1 = cx, cy
            x2, y2 = reader.number() + ox, reader.number() + oy
            x, y = reader.number() + ox, reader.number() + oy
            yield ("C", x1, y1, x2, y2, x, y)
            last_ctrl = (x2, y2)
            cx, cy = x, y
        elif upper == "Q":
            x1, y1 = reader.number() + ox, reader.number() + oy
            x, y = reader.number() + ox, reader.number() + oy
            yield ("Q", x1, y1, x, y)
            last_ctrl = (x1, y1)
            cx, cy = x, y
        elif upper == "T":
            if last_cmd in ("Q", "T"):
                x1, y1 = 2 * cx - last_ctrl[0], 2 * cy - last_ctrl[1]
            else:
                x1, y1 = cx, cy
            x, y = reader.number() + ox, reader.number() + oy
            yield ("Q", x1, y1, x, y)
            last_ctrl = (x1, y1)
            cx, cy = x, y
        elif upper == "A":
            rx, ry = reader.number(), reader.number()
            phi = reader.number()
            large_arc, sweep = reader.flag(), reader.flag()
            x, y = reader.number() + ox, reader.number() + oy
            yield from arc_to_cubics(cx, cy, rx, ry, phi, large_arc, sweep, x, y)
            cx, cy = x, y
        last_cmd = upper


def _cubic_point(p0: Point, p1: Point, p2: Point, p3: Point, t: float) -> Point:
    mt = 1.0 - t
    a = mt * mt * mt
    b = 3 * mt * mt * t
    c = 3 * mt * t * t
    e = t * t * t
    return (
        a * p0[0] + b * p1[0] + c * p2[0] + e * p3[0],
        a * p0[1] + b * p1[1] + c * p2[1] + e * p3[1],
    )


def _quad_point(p0: Point, p1: Point, p2: Point, t: float) -> Point:
    mt = 1.0 - t
    return (
        mt * mt * p0[0] + 2 * mt * t * p1[0] + t * t * p2[0],
        mt * mt * p0[1] + 2 * mt * t * p1[1] + t * t * p2[1],
    )


def flatten_path(d: str, segments: int = CURVE_SEGMENTS) -> List[Tuple[List[Point], bool]]:
    """Flatten path data into ``[(points, closed), ...]`` polylines.

    Curves are sampled uniformly with *segments* steps each, so the output
    only depends on *d*.
    """
    subpaths: List[Tuple[List[Point], bool]] = []
    points: List[Point] = []
    current: Point = (0.0, 0.0)

    def _finish(closed: bool) -> None:
        if len(points) > 1 or (points and closed):
            subpaths.append((list(points), closed))

    for cmd in iter_path_commands(d):
        op = cmd[0]
        if op == "M":
            _finish(False)
            points = [(cmd[1], cmd[2])]
            current = points[0]
        elif op == "L":
            if not points:
                points = [current]
            current = (cmd[1], cmd[2])
            points.append(current)
        elif op == "C":
            if not points:
                points = [current]
            p1, p2, p3 = (cmd[1], cmd[2]), (cmd[3], cmd[4]), (cmd[5], cmd[6])
            for i in range(1, segments + 1):
                points.append(_cubic_point(current, p1, p2, p3, i / segments))
            current = p3
        elif op == "Q":
            if not points:
                points = [current]
            p1, p2 = (cmd[1], cmd[2]), (cmd[3], cmd[4])
            for i in range(1, segments + 1):
                points.append(_quad_point(current, p1, p2, i / segments))
            current = p2
        elif op == "Z":
            start = points[0] if points else current
            _finish(True)
            points = []
            current = start
    _finish(False)
    return subpaths
