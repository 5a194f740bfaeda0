"""Off-screen numpy/OpenCV drawing surface used for export.

Draws onto a BGRA ``uint8`` canvas with straight (non-premultiplied)
alpha, so a rendered frame can be streamed to ffmpeg as ``bgra`` and
composited with ``overlay`` directly.

Each fill or stroke is rasterized into an anti-aliased coverage mask
limited to the path's bounding box, then blended source-over with the
current opacity.  Strokes are built from segment quads plus explicit
caps and joins (butt/round/square, miter/round/bevel) so they match
QPainter with SVG stroking rules.
"""

import functools
from typing import List, Tuple

import cv2
import numpy as np

from .models import MITER_LIMIT
from .svg_path import flatten_path

# Fixed-point bits for sub-pixel coordinates passed to cv2.
_SHIFT = 4
_ONE = 1 << _SHIFT
# Supersampling factor for stroke masks.
_SS = 4

CvPath = Tuple[Tuple[np.ndarray, bool], ...]


@functools.lru_cache(maxsize=256)
def build_cv_path(d: str) -> CvPath:
    """Flatten path data into ``((points Nx2 float64, closed), ...)``."""
    return tuple(
        (np.asarray(points, dtype=np.float64), closed)
        for points, closed in flatten_path(d)
    )


def _unit(v: np.ndarray) -> np.ndarray:
    return v / np.hypot(v[0], v[1])


def stroke_outline(
    pts: np.ndarray, closed: bool, hw: float, cap: str, join: str,
) -> Tuple[List[np.ndarray], List[np.ndarray]]:
    """Cover a stroked polyline with convex pieces.

    Returns ``(polygons, round_centers)``: one quad per segment (square
    caps lengthen the end quads), one polygon per miter or bevel join, and
    the centers of discs of radius *hw* for round joins and caps.  Follows SVG stroking:
    butt caps end flush, square caps extend by *hw*, miters longer than
    ``MITER_LIMIT`` stroke widths fall back to bevels.
    """
    keep = np.r_[True, np.any(np.diff(pts, axis=0) != 0, axis=1)]
    pts = pts[keep]
    if closed and len(pts) > 1 and np.array_equal(pts[0], pts[-1]):
        pts = pts[:-1]
    pieces: List[np.ndarray] = []
    dots: List[np.ndarray] = []

    if len(pts) == 1:
        p = pts[0]
        if cap == "round":
            dots.append(p)
        elif cap == "square":
            pieces.append(p + np.array([[-hw, -hw], [hw, -hw], [hw, hw], [-hw, hw]]))
        return pieces, dots

    if closed and len(pts) > 2:
        segs = [(pts[i], pts[(i + 1) % len(pts)]) for i in range(len(pts))]
    else:
        closed = False
        segs = [(pts[i], pts[i + 1]) for i in range(len(pts) - 1)]

    dirs = [_unit(b - a) for a, b in segs]
    for i, (a, b) in enumerate(segs):
        d = dirs[i]
        n = np.array([-d[1], d[0]]) * hw
        if not closed and cap == "square":
            if i == 0:
                a = a - d * hw
            if i == len(segs) - 1:
                b = b + d * hw
        pieces.append(np.array([a + n, b + n, b - n, a - n]))

    if not closed and cap == "round":
        dots.extend([segs[0][0], segs[-1][1]])

    joints = range(len(segs)) if closed else range(1, len(segs))
    for i in joints:
        d0, d1 = dirs[i - 1], dirs[i]
        v = segs[i][0]
        if join == "round":
            dots.append(v)
            continue
        n0 = np.array([-d0[1], d0[0]])
        n1 = np.array([-d1[1], d1[0]])
        turn = float(np.dot(d1, n0))
        if abs(turn) < 1e-9 and float(np.dot(d0, d1)) > 0:
            continue  # collinear
        side = -1.0 if turn > 0 else 1.0
        o0, o1 = v + side * n0 * hw, v + side * n1 * hw
        if join == "miter":
            m = side * (n0 + n1)
            norm = np.hypot(m[0], m[1])
            if norm > 1e-9:
                m = m / norm
                cos_half = float(np.dot(m, side * n0))
                if cos_half > 0 and 1.0 / cos_half <= MITER_LIMIT:
                    pieces.append(np.array([v, o0, v + m * (hw / cos_half), o1]))
                    continue
        pieces.append(np.array([v, o0, o1]))
    return pieces, dots


_IDENTITY = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])


class CvSurface:
    """BGRA canvas implementing the cursor drawing-surface protocol."""

    def __init__(self, width: int, height: int) -> None:
        self.image = np.zeros((height, width, 4), dtype=np.uint8)
        self._matrix = _IDENTITY.copy()
        self._opacity = 1.0
        self._stack: List[Tuple[np.ndarray, float]] = []

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    # ── State ────────────────────────────────────────────────────────

    def reset(self) -> None:
        self._matrix = _IDENTITY.copy()
        self._opacity = 1.0
        self._stack.clear()

    def clear(self, width: int, height: int) -> None:
        if (width, height) != (self.width, self.height):
            self.image = np.zeros((height, width, 4), dtype=np.uint8)
        else:
            self.image.fill(0)

    def save(self) -> None:
        self._stack.append((self._matrix.copy(), self._opacity))

    def restore(self) -> None:
        if self._stack:
            self._matrix, self._opacity = self._stack.pop()

    def set_opacity(self, opacity: float) -> None:
        self._opacity = max(0.0, min(1.0, float(opacity)))

    def translate(self, dx: float, dy: float) -> None:
        t = np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]])
        self._matrix = self._matrix @ t

    def scale(self, sx: float, sy: float) -> None:
        s = np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])
        self._matrix = self._matrix @ s

    # ── Drawing ──────────────────────────────────────────────────────

    def _transform(self, points: np.ndarray) -> np.ndarray:
        m = self._matrix
        return points @ m[:2, :2].T + m[:2, 2]

    def _line_scale(self) -> float:
        """Average scale factor of the current transform (for stroke widths)."""
        m = self._matrix
        return float(np.sqrt(abs(np.linalg.det(m[:2, :2]))))

    def _bbox(self, polys: List[np.ndarray], margin: float) -> Tuple[int, int, int, int]:
        allp = np.concatenate(polys)
        x0 = max(0, int(np.floor(allp[:, 0].min() - margin)))
        y0 = max(0, int(np.floor(allp[:, 1].min() - margin)))
        x1 = min(self.width, int(np.ceil(allp[:, 0].max() + margin)) + 1)
        y1 = min(self.height, int(np.ceil(allp[:, 1].max() + margin)) + 1)
        return x0, y0, x1, y1

    @staticmethod
    def _fixed(points: np.ndarray, x0: int, y0: int) -> np.ndarray:
        # Path coordinates address pixel corners (as in QPainter); cv2
        # addresses pixel centers.
        local = (points - (x0, y0) - 0.5) * _ONE
        return np.round(local).astype(np.int32).reshape(-1, 1, 2)

    def fill_path(self, path: CvPath, color: Tuple[int, int, int]) -> None:
        polys = [self._transform(pts) for pts, _closed in path if len(pts) >= 3]
        if not polys:
            return
        x0, y0, x1, y1 = self._bbox(polys, 1.0)
        if x1 <= x0 or y1 <= y0:
            return
        mask = np.zeros((y1 - y0, x1 - x0), dtype=np.uint8)
        cv2.fillPoly(mask, [self._fixed(p, x0, y0) for p in polys], 255, cv2.LINE_AA, _SHIFT)
        self._composite(mask, x0, y0, color)

    def stroke_path(
        self,
        path: CvPath,
        color: Tuple[int, int, int],
        width: float,
        cap: str = "round",
        join: str = "round",
    ) -> None:
        polys = [(self._transform(pts), closed) for pts, closed in path if len(pts) >= 1]
        if not polys or width <= 0:
            return
        hw = width * self._line_scale() / 2.0
        # Miter tips reach up to MITER_LIMIT * hw from the path.
        x0, y0, x1, y1 = self._bbox([p for p, _ in polys], hw * MITER_LIMIT + 1.0)
        if x1 <= x0 or y1 <= y0:
            return
        pieces: List[np.ndarray] = []
        dots: List[np.ndarray] = []
        for pts, closed in polys:
            p, d = stroke_outline(pts, closed, hw, cap, join)
            pieces.extend(p)
            dots.extend(d)

        # Overlapping anti-aliased pieces would leave seams, so the union
        # is rasterized hard at _SS x and box-filtered down.
        w, h = x1 - x0, y1 - y0
        hi = np.zeros((h * _SS, w * _SS), dtype=np.uint8)

        def to_hi(points: np.ndarray) -> np.ndarray:
            local = ((points - (x0, y0)) * _SS - 0.5) * _ONE
            return np.round(local).astype(np.int32).reshape(-1, 1, 2)

        # One call per piece: a multi-contour fillPoly would XOR overlaps.
        for piece in pieces:
            cv2.fillPoly(hi, [to_hi(piece)], 255, cv2.LINE_8, _SHIFT)
        radius = int(round(hw * _SS * _ONE))
        for c in dots:
            cx, cy = to_hi(c[np.newaxis]).reshape(2)
            cv2.circle(hi, (int(cx), int(cy)), radius, 255, -1, cv2.LINE_8, _SHIFT)
        mask = cv2.resize(hi, (w, h), interpolation=cv2.INTER_AREA)
        self._composite(mask, x0, y0, color)

    def _composite(self, mask: np.ndarray, x0: int, y0: int, color: Tuple[int, int, int]) -> None:
        """Blend a solid *color* through *mask* source-over at the current opacity."""
        h, w = mask.shape
        roi = self.image[y0:y0 + h, x0:x0 + w]
        sa = mask.astype(np.float32) * (self._opacity / 255.0)
        da = roi[:, :, 3].astype(np.float32) / 255.0
        out_a = sa + da * (1.0 - sa)

        r, g, b = color
        src = np.array([b, g, r], dtype=np.float32)
        dst = roi[:, :, :3].astype(np.float32)
        num = src * sa[:, :, np.newaxis] + dst * (da * (1.0 - sa))[:, :, np.newaxis]
        safe_a = np.where(out_a > 0, out_a, 1.0)[:, :, np.newaxis]
        out_c = num / safe_a

        roi[:, :, :3] = np.clip(np.round(out_c), 0, 255).astype(np.uint8)
        roi[:, :, 3] = np.clip(np.round(out_a * 255.0), 0, 255).astype(np.uint8)
