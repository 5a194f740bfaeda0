"""Restricted SVG parser for custom cursors.

Only ``<path>``, ``<circle>``, ``<rect>`` and ``<line>`` (optionally nested
in ``<g>``) are accepted so the preview and the export draw exactly the
same thing.  Anything else is rejected up front instead of being rendered
approximately.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Tuple

from .errors import EmptySvgError, ParseError, UnsupportedSvgElementError
from .models import CursorShape, ShapePath
from .svg_path import iter_path_commands

logger = logging.getLogger(__name__)

DEFAULT_VIEW_BOX = (0.0, 0.0, 24.0, 24.0)

_CONTAINERS = {"svg", "g"}
_SHAPES = {"path", "circle", "rect", "line"}
# Descriptive elements that never draw anything.
_IGNORED = {"title", "desc", "metadata"}

# Presentation attributes that inherit from ancestors.
_INHERITED = ("fill", "stroke", "stroke-width", "stroke-linecap", "stroke-linejoin")
_ROOT_STYLE = {
    "fill": "black",
    "stroke-width": "2",
    "stroke-linecap": "round",
    "stroke-linejoin": "round",
}

_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an ElementTree tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _fmt(v: float) -> str:
    text = f"{v:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _number(value: Optional[str], default: float = 0.0) -> float:
    """Parse a length attribute, ignoring a trailing unit like ``px``."""
    if value is None:
        return default
    m = _NUMBER_RE.match(value)
    if not m:
        return default
    return float(m.group(1))


def _parse_style_attr(style: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for decl in style.split(";"):
        if ":" in decl:
            key, val = decl.split(":", 1)
            out[key.strip()] = val.strip()
    return out


def _effective_style(elem: ET.Element, inherited: Dict[str, str]) -> Dict[str, str]:
    style = dict(inherited)
    for key in _INHERITED:
        if key in elem.attrib:
            style[key] = elem.attrib[key].strip()
    for key, val in _parse_style_attr(elem.attrib.get("style", "")).items():
        if key in _INHERITED:
            style[key] = val
    return style


def _parse_view_box(value: Optional[str]) -> Tuple[float, float, float, float]:
    if value is None:
        return DEFAULT_VIEW_BOX
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    try:
        nums = [float(p) for p in parts]
    except ValueError:
        raise ParseError(f"Malformed viewBox: {value!r}") from None
    if len(nums) != 4 or nums[2] <= 0 or nums[3] <= 0:
        raise ParseError(f"Malformed viewBox: {value!r}")
    return (nums[0], nums[1], nums[2], nums[3])


# ── Shape → path data ───────────────────────────────────────────────


def circle_to_path(cx: float, cy: float, r: float) -> str:
    """Two half-circle arcs starting at the leftmost point."""
    return (
        f"M{_fmt(cx - r)},{_fmt(cy)}"
        f"a{_fmt(r)},{_fmt(r)} 0 1,0 {_fmt(2 * r)},0"
        f"a{_fmt(r)},{_fmt(r)} 0 1,0 {_fmt(-2 * r)},0z"
    )


def rect_to_path(x: float, y: float, w: float, h: float,
                 rx: float = 0.0, ry: float = 0.0) -> str:
    """Rectangle path, with elliptical corners when *rx*/*ry* are set."""
    rx = min(max(rx, 0.0), w / 2)
    ry = min(max(ry, 0.0), h / 2)
    if rx == 0 or ry == 0:
        return f"M{_fmt(x)},{_fmt(y)}h{_fmt(w)}v{_fmt(h)}h{_fmt(-w)}z"
    corner = f"{_fmt(rx)},{_fmt(ry)} 0 0,1"
    return (
        f"M{_fmt(x + rx)},{_fmt(y)}"
        f"H{_fmt(x + w - rx)}A{corner} {_fmt(x + w)},{_fmt(y + ry)}"
        f"V{_fmt(y + h - ry)}A{corner} {_fmt(x + w - rx)},{_fmt(y + h)}"
        f"H{_fmt(x + rx)}A{corner} {_fmt(x)},{_fmt(y + h - ry)}"
        f"V{_fmt(y + ry)}A{corner} {_fmt(x + rx)},{_fmt(y)}z"
    )


def line_to_path(x1: float, y1: float, x2: float, y2: float) -> str:
    return f"M{_fmt(x1)},{_fmt(y1)}L{_fmt(x2)},{_fmt(y2)}"


def _rect_radii(elem: ET.Element) -> Tuple[float, float]:
    rx_attr = elem.get("rx")
    ry_attr = elem.get("ry")
    rx = _number(rx_attr) if rx_attr is not None else None
    ry = _number(ry_attr) if ry_attr is not None else None
    # A single radius applies to both axes.
    if rx is None and ry is None:
        return 0.0, 0.0
    if rx is None:
        rx = ry
    if ry is None:
        ry = rx
    return rx, ry


def _shape_path_data(name: str, elem: ET.Element) -> Optional[str]:
    """Path data for a supported shape, or None if it has no geometry."""
    if name == "path":
        d = (elem.get("d") or "").strip()
        if not d:
            return None
        # Validate eagerly so a bad path fails at parse time, not mid-export.
        for _ in iter_path_commands(d):
            pass
        return d
    if name == "circle":
        r = _number(elem.get("r"))
        if r <= 0:
            return None
        return circle_to_path(_number(elem.get("cx")), _number(elem.get("cy")), r)
    if name == "rect":
        w = _number(elem.get("width"))
        h = _number(elem.get("height"))
        if w <= 0 or h <= 0:
            return None
        rx, ry = _rect_radii(elem)
        return rect_to_path(_number(elem.get("x")), _number(elem.get("y")), w, h, rx, ry)
    if name == "line":
        return line_to_path(
            _number(elem.get("x1")), _number(elem.get("y1")),
            _number(elem.get("x2")), _number(elem.get("y2")),
        )
    return None


# ── Parser ──────────────────────────────────────────────────────────


def parse_svg_cursor(
    svg_text: str,
    hotspot: Optional[Tuple[float, float]] = None,
) -> CursorShape:
    """Parse *svg_text* into a :class:`CursorShape`.

    *hotspot* is the fractional click point (defaults to the top-left
    corner).  Raises :class:`UnsupportedSvgElementError` for elements
    outside the supported subset, :class:`EmptySvgError` when nothing is
    drawable and :class:`ParseError` for malformed input.
    """
    try:
        root = ET.fromstring(svg_text)
    except ET.ParseError as exc:
        raise ParseError(f"Malformed SVG: {exc}") from None

    if _local_name(root.tag) != "svg":
        raise ParseError(f"Expected <svg> root element, got <{_local_name(root.tag)}>")

    view_box = _parse_view_box(root.get("viewBox"))
    paths: List[ShapePath] = []
    stroke_style: Optional[Dict[str, str]] = None

    def _walk(elem: ET.Element, inherited: Dict[str, str]) -> None:
        nonlocal stroke_style
        name = _local_name(elem.tag)
        if name in _IGNORED:
            return
        if name not in _CONTAINERS and name not in _SHAPES:
            raise UnsupportedSvgElementError(name)

        style = _effective_style(elem, inherited)
        if name in _CONTAINERS:
            for child in elem:
                _walk(child, style)
            return
        if len(elem):
            # Shapes cannot carry children other than descriptive ones.
            for child in elem:
                child_name = _local_name(child.tag)
                if child_name not in _IGNORED:
                    raise UnsupportedSvgElementError(child_name)

        d = _shape_path_data(name, elem)
        if d is None:
            return
        # stroke is off unless declared; lines are the exception.
        if name == "line":
            fill = False
            stroke = style.get("stroke") != "none"
        else:
            fill = style["fill"] != "none"
            stroke = style.get("stroke", "none") != "none"
        if not fill and not stroke:
            return
        if stroke and stroke_style is None:
            stroke_style = style
        paths.append(ShapePath(d=d, fill=fill, stroke=stroke))

    _walk(root, _ROOT_STYLE)

    if not paths:
        raise EmptySvgError()

    style = stroke_style or _effective_style(root, _ROOT_STYLE)
    try:
        shape = CursorShape(
            view_box=view_box,
            paths=tuple(paths),
            hotspot=hotspot if hotspot is not None else (0.0, 0.0),
            stroke_width=_number(style["stroke-width"], 2.0),
            stroke_cap=style["stroke-linecap"],
            stroke_join=style["stroke-linejoin"],
        )
    except ValueError as exc:
        raise ParseError(str(exc)) from None
    logger.debug("Parsed custom cursor: %d path(s), viewBox=%s", len(paths), view_box)
    return shape
