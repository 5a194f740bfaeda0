"""Core data models for cursorcast.

Defines the keyframe timeline written during capture and the
post-production configuration applied at export.  All models support
JSON serialization via ``to_dict()`` / ``from_dict()`` (or ``to_json()``
/ ``from_json()`` for the top-level files).  Dict keys use the camelCase
names of the persisted JSON files.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import json

from .utils import parse_hex_color


KEYFRAME_MOVE = "move"
KEYFRAME_CLICK = "click"
KEYFRAME_KINDS = (KEYFRAME_MOVE, KEYFRAME_CLICK)

TIMELINE_VERSION = 1

DEFAULT_FPS = 25
DEFAULT_CLICK_WINDOW_MS = 100.0

CURSOR_STYLES = ("pointer", "pointer-alt", "hand", "dot")
CLICK_EFFECT_SCALE = "scale"
CLICK_EFFECT_NONE = "none"
CLICK_EFFECTS = (CLICK_EFFECT_SCALE, CLICK_EFFECT_NONE)

MIN_CURSOR_SIZE = 4
MAX_CURSOR_SIZE = 64


@dataclass(frozen=True)
class CursorKeyframe:
    """A pointer position or click, timestamped relative to recording start."""
    x: float
    y: float
    timestamp: float  # ms since recording start
    kind: str = KEYFRAME_MOVE
    action_id: str = ""
    step_index: int = 0

    def __post_init__(self) -> None:
        if self.kind not in KEYFRAME_KINDS:
            raise ValueError(f"Unknown keyframe type: {self.kind!r}")
        if self.step_index < 0:
            raise ValueError("stepIndex must be >= 0")

    @property
    def is_click(self) -> bool:
        return self.kind == KEYFRAME_CLICK

    def to_dict(self) -> dict:
        """Serialize to a plain dict for JSON storage."""
        return {
            "x": self.x,
            "y": self.y,
            "timestamp": self.timestamp,
            "type": self.kind,
            "actionId": self.action_id,
            "stepIndex": self.step_index,
        }

    @staticmethod
    def from_dict(d: dict) -> "CursorKeyframe":
        """Reconstruct from a dict produced by ``to_dict()``."""
        return CursorKeyframe(
            x=float(d["x"]),
            y=float(d["y"]),
            timestamp=float(d["timestamp"]),
            kind=d.get("type", KEYFRAME_MOVE),
            action_id=d.get("actionId", ""),
            step_index=int(d.get("stepIndex", 0)),
        )


@dataclass
class KeyframeTimeline:
    """Everything the compositor needs to replay the pointer of one recording.

    Keyframes are sorted non-decreasing by timestamp.  The timeline is
    written once when the capture session ends and is read-only after.
    """
    fps: int
    viewport_width: int
    viewport_height: int
    duration_ms: float
    keyframes: List[CursorKeyframe] = field(default_factory=list)
    recording_started_at: str = ""

    def __post_init__(self) -> None:
        if self.fps < 1:
            raise ValueError("fps must be >= 1")
        if self.viewport_width < 1 or self.viewport_height < 1:
            raise ValueError("viewport dimensions must be >= 1")
        for prev, cur in zip(self.keyframes, self.keyframes[1:]):
            if cur.timestamp < prev.timestamp:
                raise ValueError(
                    f"Keyframes out of order: {cur.timestamp} after {prev.timestamp}"
                )

    @property
    def click_keyframes(self) -> List[CursorKeyframe]:
        return [kf for kf in self.keyframes if kf.is_click]

    def to_dict(self) -> dict:
        return {
            "version": TIMELINE_VERSION,
            "fps": self.fps,
            "viewport": {"w": self.viewport_width, "h": self.viewport_height},
            "recordingStartedAt": self.recording_started_at,
            "durationMs": self.duration_ms,
            "keyframes": [kf.to_dict() for kf in self.keyframes],
        }

    @staticmethod
    def from_dict(d: dict) -> "KeyframeTimeline":
        version = d.get("version", TIMELINE_VERSION)
        if version != TIMELINE_VERSION:
            raise ValueError(f"Unsupported keyframe file version: {version}")
        viewport = d["viewport"]
        return KeyframeTimeline(
            fps=int(d["fps"]),
            viewport_width=int(viewport["w"]),
            viewport_height=int(viewport["h"]),
            duration_ms=float(d["durationMs"]),
            keyframes=[CursorKeyframe.from_dict(k) for k in d.get("keyframes", [])],
            recording_started_at=d.get("recordingStartedAt", ""),
        )

    def to_json(self) -> str:
        """Serialize the timeline to the ``cursor-keyframes.json`` format."""
        return json.dumps(self.to_dict(), indent=2)

    @staticmethod
    def from_json(s: str) -> "KeyframeTimeline":
        return KeyframeTimeline.from_dict(json.loads(s))


@dataclass
class CursorConfig:
    """Cursor overlay settings."""
    enabled: bool = True
    style: str = "pointer"
    custom_svg_path: Optional[str] = None
    custom_hotspot: Optional[Tuple[float, float]] = None
    size: int = 20
    color: str = "#000000"
    opacity_percent: float = 80.0
    click_effect: str = CLICK_EFFECT_SCALE

    def __post_init__(self) -> None:
        if self.style not in CURSOR_STYLES:
            raise ValueError(f"Unknown cursor style: {self.style!r}")
        if not MIN_CURSOR_SIZE <= self.size <= MAX_CURSOR_SIZE:
            raise ValueError(
                f"Cursor size must be in {MIN_CURSOR_SIZE}..{MAX_CURSOR_SIZE}, got {self.size}"
            )
        if not 0 <= self.opacity_percent <= 100:
            raise ValueError("opacityPercent must be in 0..100")
        parse_hex_color(self.color)
        if self.click_effect not in CLICK_EFFECTS:
            raise ValueError(f"Unknown click effect: {self.click_effect!r}")
        if self.custom_hotspot is not None:
            self.custom_hotspot = (float(self.custom_hotspot[0]), float(self.custom_hotspot[1]))

    @property
    def opacity(self) -> float:
        """Opacity as a 0-1 fraction."""
        return self.opacity_percent / 100.0

    def to_dict(self) -> dict:
        d = {
            "enabled": self.enabled,
            "style": self.style,
            "size": self.size,
            "color": self.color,
            "opacityPercent": self.opacity_percent,
            "clickEffect": self.click_effect,
        }
        if self.custom_svg_path:
            d["customSvgPath"] = self.custom_svg_path
        if self.custom_hotspot is not None:
            d["customHotspot"] = list(self.custom_hotspot)
        return d

    @staticmethod
    def from_dict(d: dict) -> "CursorConfig":
        """Reconstruct from a dict; missing keys take their defaults."""
        defaults = CursorConfig()
        hotspot = d.get("customHotspot")
        return CursorConfig(
            enabled=d.get("enabled", defaults.enabled),
            style=d.get("style", defaults.style),
            custom_svg_path=d.get("customSvgPath"),
            custom_hotspot=tuple(hotspot) if hotspot is not None else None,
            size=d.get("size", defaults.size),
            color=d.get("color", defaults.color),
            opacity_percent=d.get("opacityPercent", defaults.opacity_percent),
            click_effect=d.get("clickEffect", defaults.click_effect),
        )


@dataclass
class AudioConfig:
    """Click-sound settings."""
    click_sound_enabled: bool = True
    volume_percent: float = 50.0
    custom_sound_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 <= self.volume_percent <= 100:
            raise ValueError("volumePercent must be in 0..100")

    @property
    def volume(self) -> float:
        """Volume as a 0-1 gain."""
        return self.volume_percent / 100.0

    def to_dict(self) -> dict:
        d = {
            "clickSoundEnabled": self.click_sound_enabled,
            "volumePercent": self.volume_percent,
        }
        if self.custom_sound_path:
            d["customSoundPath"] = self.custom_sound_path
        return d

    @staticmethod
    def from_dict(d: dict) -> "AudioConfig":
        defaults = AudioConfig()
        return AudioConfig(
            click_sound_enabled=d.get("clickSoundEnabled", defaults.click_sound_enabled),
            volume_percent=d.get("volumePercent", defaults.volume_percent),
            custom_sound_path=d.get("customSoundPath"),
        )


@dataclass
class PostProductionConfig:
    """User-editable export settings, versioned independently of the timeline."""
    cursor: CursorConfig = field(default_factory=CursorConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)

    def to_dict(self) -> dict:
        return {"cursor": self.cursor.to_dict(), "audio": self.audio.to_dict()}

    @staticmethod
    def from_dict(d: dict) -> "PostProductionConfig":
        return PostProductionConfig(
            cursor=CursorConfig.from_dict(d.get("cursor", {})),
            audio=AudioConfig.from_dict(d.get("audio", {})),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @staticmethod
    def from_json(s: str) -> "PostProductionConfig":
        return PostProductionConfig.from_dict(json.loads(s))


STROKE_CAPS = ("round", "butt", "square")
STROKE_JOINS = ("round", "bevel", "miter")
# SVG default stroke-miterlimit: miter length / stroke width.
MITER_LIMIT = 4.0


@dataclass(frozen=True)
class ShapePath:
    """One path of a cursor shape, in viewBox coordinates."""
    d: str
    fill: bool = True
    stroke: bool = False


@dataclass(frozen=True)
class CursorShape:
    """Vector cursor description shared by preview and export.

    *hotspot* is the fractional point of the shape (0-1 on both axes)
    that lands on the pointer position.
    """
    view_box: Tuple[float, float, float, float]
    paths: Tuple[ShapePath, ...]
    hotspot: Tuple[float, float] = (0.0, 0.0)
    stroke_width: float = 2.0
    stroke_cap: str = "round"
    stroke_join: str = "round"

    def __post_init__(self) -> None:
        if self.view_box[2] <= 0 or self.view_box[3] <= 0:
            raise ValueError(f"viewBox must have a positive size, got {self.view_box}")
        hx, hy = self.hotspot
        if not (0.0 <= hx <= 1.0 and 0.0 <= hy <= 1.0):
            raise ValueError(f"Hotspot must be within 0..1, got {self.hotspot}")
        if self.stroke_cap not in STROKE_CAPS:
            raise ValueError(f"Unknown stroke-linecap: {self.stroke_cap!r}")
        if self.stroke_join not in STROKE_JOINS:
            raise ValueError(f"Unknown stroke-linejoin: {self.stroke_join!r}")


MANIFEST_VERSION = 1
STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"


@dataclass
class RecordingManifest:
    """Summary of one recording directory, written when capture ends."""
    status: str = STATUS_COMPLETE
    started_at: str = ""
    completed_at: str = ""
    duration_ms: float = 0.0
    fps: int = DEFAULT_FPS
    viewport_width: int = 0
    viewport_height: int = 0
    raw_video: str = ""
    keyframes: str = ""
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in (STATUS_COMPLETE, STATUS_INCOMPLETE):
            raise ValueError(f"Unknown manifest status: {self.status!r}")

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    def to_dict(self) -> dict:
        return {
            "version": MANIFEST_VERSION,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "fps": self.fps,
            "viewport": {"w": self.viewport_width, "h": self.viewport_height},
            "rawVideo": self.raw_video,
            "keyframes": self.keyframes,
            "error": self.error,
        }

    @staticmethod
    def from_dict(d: dict) -> "RecordingManifest":
        viewport = d.get("viewport", {})
        return RecordingManifest(
            status=d.get("status", STATUS_COMPLETE),
            started_at=d.get("startedAt", ""),
            completed_at=d.get("completedAt", ""),
            duration_ms=float(d.get("durationMs", 0.0)),
            fps=int(d.get("fps", DEFAULT_FPS)),
            viewport_width=int(viewport.get("w", 0)),
            viewport_height=int(viewport.get("h", 0)),
            raw_video=d.get("rawVideo", ""),
            keyframes=d.get("keyframes", ""),
            error=d.get("error"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @staticmethod
    def from_json(s: str) -> "RecordingManifest":
        return RecordingManifest.from_dict(json.loads(s))
