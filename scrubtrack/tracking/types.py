"""
Data model for point and planar tracking.

Positions recorded for a frame are one of two variants: ManualPosition
(placed by the user) or TrackedPosition (estimated by optical flow).
Each point holds at most one entry per frame.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class PositionSource(Enum):
    """Origin of a recorded frame position."""
    MANUAL = "manual"
    TRACKED = "tracked"


@dataclass(frozen=True)
class ManualPosition:
    """Position placed by the user."""
    x: float
    y: float

    @property
    def source(self) -> PositionSource:
        return PositionSource.MANUAL


@dataclass(frozen=True)
class TrackedPosition:
    """Position estimated by optical flow."""
    x: float
    y: float
    error: float = 0.0

    @property
    def source(self) -> PositionSource:
        return PositionSource.TRACKED


FramePosition = Union[ManualPosition, TrackedPosition]


def make_position(x: float, y: float, source: PositionSource, error: float = 0.0) -> FramePosition:
    """Build the position variant matching a source tag."""
    if source is PositionSource.MANUAL:
        return ManualPosition(float(x), float(y))
    return TrackedPosition(float(x), float(y), float(error))


@dataclass(frozen=True)
class TrajectoryPoint:
    """A position at a frame, used for visualization."""
    x: float
    y: float
    frame: int


@dataclass
class TrajectoryPath:
    """Trajectory of one point within a frame window."""
    point_id: str
    path: list[TrajectoryPoint]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass
class TrackingPoint:
    """
    A user-placed (or planar feature) point.

    Attributes:
        id: Opaque identifier
        x, y: Live position, the starting point for the next estimate
        confidence: Trust score in [0, 1]
        is_active: Whether the point takes part in estimation
        search_radius: Bound on plausible per-frame motion in pixels
        adaptive_window_size: Flow window derived from search_radius
        frame_positions: One authoritative position per frame
        trajectory: Bounded list of recent positions, visualization only
        last_manual_move_frame: Frame of the last user edit, if any
        planar_id: Owning planar tracker for feature points, None otherwise
    """
    id: str
    x: float
    y: float
    search_radius: float
    adaptive_window_size: int
    confidence: float = 1.0
    is_active: bool = True
    frame_positions: dict[int, FramePosition] = field(default_factory=dict)
    trajectory: list[TrajectoryPoint] = field(default_factory=list)
    last_manual_move_frame: int | None = None
    planar_id: str | None = None

    @property
    def is_feature(self) -> bool:
        return self.planar_id is not None

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass
class PlanarCorner:
    """One corner of a planar tracker quad."""
    id: str
    x: float
    y: float


@dataclass(frozen=True)
class PlanarSnapshot:
    """Corners and center of a planar tracker at one frame."""
    frame: int
    corners: tuple[tuple[float, float], ...]
    center: tuple[float, float]


@dataclass
class PlanarTracker:
    """
    A tracked quadrilateral driven by internal feature points.

    Corners are ordered top-left, top-right, bottom-right, bottom-left and
    there are always exactly four of them.
    """
    id: str
    corners: list[PlanarCorner]
    center: tuple[float, float]
    width: float
    height: float
    is_active: bool = True
    confidence: float = 1.0
    feature_points: list[TrackingPoint] = field(default_factory=list)
    reference_corners: list[tuple[float, float]] = field(default_factory=list)
    reference_features: dict[str, tuple[float, float]] = field(default_factory=dict)
    homography: list[float] | None = None
    frame_snapshots: dict[int, PlanarSnapshot] = field(default_factory=dict)
    trajectory: list[PlanarSnapshot] = field(default_factory=list)

    def __post_init__(self):
        if len(self.corners) != 4:
            raise ValueError(f"Planar tracker needs exactly 4 corners, got {len(self.corners)}")

    def corner_positions(self) -> list[tuple[float, float]]:
        return [(c.x, c.y) for c in self.corners]
