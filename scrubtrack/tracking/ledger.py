"""
Per-frame position authority for tracking points.

Each point keeps one position per frame. Reading a frame with no entry
falls back to the nearest earlier frame with data, then to the point's
live position, so scrubbing to an untracked frame shows the point where
it was last known.
"""

import logging

from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.types import (
    FramePosition,
    ManualPosition,
    PositionSource,
    TrackingPoint,
    TrajectoryPath,
    TrajectoryPoint,
    make_position,
)

logger = logging.getLogger(__name__)


def should_replace(
    existing: FramePosition | None,
    incoming: FramePosition,
    protect_manual: bool = False,
) -> bool:
    """
    Decide whether an incoming position replaces the entry for a frame.

    Writes are last-write-wins. With protect_manual, a tracked estimate
    never replaces a manual placement for the same frame.
    """
    if existing is None or not protect_manual:
        return True
    return not (
        isinstance(existing, ManualPosition)
        and incoming.source is PositionSource.TRACKED
    )


class PositionLedger:
    """
    Reads and writes the per-frame position record of tracking points.

    Example:
        >>> ledger = PositionLedger()
        >>> ledger.set_position_at_frame(point, 150, 150, 5, PositionSource.MANUAL)
        >>> ledger.get_position_at_frame(point, 7)   # nearest earlier frame
        (150.0, 150.0)
    """

    def __init__(
        self,
        trajectory_length: int = 100,
        diagnostics: DiagnosticsLog | None = None,
    ):
        self.trajectory_length = trajectory_length
        self.diagnostics = diagnostics

    def _log(self, frame: int, operation: str, data: dict, level: str = "debug") -> None:
        if self.diagnostics is not None:
            self.diagnostics.log(frame, operation, data, level)

    def set_position_at_frame(
        self,
        point: TrackingPoint,
        x: float,
        y: float,
        frame: int,
        source: PositionSource = PositionSource.TRACKED,
        error: float = 0.0,
    ) -> FramePosition:
        """
        Store the position for a frame, overwriting any previous entry.

        The point's live position and its trajectory follow the write.
        """
        position = make_position(x, y, source, error)
        overwrote = point.frame_positions.get(frame)
        point.frame_positions[frame] = position
        point.x = position.x
        point.y = position.y
        self._update_trajectory(point, position.x, position.y, frame)

        self._log(frame, "POSITION_SET", {
            "point_id": point.id,
            "source": source.value,
            "position": (round(position.x, 2), round(position.y, 2)),
            "overwrote": None if overwrote is None else overwrote.source.value,
        })
        return position

    def record_tracked(
        self,
        point: TrackingPoint,
        x: float,
        y: float,
        frame: int,
        error: float = 0.0,
    ) -> bool:
        """
        Store a tracked estimate unless the user placed the point at this frame.

        Returns:
            True if the estimate was written
        """
        incoming = make_position(x, y, PositionSource.TRACKED, error)
        existing = point.frame_positions.get(frame)
        if not should_replace(existing, incoming, protect_manual=True):
            self._log(frame, "TRACKED_POSITION_SKIPPED", {
                "point_id": point.id,
                "reason": "manual_position_exists",
            })
            return False
        self.set_position_at_frame(point, x, y, frame, PositionSource.TRACKED, error)
        return True

    def _update_trajectory(self, point: TrackingPoint, x: float, y: float, frame: int) -> None:
        entry = TrajectoryPoint(x, y, frame)
        for i, existing in enumerate(point.trajectory):
            if existing.frame == frame:
                point.trajectory[i] = entry
                return
        point.trajectory.append(entry)
        if len(point.trajectory) > self.trajectory_length:
            del point.trajectory[: len(point.trajectory) - self.trajectory_length]

    def entry_at(self, point: TrackingPoint, frame: int) -> FramePosition | None:
        """The exact entry for a frame, if one exists."""
        return point.frame_positions.get(frame)

    def nearest_earlier_frame(self, point: TrackingPoint, frame: int) -> int | None:
        return max((f for f in point.frame_positions if f < frame), default=None)

    def get_position_at_frame(self, point: TrackingPoint, frame: int) -> tuple[float, float]:
        """
        Resolve the authoritative position of a point at a frame.

        Exact entry first, then the nearest earlier frame with data, then the
        point's live position.
        """
        exact = point.frame_positions.get(frame)
        if exact is not None:
            return (exact.x, exact.y)

        earlier = self.nearest_earlier_frame(point, frame)
        if earlier is not None:
            found = point.frame_positions[earlier]
            return (found.x, found.y)

        return (point.x, point.y)

    def sync_point_to_frame(self, point: TrackingPoint, frame: int) -> tuple[float, float]:
        """Move the point's live position to its resolved position at a frame."""
        x, y = self.get_position_at_frame(point, frame)
        point.x = x
        point.y = y
        return (x, y)

    def sync_all(self, points: list[TrackingPoint], frame: int) -> None:
        exact = sum(1 for p in points if frame in p.frame_positions)
        for point in points:
            self.sync_point_to_frame(point, frame)
        self._log(frame, "SYNC_TO_FRAME", {"points": len(points), "exact": exact})

    def was_recently_manually_moved(
        self,
        point: TrackingPoint,
        frame: int,
        frame_threshold: int = 2,
    ) -> bool:
        """True if the user placed the point within frame_threshold frames."""
        if point.last_manual_move_frame is None:
            return False
        return abs(frame - point.last_manual_move_frame) <= frame_threshold

    def frame_positions(self, point: TrackingPoint) -> dict[int, tuple[float, float]]:
        """All recorded positions of a point, sorted by frame."""
        return {f: (p.x, p.y) for f, p in sorted(point.frame_positions.items())}

    def get_trajectory_paths(
        self,
        points: list[TrackingPoint],
        current_frame: int,
        frame_range: int = 5,
    ) -> list[TrajectoryPath]:
        """
        Collect recorded positions within +/- frame_range of a frame.

        Points without data in the window are omitted. Paths are ascending
        by frame.
        """
        start = max(0, current_frame - frame_range)
        end = current_frame + frame_range
        paths = []
        for point in points:
            path = [
                TrajectoryPoint(pos.x, pos.y, f)
                for f, pos in sorted(point.frame_positions.items())
                if start <= f <= end
            ]
            if path:
                paths.append(TrajectoryPath(point_id=point.id, path=path))
        return paths
