"""
Tests for TrackerOrchestrator, planar trackers and batch tracking.
"""

import cv2
import numpy as np
import pytest

from conftest import ScriptedFlowPrimitive, make_texture, shift_frame


class TestInitialization:
    """Tests for the initialization contract."""

    def test_uninitialized_passes_through(self, blank):
        """Test that nothing is estimated before initialize()."""
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator

        primitive = ScriptedFlowPrimitive(shift=(5, 0))
        tracker = TrackerOrchestrator(flow_primitive=primitive)
        pid = tracker.add_point(100, 100)

        tracker.ingest_frame(blank, frame=0)
        points = tracker.ingest_frame(blank, frame=1)

        assert [p.id for p in points] == [pid]
        assert points[0].position == (100.0, 100.0)
        assert primitive.calls == []
        assert tracker.get_tracker_state()["is_initialized"] is False

    def test_initialize_with_opencv(self):
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator

        tracker = TrackerOrchestrator()
        assert tracker.initialize() is True
        assert tracker.initialize() is True
        assert tracker.get_tracker_state()["has_flow_primitive"] is True

    def test_initialize_without_capability(self, monkeypatch):
        """Test that a missing primitive is reported, not raised."""
        import scrubtrack.tracking.orchestrator as orchestrator_module

        monkeypatch.setattr(orchestrator_module, "load_flow_primitive", lambda *args: None)
        tracker = orchestrator_module.TrackerOrchestrator()
        assert tracker.initialize() is False
        assert tracker.diagnostics.get_events("INITIALIZE_FAILED")

    def test_uses_supplied_diagnostics_log(self, blank):
        """Test that a caller's empty log is kept and its sink sees events."""
        from scrubtrack.core.diagnostics import DiagnosticsLog
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator

        seen = []
        log = DiagnosticsLog(sink=seen.append)
        tracker = TrackerOrchestrator(
            flow_primitive=ScriptedFlowPrimitive(shift=(1, 0)), diagnostics=log,
        )
        assert tracker.diagnostics is log
        assert tracker.ledger.diagnostics is log

        assert tracker.initialize() is True
        tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(blank, frame=1)

        assert seen
        assert len(seen) == len(log)

    def test_dispose(self, make_tracker, blank):
        tracker = make_tracker()
        tracker.add_point(10, 10)
        tracker.ingest_frame(blank, frame=0)
        tracker.dispose()
        assert tracker.get_tracking_points() == []
        assert tracker.is_initialized is False
        assert tracker.frame_store.has_prev is False


class TestScenarios:
    """End-to-end tracking scenarios."""

    def test_identical_frames_with_opencv(self):
        """Test that an identical next frame keeps the point in place."""
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator

        tracker = TrackerOrchestrator()
        assert tracker.initialize()
        frame = cv2.cvtColor(make_texture(), cv2.COLOR_GRAY2BGR)

        tracker.set_current_frame(0)
        pid = tracker.add_point(100, 100, search_radius=75)
        point = tracker.state.find_point(pid)
        point.confidence = 0.6

        tracker.ingest_frame(frame)
        tracker.set_current_frame(1)
        points = tracker.ingest_frame(frame.copy())

        assert [p.id for p in points] == [pid]
        x, y = tracker.get_position_at_frame(pid, 1)
        assert x == pytest.approx(100.0, abs=0.1)
        assert y == pytest.approx(100.0, abs=0.1)
        assert point.confidence > 0.6
        assert point.is_active is True

    def test_shifted_frames_with_opencv(self):
        """Test following a textured frame moving a few pixels per frame."""
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator

        tracker = TrackerOrchestrator()
        assert tracker.initialize()
        base = make_texture(seed=3)
        pid = tracker.add_point(100, 100)

        for frame in range(4):
            tracker.ingest_frame(shift_frame(base, 2 * frame, frame), frame=frame)

        x, y = tracker.get_position_at_frame(pid, 3)
        assert x == pytest.approx(106.0, abs=0.5)
        assert y == pytest.approx(103.0, abs=0.5)
        assert sorted(tracker.get_frame_positions(pid)) == [0, 1, 2, 3]

    def test_move_after_track(self, make_tracker, blank):
        """Test that a manual move overrides the tracked position for its frame."""
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(20, 20)))
        tracker.set_current_frame(4)
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank)
        tracker.ingest_frame(blank, frame=5)
        assert tracker.get_position_at_frame(pid, 5) == pytest.approx((120.0, 120.0))

        assert tracker.move_point(pid, 150, 150) is True
        assert tracker.get_position_at_frame(pid, 5) == (150.0, 150.0)
        assert tracker.get_tracking_points()[0].position == (150.0, 150.0)
        assert tracker.get_tracking_points()[0].confidence == 1.0

    def test_continuous_tracking_keeps_manual_entry(self, make_tracker, blank):
        """Test that fresh estimates never replace a manual placement."""
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(5, 0)))
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        tracker.set_current_frame(1)
        tracker.move_point(pid, 50, 50)

        tracker.sync_to_frame(0)
        tracker.enable_continuous_tracking()
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(blank, frame=1)

        assert tracker.get_position_at_frame(pid, 1) == (50.0, 50.0)

    def test_ten_failures_then_reactivate(self, make_tracker, blank):
        """Test deactivation after repeated failures and explicit reactivation."""
        tracker = make_tracker(ScriptedFlowPrimitive(status=False, error=50.0))
        pid = tracker.add_point(100, 100)

        for frame in range(11):
            points = tracker.ingest_frame(blank, frame=frame)
            point = tracker.state.find_point(pid)
            assert 0.0 <= point.confidence <= 1.0

        assert points == []
        assert point.is_active is False

        assert tracker.reactivate_points() == 1
        assert point.is_active is True
        assert point.confidence == 0.5

    def test_unknown_ids(self, make_tracker):
        tracker = make_tracker()
        assert tracker.move_point("missing", 1, 1) is False
        assert tracker.remove_point("missing") is False
        assert tracker.update_search_radius("missing", 50) is False
        assert tracker.get_position_at_frame("missing", 0) is None
        assert tracker.get_frame_positions("missing") == {}
        assert tracker.remove_planar_tracker("missing") is False
        assert tracker.update_planar_tracker_corner("missing", 0, 1, 1) is False

    def test_update_search_radius_clamped(self, make_tracker):
        tracker = make_tracker()
        pid = tracker.add_point(10, 10)
        tracker.update_search_radius(pid, 1000)
        point = tracker.state.find_point(pid)
        assert point.search_radius == 140.0
        assert point.adaptive_window_size == 31


class TestIngest:
    """Tests for the ingest state machine."""

    def test_replay_without_continuous_mode(self, make_tracker, blank):
        """Test that cached positions are replayed instead of re-estimated."""
        primitive = ScriptedFlowPrimitive(shift=(4, 0))
        tracker = make_tracker(primitive)
        pid = tracker.add_point(100, 100)
        for frame in range(3):
            tracker.ingest_frame(blank, frame=frame)
        calls = len(primitive.calls)

        primitive.shift = (10, 0)
        tracker.sync_to_frame(1)
        tracker.ingest_frame(blank, frame=1)
        tracker.ingest_frame(blank, frame=2)

        assert len(primitive.calls) == calls
        assert tracker.get_position_at_frame(pid, 2) == pytest.approx((108.0, 100.0))

    def test_continuous_mode_re_estimates(self, make_tracker, blank):
        primitive = ScriptedFlowPrimitive(shift=(4, 0))
        tracker = make_tracker(primitive)
        pid = tracker.add_point(100, 100)
        for frame in range(3):
            tracker.ingest_frame(blank, frame=frame)

        primitive.shift = (10, 0)
        tracker.sync_to_frame(1)
        tracker.enable_continuous_tracking()
        tracker.ingest_frame(blank, frame=1)
        tracker.ingest_frame(blank, frame=2)

        assert tracker.get_position_at_frame(pid, 2) == pytest.approx((114.0, 100.0))

    def test_frame_skip_penalty(self, make_tracker, blank):
        """Test the one-time penalty on a non-contiguous frame."""
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(blank, frame=1)
        assert tracker.state.find_point(pid).confidence == 1.0

        tracker.ingest_frame(blank, frame=6)
        assert tracker.state.find_point(pid).confidence == pytest.approx(0.95)
        assert tracker.diagnostics.get_events("FRAME_SKIP_PENALTY")

    def test_no_active_points_resets_pair(self, make_tracker, blank):
        primitive = ScriptedFlowPrimitive()
        tracker = make_tracker(primitive)
        tracker.ingest_frame(blank, frame=0)
        other = np.full_like(blank, 9)
        assert tracker.ingest_frame(other, frame=1) == []
        assert primitive.calls == []
        assert tracker.frame_store.prev_gray[0, 0] == 9
        assert tracker.frame_store.curr_gray[0, 0] == 9

    def test_rejected_frame(self, make_tracker, blank):
        """Test that an unconvertible frame leaves points untouched."""
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(5, 0)))
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)

        points = tracker.ingest_frame(np.zeros((10, 10, 5), dtype=np.uint8), frame=1)
        assert points[0].position == (100.0, 100.0)
        assert tracker.get_frame_positions(pid) == {0: (100.0, 100.0)}
        assert tracker.diagnostics.get_events("FRAME_REJECTED")

    def test_frame_size_change_re_anchors(self, make_tracker, blank):
        primitive = ScriptedFlowPrimitive(shift=(5, 0))
        tracker = make_tracker(primitive)
        tracker.add_point(50, 50)
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(np.zeros((120, 160), dtype=np.uint8), frame=1)

        assert primitive.calls == []
        assert tracker.frame_store.frame_shape == (120, 160)

    def test_missing_buffer_penalizes_points(self, make_tracker, blank):
        """Test that a pass without a frame pair penalizes every active point."""
        tracker = make_tracker()
        pid = tracker.add_point(100, 100)
        point = tracker.state.find_point(pid)

        # ingest_frame re-anchors before a pass, so the pair is withheld directly
        tracker._perform_tracking([point], None, blank, 3)

        assert point.confidence == pytest.approx(0.75)
        assert tracker.diagnostics.get_events("MISSING_FRAME_BUFFER")[0].level == "error"

    def test_flow_exception_penalizes(self, make_tracker, blank):
        tracker = make_tracker(ScriptedFlowPrimitive(fail=True))
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(blank, frame=1)
        point = tracker.state.find_point(pid)
        # placed one frame ago, so the gentler decay applies
        assert point.confidence == pytest.approx(0.9)
        assert point.position == (100.0, 100.0)

    def test_unexpected_primitive_error_penalizes(self, make_tracker, blank):
        """Test that any exception from the primitive becomes a confidence penalty."""

        class BrokenPrimitive(ScriptedFlowPrimitive):
            def estimate_flow(self, *args):
                raise RuntimeError("primitive blew up")

        tracker = make_tracker(BrokenPrimitive())
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        points = tracker.ingest_frame(blank, frame=1)

        point = tracker.state.find_point(pid)
        assert [p.id for p in points] == [pid]
        assert point.confidence == pytest.approx(0.75)
        assert point.position == (100.0, 100.0)
        event = tracker.diagnostics.get_events("FLOW_EXCEPTION")[-1]
        assert event.level == "error"
        assert "primitive blew up" in event.data["error"]

    def test_short_primitive_output_penalizes(self, make_tracker, blank):
        """Test that output arrays not covering every point count as a failed call."""
        from scrubtrack.tracking.flow import FlowOutput

        class TruncatingPrimitive(ScriptedFlowPrimitive):
            def estimate_flow(self, *args):
                output = super().estimate_flow(*args)
                return FlowOutput(output.positions, output.status[:0], output.errors)

        tracker = make_tracker(TruncatingPrimitive())
        pid = tracker.add_point(100, 100)
        tracker.ingest_frame(blank, frame=0)
        tracker.ingest_frame(blank, frame=1)

        point = tracker.state.find_point(pid)
        # placed one frame ago, so the gentler decay applies
        assert point.confidence == pytest.approx(0.9)
        assert point.position == (100.0, 100.0)
        assert tracker.diagnostics.get_events("FLOW_EXCEPTION")

    def test_sync_to_frame_idempotent(self, make_tracker, blank):
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(3, 0)))
        pid = tracker.add_point(100, 100)
        for frame in range(4):
            tracker.ingest_frame(blank, frame=frame)

        tracker.sync_to_frame(2)
        first = tracker.get_tracking_points()[0].position
        tracker.sync_to_frame(2)
        assert tracker.get_tracking_points()[0].position == first == pytest.approx((106.0, 100.0))
        assert tracker.frame_store.has_prev is False
        assert tracker.current_frame == 2
        assert tracker.get_position_at_frame(pid, 10) == pytest.approx((109.0, 100.0))

    def test_trajectory_paths(self, make_tracker, blank):
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        pid = tracker.add_point(100, 100)
        for frame in range(60):
            tracker.ingest_frame(blank, frame=frame)

        paths = tracker.get_trajectory_paths(50, 5)
        assert len(paths) == 1
        assert paths[0].point_id == pid
        assert [t.frame for t in paths[0].path] == list(range(45, 56))

    def test_tracking_data_and_diagnostics(self, make_tracker, blank):
        from scrubtrack.core.base import TrackingDataProvider

        tracker = make_tracker()
        pid = tracker.add_point(10, 20)
        tracker.ingest_frame(blank, frame=0)

        assert isinstance(tracker, TrackingDataProvider)
        data = tracker.get_tracking_data(0)
        assert data["points"] == {pid: (10.0, 20.0)}
        info = tracker.get_diagnostic_info()
        assert info["tracker_state"]["total_points"] == 1
        assert info["tracker_state"]["has_prev_gray"] is True


class TestPlanarTrackers:
    """Tests for planar trackers."""

    def test_creation(self, make_tracker, blank):
        """Test corner layout, feature grid and hidden features."""
        tracker = make_tracker()
        tracker.ingest_frame(blank, frame=0)
        tid = tracker.add_planar_tracker(100, 100)

        planar = tracker.get_planar_trackers()[0]
        assert planar.id == tid
        assert planar.corner_positions() == [(80.0, 80.0), (120.0, 80.0), (120.0, 120.0), (80.0, 120.0)]
        assert len(planar.feature_points) == 12
        assert all(80 < f.x < 120 and 80 < f.y < 120 for f in planar.feature_points)
        assert tracker.get_tracking_points() == []
        assert 0 in planar.frame_snapshots

    def test_default_size_without_frames(self, make_tracker):
        tracker = make_tracker()
        tracker.add_planar_tracker(100, 100)
        assert tracker.get_planar_trackers()[0].width == 100.0

    def test_follows_features(self, make_tracker, blank):
        """Test that corners follow the homography of the feature grid."""
        tracker = make_tracker(ScriptedFlowPrimitive(shift=(5, -2)))
        tracker.ingest_frame(blank, frame=0)
        tracker.add_planar_tracker(100, 100, size=60)
        tracker.ingest_frame(blank, frame=1)

        planar = tracker.get_planar_trackers()[0]
        expected = [(75.0, 68.0), (135.0, 68.0), (135.0, 128.0), (75.0, 128.0)]
        for (x, y), (ex, ey) in zip(planar.corner_positions(), expected):
            assert x == pytest.approx(ex, abs=0.01)
            assert y == pytest.approx(ey, abs=0.01)
        assert planar.center == pytest.approx((105.0, 98.0), abs=0.01)
        assert planar.is_active
        assert planar.confidence == pytest.approx(1.0)

        tracker.sync_to_frame(0)
        assert planar.corner_positions()[0] == (70.0, 70.0)
        assert tracker.get_tracking_data(1)["planar_trackers"][planar.id][0] == pytest.approx((75.0, 68.0), abs=0.01)

    def test_centroid_strategy(self, blank):
        from scrubtrack.core.config import TrackingConfig
        from scrubtrack.tracking.orchestrator import TrackerOrchestrator
        from scrubtrack.tracking.planar import CentroidScaleStrategy

        config = TrackingConfig()
        config.planar.strategy = "centroid"
        tracker = TrackerOrchestrator(config, flow_primitive=ScriptedFlowPrimitive(shift=(3, 4)))
        assert isinstance(tracker.planar.strategy, CentroidScaleStrategy)
        tracker.initialize()
        tracker.ingest_frame(blank, frame=0)
        tracker.add_planar_tracker(100, 100, size=40)
        tracker.ingest_frame(blank, frame=1)

        planar = tracker.get_planar_trackers()[0]
        assert planar.corner_positions()[0] == pytest.approx((83.0, 84.0))

    def test_deactivates_when_features_fail(self, make_tracker, blank):
        tracker = make_tracker(ScriptedFlowPrimitive(status=False, error=50.0))
        tracker.ingest_frame(blank, frame=0)
        tracker.add_planar_tracker(100, 100, size=60)
        for frame in range(1, 7):
            tracker.ingest_frame(blank, frame=frame)

        planar = tracker.get_planar_trackers()[0]
        assert planar.is_active is False
        assert planar.confidence == 0.0

        tracker.reactivate_points()
        assert planar.is_active is True
        assert all(f.is_active for f in planar.feature_points)

    def test_corner_edit(self, make_tracker, blank):
        tracker = make_tracker()
        tracker.ingest_frame(blank, frame=0)
        tid = tracker.add_planar_tracker(100, 100, size=40)

        assert tracker.update_planar_tracker_corner(tid, 4, 0, 0) is False
        assert tracker.update_planar_tracker_corner(tid, 2, 130, 130) is True
        planar = tracker.get_planar_trackers()[0]
        assert planar.corner_positions()[2] == (130.0, 130.0)
        assert planar.reference_corners[2] == (130.0, 130.0)
        assert planar.center == pytest.approx((102.5, 102.5))

    def test_remove_and_clear(self, make_tracker):
        tracker = make_tracker()
        a = tracker.add_planar_tracker(50, 50)
        tracker.add_planar_tracker(150, 150)
        assert len(tracker.state.feature_points) == 24

        assert tracker.remove_planar_tracker(a) is True
        assert len(tracker.state.feature_points) == 12
        tracker.clear_all_planar_trackers()
        assert tracker.get_planar_trackers() == []
        assert tracker.state.feature_points == []

    def test_hit_testing(self, make_tracker):
        tracker = make_tracker()
        tracker.add_planar_tracker(100, 100, size=40)
        planar = tracker.get_planar_trackers()[0]

        assert tracker.planar.is_point_inside(planar, 100, 100)
        assert not tracker.planar.is_point_inside(planar, 130, 100)
        assert tracker.planar.corner_index_at(planar, 118, 82) == 1
        assert tracker.planar.corner_index_at(planar, 100, 100) == -1

    def test_exactly_four_corners(self):
        from scrubtrack.tracking.types import PlanarCorner, PlanarTracker

        with pytest.raises(ValueError):
            PlanarTracker(id="t", corners=[PlanarCorner("c", 0, 0)] * 3, center=(0, 0), width=1, height=1)


class TestBatchTracking:
    """Tests for batch forward/backward tracking."""

    def _source(self, count=10):
        from scrubtrack.core.base import ArrayFrameSource

        return ArrayFrameSource([np.zeros((200, 200), dtype=np.uint8) for _ in range(count)])

    def test_track_forward(self, make_tracker):
        from scrubtrack.tracking.batch import track_forward

        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        pid = tracker.add_point(100, 100)
        seen = []
        result = track_forward(tracker, self._source(), 0, 9, on_frame=lambda f, pts: seen.append(f))

        assert result.completed
        assert result.frames_processed == 9
        assert seen == list(range(1, 10))
        assert tracker.get_position_at_frame(pid, 9) == pytest.approx((109.0, 100.0))
        assert tracker.state.is_continuous_tracking is False

    def test_rerun_re_estimates(self, make_tracker):
        """Test that a second run overwrites earlier tracked results."""
        from scrubtrack.tracking.batch import track_forward

        primitive = ScriptedFlowPrimitive(shift=(1, 0))
        tracker = make_tracker(primitive)
        pid = tracker.add_point(100, 100)
        track_forward(tracker, self._source(), 0, 9)

        primitive.shift = (2, 0)
        track_forward(tracker, self._source(), 0, 9)
        assert tracker.get_position_at_frame(pid, 0) == (100.0, 100.0)
        assert tracker.get_position_at_frame(pid, 9) == pytest.approx((118.0, 100.0))

    def test_track_backward(self, make_tracker):
        from scrubtrack.tracking.batch import track_backward

        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        tracker.set_current_frame(9)
        pid = tracker.add_point(100, 100)
        result = track_backward(tracker, self._source(), 9, 0)

        assert result.direction == -1
        assert result.frames_processed == 9
        assert tracker.get_position_at_frame(pid, 0) == pytest.approx((109.0, 100.0))
        assert tracker.state.find_point(pid).confidence == 1.0

    def test_cancel(self, make_tracker):
        """Test cancellation between steps."""
        from scrubtrack.tracking.batch import track_forward

        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        pid = tracker.add_point(100, 100)
        polls = []

        def should_cancel():
            polls.append(1)
            return len(polls) > 3

        result = track_forward(tracker, self._source(), 0, 9, should_cancel=should_cancel)
        assert result.cancelled is True
        assert result.frames_processed == 3
        assert result.last_frame == 3
        assert not result.completed
        assert sorted(tracker.get_frame_positions(pid)) == [0, 1, 2, 3]
        assert tracker.state.is_continuous_tracking is False

    def test_source_runs_out(self, make_tracker):
        from scrubtrack.tracking.batch import track_forward

        tracker = make_tracker(ScriptedFlowPrimitive(shift=(1, 0)))
        tracker.add_point(100, 100)
        result = track_forward(tracker, self._source(5), 0, 9)
        assert result.failed_frame == 5
        assert result.last_frame == 4

    def test_bad_direction(self, make_tracker):
        from scrubtrack.tracking.batch import track_backward, track_forward

        tracker = make_tracker()
        with pytest.raises(ValueError):
            track_forward(tracker, self._source(), 5, 2)
        with pytest.raises(ValueError):
            track_backward(tracker, self._source(), 2, 5)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
