"""Unit tests for waypoint tours and progression rules.

These tests drive progression with synthetic agent positions.

Run with: pytest tests/unit/test_missions.py -v
"""

import numpy as np
import pytest

from swarmnav.coordination import (
    Formation,
    FormationShape,
    MissionReport,
    NavigationTour,
    Waypoint,
    WaypointResult,
    navigation_offsets,
    should_advance,
    success_fraction,
)


def tour_for(count=5, reach_time=10.0, hold_time=15.0):
    waypoints = [
        Waypoint(30.0, 10.0, 30.0, reach_time=reach_time, hold_time=hold_time),
        Waypoint(-30.0, 10.0, 60.0, reach_time=reach_time, hold_time=hold_time),
    ]
    offsets = navigation_offsets(None, count, spacing=5.0)
    return NavigationTour(waypoints, offsets, landing_target=(0.0, 1.0, 80.0))


class TestWaypoint:
    """Tests for Waypoint records."""

    def test_from_point_default_altitude(self):
        """Test a missing height becomes the formation altitude."""
        wp = Waypoint.from_point((30.0, None, 30.0), default_altitude=10.0)
        assert wp.position.tolist() == [30.0, 10.0, 30.0]

    def test_from_point_explicit_altitude(self):
        """Test an explicit height is kept."""
        wp = Waypoint.from_point((1.0, 7.0, 2.0), default_altitude=10.0, reach_time=4.0, hold_time=2.0)
        assert wp.altitude == 7.0
        assert wp.reach_time == 4.0
        assert wp.hold_time == 2.0

    def test_from_point_wrong_size(self):
        """Test a 2D point is rejected."""
        with pytest.raises(ValueError):
            Waypoint.from_point((1.0, 2.0), default_altitude=10.0)

    def test_mark_reached(self):
        """Test reaching records the time."""
        wp = Waypoint(0.0, 10.0, 0.0)
        wp.mark_reached(12.5)
        assert wp.reached
        assert wp.reached_at == 12.5


class TestProgressionRule:
    """Progression happens iff fraction >= threshold or elapsed >= T1."""

    def test_consensus_branch(self):
        """Test enough agents in position advances without a violation."""
        assert should_advance(0.8, 1.0, 0.7, 10.0) == (True, False)
        assert should_advance(0.7, 1.0, 0.7, 10.0) == (True, False)

    def test_timeout_branch(self):
        """Test the T1 budget forces progression with a violation."""
        assert should_advance(0.2, 10.0, 0.7, 10.0) == (True, True)

    def test_neither(self):
        """Test no progression before consensus or timeout."""
        assert should_advance(0.6, 9.9, 0.7, 10.0) == (False, False)

    def test_success_fraction(self):
        """Test the fraction of agents within tolerance."""
        targets = np.zeros((4, 3))
        positions = np.array([
            [0.0, 0.0, 0.0],
            [2.0, 0.0, 0.0],
            [0.0, 2.5, 0.0],
            [9.0, 0.0, 0.0],
        ])
        assert success_fraction(positions, targets, 2.0) == pytest.approx(0.5)

    def test_success_fraction_mismatch(self):
        """Test mismatched sets count as no success."""
        assert success_fraction(np.zeros((2, 3)), np.zeros((3, 3)), 2.0) == 0.0


class TestNavigationOffsets:
    """Tests for tour formation offsets."""

    def test_fallback_line(self):
        """Test the fallback line uses at least the minimum spacing and steps up."""
        offsets = navigation_offsets(None, 3, spacing=5.0, min_spacing=7.0, height_step=0.5)
        assert [o[0] for o in offsets] == pytest.approx([-7.0, 0.0, 7.0])
        assert [o[1] for o in offsets] == pytest.approx([0.0, 0.5, 1.0])

    def test_applied_formation_shape(self):
        """Test an applied formation's shape is kept."""
        formation = Formation(
            shape=FormationShape.LINE,
            positions=np.array([[-5.0, 10.0, 0.0], [5.0, 10.0, 0.0]]),
        )
        offsets = navigation_offsets(formation, 2, spacing=5.0)
        np.testing.assert_allclose(offsets, [[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]])

    def test_mismatched_formation_ignored(self):
        """Test a formation for another agent count is not used."""
        formation = Formation(shape=FormationShape.LINE, positions=np.zeros((2, 3)))
        offsets = navigation_offsets(formation, 3, spacing=5.0)
        assert len(offsets) == 3


class TestNavigationTour:
    """Tests for tour progression with synthetic positions."""

    def test_consensus_progression(self):
        """Test progression once 70% of agents are in position."""
        tour = tour_for(count=5)
        targets = tour.targets()

        positions = targets.copy()
        positions[3:] += 10.0  # 3 of 5 in place
        assert tour.update(1.0, positions, 2.0, 0.7) is None

        positions = targets.copy()
        positions[4] += 10.0   # 4 of 5 in place
        result = tour.update(1.0, positions, 2.0, 0.7)

        assert isinstance(result, WaypointResult)
        assert not result.timing_violation
        assert result.success_fraction == pytest.approx(0.8)
        assert result.elapsed == pytest.approx(2.0)
        assert tour.holding

    def test_timeout_progression(self):
        """Test progression when T1 runs out with nobody in position."""
        tour = tour_for(count=5, reach_time=3.0)
        far = tour.targets() + 50.0

        assert tour.update(1.0, far, 2.0, 0.7) is None
        assert tour.update(1.0, far, 2.0, 0.7) is None
        result = tour.update(1.0, far, 2.0, 0.7)

        assert result is not None
        assert result.timing_violation
        assert result.success_fraction == 0.0

    def test_hold_then_advance(self):
        """Test the hold timer gates the next waypoint."""
        tour = tour_for(count=2, hold_time=2.0)
        tour.update(0.1, tour.targets(), 2.0, 0.7)
        assert tour.holding

        tour.update(1.0, tour.targets(), 2.0, 0.7)
        assert not tour.hold_complete()
        tour.update(1.0, tour.targets(), 2.0, 0.7)
        assert tour.hold_complete()

        assert tour.advance()
        assert tour.index == 1
        assert not tour.holding
        assert tour.targets()[0][2] == pytest.approx(60.0)

    def test_finishes(self):
        """Test advancing past the last waypoint ends the tour."""
        tour = tour_for()
        tour.advance()
        assert not tour.advance()
        assert tour.is_finished
        assert tour.current_waypoint is None
        assert tour.targets().shape == (0, 3)

    def test_landing_targets_keep_shape(self):
        """Test landing targets are the offsets around the landing point."""
        tour = tour_for(count=3)
        targets = tour.landing_targets(10.0)
        assert targets.mean(axis=0).tolist() == pytest.approx([0.0, 10.5, 80.0])

    def test_empty_tour(self):
        """Test a tour needs waypoints."""
        with pytest.raises(ValueError):
            NavigationTour([], np.zeros((1, 3)), (0.0, 1.0, 0.0))


class TestMissionReport:
    """Tests for mission telemetry."""

    def test_partial_success(self):
        """Test timing violations flag a partial success."""
        report = MissionReport(started_at=5.0, total_waypoints=2)
        report.results.append(WaypointResult(0, 3.0, 0.8, False))
        report.results.append(WaypointResult(1, 10.0, 0.2, True))
        report.finished_at = 50.0

        summary = report.summary()
        assert summary["completed_waypoints"] == 2
        assert summary["timing_violations"] == 1
        assert summary["partial_success"] is True
        assert summary["duration"] == pytest.approx(45.0)
        assert report.is_complete

    def test_running_duration(self):
        """Test duration while still running uses the given time."""
        report = MissionReport(started_at=5.0)
        assert report.duration(12.0) == pytest.approx(7.0)
        assert not report.communication_lost
