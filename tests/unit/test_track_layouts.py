"""Unit tests for synthetic track layouts and the track contract."""

from __future__ import annotations

import unittest

import numpy as np

from optilap.track import (
    build_circular_track,
    build_oval_track,
    build_straight_track,
    build_track_data,
)
from optilap.utils.exceptions import TrackDataError


class TrackLayoutBuilderTests(unittest.TestCase):
    """Validate geometry properties of synthetic track-layout helpers."""

    def test_straight_layout_has_zero_curvature_and_expected_length(self) -> None:
        """Build straight layout with zero curvature over the full length."""
        track = build_straight_track(length=1_000.0, sample_count=501)

        self.assertAlmostEqual(track.track_length(), 1_000.0, delta=1e-9)
        self.assertFalse(track.closed)
        self.assertLess(float(np.max(np.abs(track.curvature))), 1e-12)
        self.assertAlmostEqual(track.curvature_at(333.3), 0.0, delta=1e-12)

    def test_circle_layout_has_constant_curvature(self) -> None:
        """Build closed circle with curvature ``1 / R`` everywhere."""
        radius = 50.0
        track = build_circular_track(radius=radius, sample_count=720)

        self.assertTrue(track.closed)
        self.assertAlmostEqual(float(np.mean(track.curvature)), 1.0 / radius, delta=1e-3)
        self.assertLess(float(np.std(track.curvature)), 1e-6)
        self.assertAlmostEqual(track.track_length(), 2.0 * np.pi * radius, delta=0.01)

    def test_clockwise_circle_flips_curvature_sign(self) -> None:
        """Build clockwise circle with negative signed curvature."""
        track = build_circular_track(radius=50.0, sample_count=720, clockwise=True)

        self.assertLess(float(np.mean(track.curvature)), -1e-3)

    def test_oval_layout_mixes_straights_and_corners(self) -> None:
        """Build stadium oval with zero-curvature straights and left-hand hairpins."""
        track = build_oval_track(straight_length=200.0, radius=40.0, sample_count=801)

        expected_length = 2.0 * 200.0 + 2.0 * np.pi * 40.0
        self.assertAlmostEqual(track.track_length(), expected_length, delta=0.5)
        self.assertAlmostEqual(track.curvature_at(100.0), 0.0, delta=1e-6)
        self.assertAlmostEqual(track.curvature_at(200.0 + 0.5 * np.pi * 40.0), 1.0 / 40.0, delta=2e-3)

    def test_layout_builders_reject_invalid_parameters(self) -> None:
        """Reject non-physical geometric parameters for layout generation."""
        with self.assertRaises(TrackDataError):
            build_straight_track(length=0.0)
        with self.assertRaises(TrackDataError):
            build_straight_track(sample_count=3)
        with self.assertRaises(TrackDataError):
            build_circular_track(radius=-1.0)
        with self.assertRaises(TrackDataError):
            build_oval_track(half_width=0.0)


class TrackContractTests(unittest.TestCase):
    """Validate the arclength queries consumed by the transcription."""

    def test_track_limits_interpolate_widths(self) -> None:
        """Interpolate asymmetric half-widths at arbitrary arclengths."""
        x = np.linspace(0.0, 30.0, 4)
        y = np.zeros_like(x)
        left = np.array([2.0, 4.0, 4.0, 2.0])
        right = np.array([1.0, 1.0, 3.0, 3.0])
        track = build_track_data(x, y, left, right)

        self.assertAlmostEqual(track.left_track_limit(5.0), 3.0)
        self.assertAlmostEqual(track.right_track_limit(15.0), 2.0)

    def test_closed_track_wraps_arclength_queries(self) -> None:
        """Map arclengths beyond ``L`` back onto the lap."""
        track = build_circular_track(radius=50.0, sample_count=360)
        length = track.track_length()

        np.testing.assert_allclose(
            track.centerline_pose(length + 10.0),
            track.centerline_pose(10.0),
            atol=1e-9,
        )

    def test_centerline_pose_follows_counter_clockwise_circle(self) -> None:
        """Start on the positive x-axis heading along +y."""
        track = build_circular_track(radius=50.0, sample_count=720)
        x, y, heading = track.centerline_pose(0.0)

        self.assertAlmostEqual(x, 50.0, delta=1e-9)
        self.assertAlmostEqual(y, 0.0, delta=1e-9)
        self.assertAlmostEqual(float(np.mod(heading, 2.0 * np.pi)), 0.5 * np.pi, delta=1e-3)

    def test_track_data_rejects_negative_widths(self) -> None:
        """Reject negative half-widths."""
        x = np.linspace(0.0, 30.0, 4)
        with self.assertRaises(TrackDataError):
            build_track_data(x, np.zeros_like(x), -np.ones(4), np.ones(4))


if __name__ == "__main__":
    unittest.main()
