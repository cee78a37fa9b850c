"""Unit tests for single-track and single-view bundle adjustment."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from trackest.reconstruction.bundle_adjustment import (
    BundleAdjustmentOptions,
    bundle_adjust_track,
    bundle_adjust_view,
)
from trackest.reconstruction.scene import Reconstruction
from trackest.reconstruction.triangulation import to_euclidean
from trackest.synthetic import build_ring_rig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _single_track_scene(
    gt: np.ndarray, n_cameras: int = 4, n_estimated: int | None = None
) -> tuple[Reconstruction, int]:
    """Reconstruction with one track observed noise-free by a ring rig."""
    n_estimated = n_cameras if n_estimated is None else n_estimated
    rec = Reconstruction()
    tid = rec.add_track()
    for i, cam in enumerate(build_ring_rig(n_cameras=n_cameras, arc_degrees=180.0)):
        vid = rec.add_view(f"v{i}", cam, estimated=i < n_estimated)
        pixels, _ = cam.project(gt)
        rec.add_observation(vid, tid, pixels[0])
    return rec, tid


def _single_view_scene(n_points: int, seed: int = 52) -> tuple[Reconstruction, int]:
    """One view observing *n_points* estimated tracks with exact pixels."""
    rng = np.random.default_rng(seed)
    cam = build_ring_rig(n_cameras=1)[0]
    rec = Reconstruction()
    vid = rec.add_view("v0", cam, estimated=True)
    for _ in range(n_points):
        point = rng.uniform(-2.0, 2.0, size=3)
        tid = rec.add_track()
        rec.track(tid).set_estimated_point(point)
        pixels, _ = cam.project(point)
        rec.add_observation(vid, tid, pixels[0])
    return rec, vid


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestOptions:
    """Tests for BundleAdjustmentOptions validation."""

    def test_defaults(self) -> None:
        opts = BundleAdjustmentOptions()
        assert opts.loss_function == "huber"
        assert opts.max_num_iterations == 50

    def test_unknown_loss_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown loss_function"):
            BundleAdjustmentOptions(loss_function="tukey")

    def test_non_positive_width_raises(self) -> None:
        with pytest.raises(ValueError, match="robust_loss_width"):
            BundleAdjustmentOptions(robust_loss_width=0.0)


# ---------------------------------------------------------------------------
# Track refinement
# ---------------------------------------------------------------------------


class TestBundleAdjustTrack:
    """Tests for bundle_adjust_track."""

    @pytest.mark.parametrize("loss", ["trivial", "huber", "soft_l1", "cauchy"])
    def test_converges_to_ground_truth(self, loss: str) -> None:
        gt = np.array([0.4, -0.2, 0.3])
        rec, tid = _single_track_scene(gt)
        rec.track(tid).set_estimated_point(gt + np.array([0.05, -0.03, 0.02]))

        summary = bundle_adjust_track(
            BundleAdjustmentOptions(loss_function=loss), tid, rec
        )

        assert summary.success
        assert summary.num_residuals == 4
        assert summary.final_cost < summary.initial_cost
        np.testing.assert_allclose(to_euclidean(rec.track(tid).point), gt, atol=1e-4)

    def test_unestimated_track_is_skipped(self) -> None:
        rec, tid = _single_track_scene(np.zeros(3))
        summary = bundle_adjust_track(BundleAdjustmentOptions(), tid, rec)
        assert not summary.success
        assert rec.track(tid).point is None

    def test_single_estimated_view_fails(self) -> None:
        gt = np.array([0.1, 0.1, 0.1])
        rec, tid = _single_track_scene(gt, n_estimated=1)
        rec.track(tid).set_estimated_point(gt + 0.1)

        summary = bundle_adjust_track(BundleAdjustmentOptions(), tid, rec)

        assert not summary.success
        np.testing.assert_allclose(to_euclidean(rec.track(tid).point), gt + 0.1)

    def test_unknown_track_raises(self) -> None:
        rec, _ = _single_track_scene(np.zeros(3))
        with pytest.raises(KeyError):
            bundle_adjust_track(BundleAdjustmentOptions(), 99, rec)


# ---------------------------------------------------------------------------
# View refinement
# ---------------------------------------------------------------------------


class TestBundleAdjustView:
    """Tests for bundle_adjust_view."""

    def test_recovers_perturbed_pose(self) -> None:
        rec, vid = _single_view_scene(n_points=50)
        view = rec.view(vid)
        true_center = view.camera.center.copy()

        perturb = Rotation.from_rotvec([0.01, -0.02, 0.015]).as_matrix()
        view.camera = view.camera.with_pose(
            perturb @ view.camera.R, view.camera.t + np.array([0.05, 0.02, -0.03])
        )

        summary = bundle_adjust_view(
            BundleAdjustmentOptions(loss_function="trivial", max_num_iterations=200),
            vid,
            rec,
        )

        assert summary.success
        assert summary.final_cost < 1e-6
        assert summary.final_cost < summary.initial_cost
        np.testing.assert_allclose(rec.view(vid).camera.center, true_center, atol=1e-4)

    def test_too_few_tracks_fails(self) -> None:
        rec, vid = _single_view_scene(n_points=2)
        camera_before = rec.view(vid).camera

        summary = bundle_adjust_view(BundleAdjustmentOptions(), vid, rec)

        assert not summary.success
        assert summary.num_residuals == 2
        assert rec.view(vid).camera is camera_before
