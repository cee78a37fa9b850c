"""Unit tests for the pinhole camera model."""

from __future__ import annotations

import numpy as np
import pytest

from trackest.calibration.camera import Camera


def _make_camera(
    position: tuple[float, float, float] = (10.0, 0.0, 0.0),
    target: tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> Camera:
    """Create a look-at camera with fx=1000 and principal point (500, 500)."""
    return Camera.look_at(np.array(position), np.array(target))


class TestLookAt:
    """Tests for Camera.look_at."""

    def test_center_is_position(self) -> None:
        cam = _make_camera(position=(3.0, -4.0, 2.0))
        np.testing.assert_allclose(cam.center, [3.0, -4.0, 2.0], atol=1e-12)

    def test_rotation_is_orthonormal(self) -> None:
        cam = _make_camera(position=(3.0, -4.0, 2.0))
        np.testing.assert_allclose(cam.R @ cam.R.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(cam.R) > 0.0

    def test_target_projects_to_principal_point(self) -> None:
        cam = _make_camera()
        pixels, depths = cam.project(np.zeros(3))
        np.testing.assert_allclose(pixels[0], [500.0, 500.0], atol=1e-9)
        assert depths[0] == pytest.approx(10.0)

    def test_vertical_viewing_direction(self) -> None:
        """Looking straight down falls back to an alternative up vector."""
        cam = _make_camera(position=(0.0, 0.0, 10.0))
        pixels, depths = cam.project(np.zeros(3))
        np.testing.assert_allclose(pixels[0], [500.0, 500.0], atol=1e-9)
        assert depths[0] > 0.0


class TestProject:
    """Tests for Camera.project."""

    def test_batch_shapes(self) -> None:
        cam = _make_camera()
        pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.5, -0.5], [0.0, 1.0, 1.0]])
        pixels, depths = cam.project(pts)
        assert pixels.shape == (3, 2)
        assert depths.shape == (3,)

    def test_point_behind_camera_is_nan(self) -> None:
        cam = _make_camera()
        pixels, depths = cam.project(np.array([20.0, 0.0, 0.0]))
        assert depths[0] < 0.0
        assert np.all(np.isnan(pixels[0]))

    def test_matches_projection_matrix(self) -> None:
        cam = _make_camera(position=(6.0, 8.0, 1.0))
        point = np.array([0.3, -0.2, 0.4])
        x = cam.projection_matrix @ np.append(point, 1.0)
        pixels, _ = cam.project(point)
        np.testing.assert_allclose(pixels[0], x[:2] / x[2], atol=1e-9)

    def test_jacobian_matches_finite_differences(self) -> None:
        cam = _make_camera(position=(6.0, 8.0, 1.0))
        point = np.array([0.3, -0.2, 0.4])
        jac = cam.project_jacobian(point)

        eps = 1e-6
        numeric = np.zeros((2, 3))
        for i in range(3):
            delta = np.zeros(3)
            delta[i] = eps
            plus, _ = cam.project(point + delta)
            minus, _ = cam.project(point - delta)
            numeric[:, i] = (plus[0] - minus[0]) / (2 * eps)
        np.testing.assert_allclose(jac, numeric, rtol=1e-5, atol=1e-5)


class TestCastRay:
    """Tests for Camera.cast_ray."""

    def test_ray_passes_through_projected_point(self) -> None:
        cam = _make_camera(position=(6.0, 8.0, 1.0))
        point = np.array([0.5, 0.25, -0.3])
        pixels, _ = cam.project(point)
        direction = cam.cast_ray(pixels[0])[0]

        expected = point - cam.center
        expected /= np.linalg.norm(expected)
        np.testing.assert_allclose(direction, expected, atol=1e-9)

    def test_unit_length(self) -> None:
        cam = _make_camera()
        dirs = cam.cast_ray(np.array([[0.0, 0.0], [1000.0, 1000.0], [500.0, 10.0]]))
        np.testing.assert_allclose(np.linalg.norm(dirs, axis=1), 1.0, atol=1e-12)


def test_with_pose_keeps_intrinsics() -> None:
    cam = _make_camera()
    moved = cam.with_pose(np.eye(3), np.array([0.0, 0.0, 5.0]))
    np.testing.assert_allclose(moved.K, cam.K)
    np.testing.assert_allclose(moved.center, [0.0, 0.0, -5.0])
