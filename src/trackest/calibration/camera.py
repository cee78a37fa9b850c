"""Pinhole camera projection model used for triangulation and refinement."""

from __future__ import annotations

import numpy as np


class Camera:
    """Calibrated pinhole camera with a world-to-camera pose.

    Implements 3D-to-2D projection (with depth) and 2D-to-3D ray casting.
    Points are expressed in the world frame; the camera maps them into its
    own frame with ``p_cam = R @ p_world + t``.

    Args:
        K: Intrinsic matrix, shape (3, 3), float64.
        R: Rotation matrix (world to camera), shape (3, 3), float64.
        t: Translation vector (world to camera), shape (3,), float64.
    """

    def __init__(self, K: np.ndarray, R: np.ndarray, t: np.ndarray) -> None:
        self.K = np.asarray(K, dtype=np.float64).reshape(3, 3)
        self.R = np.asarray(R, dtype=np.float64).reshape(3, 3)
        self.t = np.asarray(t, dtype=np.float64).reshape(3)

        # Precompute derived quantities
        self.K_inv = np.linalg.inv(self.K)
        self.C = -self.R.T @ self.t  # camera center in world frame, shape (3,)

    @classmethod
    def look_at(
        cls,
        position: np.ndarray,
        target: np.ndarray,
        fx: float = 1000.0,
        cx: float = 500.0,
        cy: float = 500.0,
        up: tuple[float, float, float] = (0.0, 0.0, 1.0),
    ) -> Camera:
        """Build a camera at *position* whose optical axis points at *target*.

        The camera frame follows the usual vision convention: +Z forward,
        +X right, +Y down in the image.

        Args:
            position: Camera center in world frame, shape (3,).
            target: World point the optical axis passes through, shape (3,).
            fx: Focal length in pixels (used for both fx and fy).
            cx: Principal point x coordinate in pixels.
            cy: Principal point y coordinate in pixels.
            up: Approximate world up direction. Replaced by a fallback axis
                when nearly parallel to the viewing direction.

        Returns:
            Configured Camera.
        """
        position = np.asarray(position, dtype=np.float64)
        forward = np.asarray(target, dtype=np.float64) - position
        forward = forward / np.linalg.norm(forward)

        up_vec = np.asarray(up, dtype=np.float64)
        if abs(float(np.dot(forward, up_vec))) > 0.99:
            up_vec = np.array([0.0, 1.0, 0.0])

        right = np.cross(forward, up_vec)
        right = right / np.linalg.norm(right)
        down = np.cross(forward, right)

        R = np.stack([right, down, forward])  # rows are camera axes in world
        t = -R @ position
        K = np.array([[fx, 0.0, cx], [0.0, fx, cy], [0.0, 0.0, 1.0]])
        return cls(K, R, t)

    @property
    def center(self) -> np.ndarray:
        """Camera center in world frame, shape (3,)."""
        return self.C

    @property
    def projection_matrix(self) -> np.ndarray:
        """Full 3x4 projection matrix ``K @ [R | t]``."""
        return self.K @ np.hstack([self.R, self.t[:, None]])

    def project(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Project 3D world points to 2D pixel coordinates.

        Args:
            points: 3D points in world frame, shape (N, 3) or (3,).

        Returns:
            pixels: 2D pixel coordinates (u, v), shape (N, 2). Points with
                non-positive depth are NaN.
            depths: Depth of each point along the optical axis, shape (N,).
                Non-positive for points behind the camera.
        """
        pts = np.atleast_2d(np.asarray(points, dtype=np.float64))
        p_cam = pts @ self.R.T + self.t  # (N, 3)
        depths = p_cam[:, 2]

        pixels = np.full((pts.shape[0], 2), np.nan)
        valid = depths > 0
        if np.any(valid):
            p_norm = p_cam[valid, :2] / depths[valid, None]
            pixels[valid] = p_norm @ self.K[:2, :2].T + self.K[:2, 2]
        return pixels, depths

    def project_jacobian(self, point: np.ndarray) -> np.ndarray:
        """Jacobian of the projected pixel with respect to the world point.

        Args:
            point: 3D world point, shape (3,). Must lie in front of the camera.

        Returns:
            Jacobian d(u, v)/d(X, Y, Z), shape (2, 3).
        """
        p_cam = self.R @ np.asarray(point, dtype=np.float64) + self.t
        x, y, z = p_cam
        # d(normalized)/d(p_cam)
        d_norm = np.array(
            [[1.0 / z, 0.0, -x / (z * z)], [0.0, 1.0 / z, -y / (z * z)]]
        )
        return self.K[:2, :2] @ d_norm @ self.R

    def cast_ray(self, pixels: np.ndarray) -> np.ndarray:
        """Cast unit rays from pixel coordinates into the world frame.

        Rays originate at :attr:`center`; a point at distance d along the ray
        is ``center + d * direction``.

        Args:
            pixels: 2D pixel coordinates (u, v), shape (N, 2) or (2,).

        Returns:
            Unit ray directions in world frame, shape (N, 3).
        """
        px = np.atleast_2d(np.asarray(pixels, dtype=np.float64))
        pixels_h = np.hstack([px, np.ones((px.shape[0], 1))])  # (N, 3)

        rays_cam = pixels_h @ self.K_inv.T
        rays_world = rays_cam @ self.R  # R.T applied row-wise
        return rays_world / np.linalg.norm(rays_world, axis=-1, keepdims=True)

    def with_pose(self, R: np.ndarray, t: np.ndarray) -> Camera:
        """Return a copy of this camera with a replaced pose.

        Args:
            R: New world-to-camera rotation, shape (3, 3).
            t: New world-to-camera translation, shape (3,).

        Returns:
            New Camera sharing the intrinsics of this one.
        """
        return Camera(self.K.copy(), R, t)
