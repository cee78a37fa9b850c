"""Synthetic reconstructions with known ground-truth track positions.

Builds a :class:`~trackest.reconstruction.Reconstruction` whose views come
from a fabricated ring rig and whose tracks are random 3D points projected
into every camera that sees them, with optional pixel noise, gross outlier
observations, and views left unestimated. All scenes are deterministic given
the same seed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from trackest.reconstruction.scene import Reconstruction, TrackId
from trackest.synthetic.rig import build_ring_rig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SceneConfig:
    """Parameters of a synthetic track estimation scene.

    Attributes:
        n_cameras: Number of cameras on the ring rig.
        n_tracks: Number of tracks to generate.
        radius: Ring radius of the rig (world units).
        arc_degrees: Angular extent of the rig.
        point_spread: Half-size of the cube around the origin in which track
            positions are sampled.
        pixel_noise: Standard deviation of isotropic Gaussian pixel noise.
        observation_probability: Probability that a camera which sees a
            track records an observation of it.
        outlier_fraction: Fraction of tracks that receive one grossly wrong
            observation.
        outlier_offset_pixels: Magnitude of the outlier pixel offset.
        n_unestimated_views: Number of views (taken from the end of the rig)
            left unestimated.
        image_size: Square image side in pixels; observations outside the
            image are dropped.
        seed: Random seed for determinism.
    """

    n_cameras: int = 8
    n_tracks: int = 200
    radius: float = 10.0
    arc_degrees: float = 360.0
    point_spread: float = 2.0
    pixel_noise: float = 0.5
    observation_probability: float = 0.8
    outlier_fraction: float = 0.05
    outlier_offset_pixels: float = 50.0
    n_unestimated_views: int = 0
    image_size: int = 1000
    seed: int = 42


@dataclass
class SyntheticScene:
    """A generated reconstruction together with its ground truth.

    Attributes:
        reconstruction: Store with all views and unestimated tracks.
        ground_truth: True 3D position of every track, shape (3,).
        outlier_tracks: Tracks that received a gross outlier observation.
    """

    reconstruction: Reconstruction
    ground_truth: dict[TrackId, np.ndarray]
    outlier_tracks: set[TrackId]


def build_synthetic_scene(config: SceneConfig | None = None) -> SyntheticScene:
    """Generate a synthetic reconstruction described by *config*.

    Args:
        config: Scene parameters. Defaults to :class:`SceneConfig`.

    Returns:
        SyntheticScene with every track unestimated.
    """
    config = config or SceneConfig()
    rng = np.random.default_rng(config.seed)
    half = config.image_size / 2.0

    cameras = build_ring_rig(
        n_cameras=config.n_cameras,
        radius=config.radius,
        arc_degrees=config.arc_degrees,
        cx=half,
        cy=half,
    )
    reconstruction = Reconstruction()
    n_estimated = config.n_cameras - config.n_unestimated_views
    view_ids = [
        reconstruction.add_view(f"view_{i:03d}", camera, estimated=i < n_estimated)
        for i, camera in enumerate(cameras)
    ]

    ground_truth: dict[TrackId, np.ndarray] = {}
    outlier_tracks: set[TrackId] = set()
    for _ in range(config.n_tracks):
        point = rng.uniform(-config.point_spread, config.point_spread, size=3)
        track_id = reconstruction.add_track()
        ground_truth[track_id] = point
        is_outlier = rng.random() < config.outlier_fraction

        observations: list[tuple[int, np.ndarray]] = []
        for view_id, camera in zip(view_ids, cameras, strict=True):
            pixels, depths = camera.project(point)
            pixel = pixels[0]
            if depths[0] <= 0 or np.any(pixel < 0) or np.any(pixel >= config.image_size):
                continue
            if rng.random() >= config.observation_probability:
                continue
            if config.pixel_noise > 0:
                pixel = pixel + rng.normal(0.0, config.pixel_noise, size=2)
            observations.append((view_id, pixel))

        if is_outlier and observations:
            idx = int(rng.integers(len(observations)))
            view_id, pixel = observations[idx]
            direction = rng.normal(size=2)
            direction /= np.linalg.norm(direction)
            observations[idx] = (
                view_id,
                pixel + config.outlier_offset_pixels * direction,
            )
            outlier_tracks.add(track_id)

        for view_id, pixel in observations:
            reconstruction.add_observation(view_id, track_id, pixel)

    logger.debug(
        "Built synthetic scene: %d views, %d tracks, %d outlier tracks",
        len(view_ids),
        len(ground_truth),
        len(outlier_tracks),
    )
    return SyntheticScene(reconstruction, ground_truth, outlier_tracks)
