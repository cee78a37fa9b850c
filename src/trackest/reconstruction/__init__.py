"""Track triangulation geometry, reconstruction store, and local refinement."""

from .bundle_adjustment import (
    BundleAdjustmentOptions,
    BundleAdjustmentSummary,
    bundle_adjust_track,
    bundle_adjust_view,
)
from .scene import Reconstruction, Track, TrackId, View, ViewId
from .triangulation import (
    TriangulationMethod,
    max_ray_angle_degrees,
    ray_angle_degrees,
    reprojection_error,
    triangulate,
    triangulate_l2,
    triangulate_midpoint,
    triangulate_svd,
)

__all__ = [
    "BundleAdjustmentOptions",
    "BundleAdjustmentSummary",
    "Reconstruction",
    "Track",
    "TrackId",
    "TriangulationMethod",
    "View",
    "ViewId",
    "bundle_adjust_track",
    "bundle_adjust_view",
    "max_ray_angle_degrees",
    "ray_angle_degrees",
    "reprojection_error",
    "triangulate",
    "triangulate_l2",
    "triangulate_midpoint",
    "triangulate_svd",
]
