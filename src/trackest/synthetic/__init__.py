"""Synthetic scenes for controlled testing of track estimation.

Provides a fabricated ring rig of look-at cameras and a scene generator that
projects random ground-truth tracks into it with configurable noise,
outliers, and unestimated views.
"""

from trackest.synthetic.rig import build_ring_rig
from trackest.synthetic.scenes import SceneConfig, SyntheticScene, build_synthetic_scene

__all__ = [
    "SceneConfig",
    "SyntheticScene",
    "build_ring_rig",
    "build_synthetic_scene",
]
