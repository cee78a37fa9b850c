"""In-memory reconstruction store: views, tracks, and their observations.

A track is a single physical 3D point observed by several views. Views own
the observed pixel of every track they see; tracks own the set of view ids
that observe them plus the (optional) estimated 3D position.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import numpy as np

from trackest.calibration.camera import Camera

TrackId = int
ViewId = int


@dataclass
class View:
    """One posed camera together with the features it observed.

    Attributes:
        view_id: Identifier assigned by the owning Reconstruction.
        name: Human-readable view name (e.g. image file name).
        camera: Camera model holding pose and intrinsics.
        estimated: True once the camera pose is known. Only estimated views
            contribute to triangulation.
        features: Mapping from track id to observed pixel, shape (2,).
    """

    view_id: ViewId
    name: str
    camera: Camera
    estimated: bool = False
    features: dict[TrackId, np.ndarray] = field(default_factory=dict)

    def feature(self, track_id: TrackId) -> np.ndarray:
        """Return the observed pixel of *track_id* in this view.

        Raises:
            KeyError: If this view does not observe *track_id*.
        """
        try:
            return self.features[track_id]
        except KeyError:
            raise KeyError(
                f"View {self.view_id} does not observe track {track_id}"
            ) from None

    def track_ids(self) -> list[TrackId]:
        """Sorted ids of all tracks observed in this view."""
        return sorted(self.features)


class Track:
    """A 3D point observed by a fixed set of views.

    The position and the ``estimated`` flag only ever change together through
    :meth:`set_estimated_point` and :meth:`reset`.

    Args:
        track_id: Identifier assigned by the owning Reconstruction.
    """

    def __init__(self, track_id: TrackId) -> None:
        self.track_id = track_id
        self._view_ids: set[ViewId] = set()
        self._point: np.ndarray | None = None
        self._estimated = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Track(track_id={self.track_id}, estimated={self._estimated}, "
            f"num_views={len(self._view_ids)})"
        )

    @property
    def view_ids(self) -> frozenset[ViewId]:
        """Ids of the views observing this track."""
        return frozenset(self._view_ids)

    @property
    def point(self) -> np.ndarray | None:
        """Homogeneous position, shape (4,), or None if never estimated."""
        return self._point

    @property
    def estimated(self) -> bool:
        return self._estimated

    def state(self) -> tuple[np.ndarray | None, bool]:
        """Consistent (point, estimated) pair read under the track lock."""
        with self._lock:
            return self._point, self._estimated

    def set_estimated_point(self, point: np.ndarray) -> None:
        """Store *point* and mark the track estimated in one step.

        Args:
            point: Euclidean (3,) or homogeneous (4,) position. Homogeneous
                points are normalized to ``w == 1``.

        Raises:
            ValueError: If the point is not finite or lies at infinity.
        """
        point = np.asarray(point, dtype=np.float64).reshape(-1)
        if point.shape[0] == 3:
            point = np.append(point, 1.0)
        if point.shape[0] != 4 or not np.all(np.isfinite(point)) or point[3] == 0.0:
            raise ValueError(f"Track {self.track_id}: invalid point {point!r}")
        with self._lock:
            self._point = point / point[3]
            self._estimated = True

    def reset(self) -> None:
        """Clear the position and mark the track unestimated."""
        with self._lock:
            self._point = None
            self._estimated = False

    def _add_view(self, view_id: ViewId) -> None:
        self._view_ids.add(view_id)


class Reconstruction:
    """Container of views and tracks shared by the estimation engine.

    Lookups are safe from multiple threads. Structural edits (adding views,
    tracks, or observations) are serialized by an internal lock and are not
    expected to happen while a batch estimation is running.
    """

    def __init__(self) -> None:
        self._views: dict[ViewId, View] = {}
        self._tracks: dict[TrackId, Track] = {}
        self._view_names: dict[str, ViewId] = {}
        self._next_view_id: ViewId = 0
        self._next_track_id: TrackId = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_view(self, name: str, camera: Camera, estimated: bool = False) -> ViewId:
        """Add a view and return its id.

        Raises:
            ValueError: If a view with the same *name* already exists.
        """
        with self._lock:
            if name in self._view_names:
                raise ValueError(f"View {name!r} already exists")
            view_id = self._next_view_id
            self._next_view_id += 1
            self._views[view_id] = View(view_id, name, camera, estimated)
            self._view_names[name] = view_id
        return view_id

    def add_track(self) -> TrackId:
        """Add an empty, unestimated track and return its id."""
        with self._lock:
            track_id = self._next_track_id
            self._next_track_id += 1
            self._tracks[track_id] = Track(track_id)
        return track_id

    def add_observation(
        self, view_id: ViewId, track_id: TrackId, pixel: np.ndarray
    ) -> None:
        """Record that *view_id* observes *track_id* at *pixel*.

        Raises:
            KeyError: If either id is unknown.
            ValueError: If the view already observes the track.
        """
        view = self.view(view_id)
        track = self.track(track_id)
        with self._lock:
            if track_id in view.features:
                raise ValueError(
                    f"View {view_id} already has an observation of track {track_id}"
                )
            view.features[track_id] = np.asarray(pixel, dtype=np.float64).reshape(2)
            track._add_view(view_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def track(self, track_id: TrackId) -> Track:
        """Return the track with *track_id*.

        Raises:
            KeyError: If the track does not exist.
        """
        try:
            return self._tracks[track_id]
        except KeyError:
            raise KeyError(f"Unknown track id {track_id}") from None

    def view(self, view_id: ViewId) -> View:
        """Return the view with *view_id*.

        Raises:
            KeyError: If the view does not exist.
        """
        try:
            return self._views[view_id]
        except KeyError:
            raise KeyError(f"Unknown view id {view_id}") from None

    def view_id_from_name(self, name: str) -> ViewId:
        return self._view_names[name]

    def track_ids(self) -> list[TrackId]:
        """Sorted ids of all tracks."""
        return sorted(self._tracks)

    def view_ids(self) -> list[ViewId]:
        """Sorted ids of all views."""
        return sorted(self._views)

    def estimated_track_ids(self) -> list[TrackId]:
        """Sorted ids of tracks whose position is estimated."""
        return [tid for tid in self.track_ids() if self._tracks[tid].estimated]

    @property
    def num_tracks(self) -> int:
        return len(self._tracks)

    @property
    def num_views(self) -> int:
        return len(self._views)
