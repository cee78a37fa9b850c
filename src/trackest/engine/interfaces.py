"""Structural contracts for the collaborators the track estimator depends on.

The estimator only needs "something that can fetch a track or view by id"
and "something that can refine a track"; any object satisfying these
Protocols can be injected, which keeps the engine testable against fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from trackest.reconstruction.bundle_adjustment import (
    BundleAdjustmentOptions,
    BundleAdjustmentSummary,
)
from trackest.reconstruction.scene import Track, TrackId, View, ViewId


@runtime_checkable
class ReconstructionStore(Protocol):
    """Read access to views and read/write access to tracks.

    Must tolerate concurrent lookups from several worker threads while one
    worker writes the position of a track no other worker is touching.
    :class:`trackest.reconstruction.Reconstruction` satisfies this protocol.
    """

    def track(self, track_id: TrackId) -> Track:
        """Return the track with *track_id*, raising KeyError if unknown."""
        ...

    def view(self, view_id: ViewId) -> View:
        """Return the view with *view_id*, raising KeyError if unknown."""
        ...

    def track_ids(self) -> list[TrackId]:
        """Return the ids of every track in the store."""
        ...


@runtime_checkable
class TrackRefiner(Protocol):
    """Callable that locally refines one accepted track in place.

    :func:`trackest.reconstruction.bundle_adjust_track` satisfies this
    protocol. Implementations report failure through the returned summary
    instead of raising.
    """

    def __call__(
        self,
        options: BundleAdjustmentOptions,
        track_id: TrackId,
        reconstruction: ReconstructionStore,
    ) -> BundleAdjustmentSummary: ...
