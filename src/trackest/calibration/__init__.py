"""Camera geometry for track triangulation."""

from .camera import Camera

__all__ = ["Camera"]
