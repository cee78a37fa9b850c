"""trackest -- triangulation and acceptance of multi-view feature tracks."""

__version__ = "0.1.0"
