"""Board ordering and move-consistency engine for Kanban boards."""

__version__ = "1.0.0"
