"""Management console for a browser-automation task queue."""

__version__ = "0.1.0"
