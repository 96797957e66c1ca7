"""Search index sync service: queue-driven change data capture into search collections."""

__version__ = "1.0.0"
