"""Session-gated real-time messaging relay."""

__version__ = "1.0.0"
