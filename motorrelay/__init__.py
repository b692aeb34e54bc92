"""WebSocket relay between a pump/motor controller and its dashboards."""

__version__ = "0.1.0"

__all__ = ["__version__"]
