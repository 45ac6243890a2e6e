"""Stream state, a registry of discovered streams and command line options for monitoring multicast traffic."""

__version__ = "1.0.0"
__all__ = ["streams", "registry", "options"]