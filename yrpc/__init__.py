"""Remote calls over TCP with typed binary payloads and per-call timeouts."""

__version__ = "0.1.0"

__all__ = ["__version__"]