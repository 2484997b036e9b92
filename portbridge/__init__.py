"""Relay one TCP stream over a pool of authenticated, sequenced connections."""

__version__ = "0.1.0"

__all__ = ["__version__"]