"""Relay bridge between chat channels and assistant sessions running in tmux."""

__version__ = "0.1.0"

__all__ = ["__version__"]
