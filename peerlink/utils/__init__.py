"""Utility helpers for peerlink."""

from .logging import configure_logging

__all__ = ["configure_logging"]
