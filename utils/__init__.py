"""General utilities for the Slotweave chapter generation system."""

from __future__ import annotations

from .logging import setup_logging

__all__ = ["setup_logging"]
