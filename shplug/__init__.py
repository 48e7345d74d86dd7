"""shplug: a plugin manager for interactive shells."""

from __future__ import annotations

__version__ = "0.1.0"
