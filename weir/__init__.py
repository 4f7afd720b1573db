"""Weir: GitHub activity ingestion and canonical event pipeline."""

from __future__ import annotations

__version__ = "0.1.0"
