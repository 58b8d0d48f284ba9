"""Logging and metrics."""

from __future__ import annotations

from ai_router.shared.observability.logging import configure_logging

__all__ = ["configure_logging"]
