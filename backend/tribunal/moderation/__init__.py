"""Moderation package integration helpers exposed to the application."""

from tribunal.moderation.api import router
from tribunal.moderation.domain.container import configure, configure_memory, configure_postgres

__all__ = ["router", "configure", "configure_memory", "configure_postgres"]
