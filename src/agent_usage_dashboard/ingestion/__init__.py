"""Ingestion pipeline for OpenClaw and Codex session logs."""

from .schemas import IngestionCounters, RegistryRecord, SessionRecord, Source
from .service import IngestionService

__all__ = ["IngestionCounters", "IngestionService", "RegistryRecord", "SessionRecord", "Source"]
