"""Dashboard aggregation over the session store."""

from .catalog import build_catalog
from .service import StatsService, aggregate_usage

__all__ = ["StatsService", "aggregate_usage", "build_catalog"]
