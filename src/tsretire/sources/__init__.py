"""Source store adapters."""

from .influx import InfluxSourceStore

__all__ = ["InfluxSourceStore"]
