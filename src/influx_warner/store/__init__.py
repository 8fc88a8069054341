"""Time-series store connectors."""

from .base import Rows, StoreClient, StoreQuery
from .influx import InfluxClient, InfluxQuery

__all__ = ["InfluxClient", "InfluxQuery", "Rows", "StoreClient", "StoreQuery"]
