"""Storage schemas for the time-series tables."""

from .tables import TABLES, TableSpec, get_table

__all__ = ["TABLES", "TableSpec", "get_table"]
