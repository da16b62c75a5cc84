"""Object export over the application's HTTP API."""

from .client import ObjectExporter, serialize_records

__all__ = ["ObjectExporter", "serialize_records"]
