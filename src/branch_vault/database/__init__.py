"""Database dump capability."""

from .dumper import ContainerTransport, DatabaseDumper, DirectTransport, DumpTransport, transport_for

__all__ = [
    "ContainerTransport",
    "DatabaseDumper",
    "DirectTransport",
    "DumpTransport",
    "transport_for",
]
