"""Importer adapter interfaces and concrete implementations."""

from __future__ import annotations

from .csv_rosters import (
    CSVAdapterError,
    CSVEmptyFileError,
    CSVEncodingError,
    CSVHeaderError,
    RosterCSVAdapter,
    RosterCSVStatistics,
    detect_delimiter,
    read_roster_csv,
)

__all__ = [
    "CSVAdapterError",
    "CSVEmptyFileError",
    "CSVEncodingError",
    "CSVHeaderError",
    "RosterCSVAdapter",
    "RosterCSVStatistics",
    "detect_delimiter",
    "read_roster_csv",
]
