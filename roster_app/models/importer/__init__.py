"""Importer data models."""

from .schema import ImportRun, ImportRunStatus, RosterKind

__all__ = ["ImportRun", "ImportRunStatus", "RosterKind"]
