"""CSV adapter for roster ingest.

Turns an uploaded roster export into ``ImportRow`` records: strips a leading
byte-order mark, detects the delimiter (tab, semicolon or comma) from the
header line, skips blank lines and numbers data rows from 2 so row numbers
match what staff see in a spreadsheet.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, Sequence

from roster_app.importer.contracts import ImportRow, normalize_header

SUPPORTED_DELIMITERS: tuple[str, ...] = ("\t", ";", ",")


class CSVAdapterError(Exception):
    """Base exception for CSV adapter failures."""


class CSVHeaderError(CSVAdapterError):
    """Raised when the header row is missing or ambiguous."""

    def __init__(self, message: str | None = None, *, duplicates: Sequence[str] | None = None) -> None:
        details: list[str] = []
        if message:
            details.append(message)
        if duplicates:
            details.append(
                "Duplicate columns detected: "
                + ", ".join(sorted(duplicates))
                + ". Ensure each column appears only once."
            )
        text = "CSV header validation failed. " + " ".join(details) if details else "CSV header validation failed."
        super().__init__(text)
        self.duplicates = tuple(duplicates or ())


class CSVEmptyFileError(CSVAdapterError):
    """Raised when a file has no header or no data rows."""

    def __init__(self) -> None:
        super().__init__("CSV file must contain a header row and at least one data row.")


class CSVEncodingError(CSVAdapterError):
    """Raised when the file cannot be decoded with the expected encoding."""

    def __init__(self, encoding: str) -> None:
        label = "UTF-8" if encoding.lower().replace("_", "-").startswith("utf-8") else encoding
        super().__init__(f"File is not valid {label} text. Save the roster as CSV UTF-8 and upload it again.")
        self.encoding = encoding


@dataclass
class RosterCSVStatistics:
    """Accumulated statistics from CSV parsing."""

    rows_processed: int = 0
    rows_skipped_blank: int = 0


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("\ufeff").strip()


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter from the header line: tab, then semicolon, else comma."""

    for delimiter in SUPPORTED_DELIMITERS:
        if delimiter in header_line:
            return delimiter
    return ","


def _row_is_blank(values: Sequence[str]) -> bool:
    return all((value or "").strip() == "" for value in values)


class RosterCSVAdapter:
    """CSV reader producing ``ImportRow`` records for the reconciliation runner."""

    def __init__(self, file_obj: IO[str], *, skip_blank_rows: bool = True) -> None:
        self._file_obj = file_obj
        self.skip_blank_rows = skip_blank_rows
        self.statistics = RosterCSVStatistics()
        self.headers: tuple[str, ...] = ()
        self.delimiter: str = ","

    def _prepare_reader(self) -> Iterator[list[str]]:
        self._file_obj.seek(0)
        text = self._file_obj.read().lstrip("\ufeff")
        header_line = next((line for line in text.splitlines() if line.strip()), None)
        if header_line is None:
            raise CSVEmptyFileError()

        self.delimiter = detect_delimiter(header_line)
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter)
        raw_headers: list[str] | None = None
        for candidate in reader:
            if not _row_is_blank(candidate):
                raw_headers = candidate
                break
        if raw_headers is None:
            raise CSVEmptyFileError()

        headers = tuple(_sanitize_header(header) for header in raw_headers)
        seen: dict[str, str] = {}
        duplicates: list[str] = []
        for header in headers:
            key = normalize_header(header)
            if not key:
                continue
            if key in seen:
                duplicates.append(header)
            else:
                seen[key] = header
        if duplicates:
            raise CSVHeaderError(duplicates=duplicates)

        self.headers = headers
        return reader

    def iter_rows(self) -> Iterator[ImportRow]:
        reader = self._prepare_reader()
        row_number = 1
        for raw_row in reader:
            if self.skip_blank_rows and _row_is_blank(raw_row):
                self.statistics.rows_skipped_blank += 1
                continue
            row_number += 1
            values = {
                header: (raw_row[index].strip() if index < len(raw_row) else "")
                for index, header in enumerate(self.headers)
                if header
            }
            self.statistics.rows_processed += 1
            yield ImportRow(row_number=row_number, values=values)

    def read_rows(self) -> list[ImportRow]:
        """Materialize every data row; an empty body is an error."""

        rows = list(self.iter_rows())
        if not rows:
            raise CSVEmptyFileError()
        return rows


def read_roster_csv(path: str | Path, *, encoding: str = "utf-8-sig") -> list[ImportRow]:
    with Path(path).open("r", encoding=encoding, newline="") as handle:
        try:
            return RosterCSVAdapter(handle).read_rows()
        except UnicodeDecodeError as exc:
            raise CSVEncodingError(encoding) from exc


__all__ = [
    "CSVAdapterError",
    "CSVEmptyFileError",
    "CSVEncodingError",
    "CSVHeaderError",
    "RosterCSVAdapter",
    "RosterCSVStatistics",
    "SUPPORTED_DELIMITERS",
    "detect_delimiter",
    "read_roster_csv",
]
