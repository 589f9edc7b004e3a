"""Validate CSV headers and count data rows before an import starts."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from power_importer.core.errors import ValidationError
from power_importer.utils.csv_source import (
    iter_data_rows,
    make_reader,
    open_source,
    read_header,
)

REQUIRED_COLUMNS = ("Name", "SKU", "Type")


class CsvValidationError(ValidationError):
    """Custom exception for CSV validation errors."""


class CsvNotFoundError(CsvValidationError):
    code = "file_not_found"


class CsvUnreadableError(CsvValidationError):
    code = "file_unreadable"


class MalformedHeaderError(CsvValidationError):
    code = "malformed_header"


class MissingColumnsError(CsvValidationError):
    code = "missing_columns"

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required columns: {', '.join(self.missing)}")


@dataclass(frozen=True)
class CsvValidation:
    total_rows: int
    headers: list[str] = field(default_factory=list)


def check_required_columns(
    headers: Sequence[str], required: Sequence[str] = REQUIRED_COLUMNS
) -> None:
    """Ensure CSV contains the required columns before processing."""
    present = set(headers)
    missing = [column for column in required if column not in present]
    if missing:
        raise MissingColumnsError(missing)


def validate_csv(
    file_path: str | Path, required: Sequence[str] = REQUIRED_COLUMNS
) -> CsvValidation:
    """Check the header row and count data rows without loading the file."""
    path = Path(file_path)
    if not path.exists():
        raise CsvNotFoundError(f"CSV file not found: {path}")

    try:
        with open_source(path) as handle:
            reader = make_reader(handle)
            try:
                headers = read_header(reader)
            except csv.Error as e:
                raise MalformedHeaderError(f"Unparseable header row: {str(e)}") from e
            if not headers:
                raise MalformedHeaderError(
                    "Invalid CSV format - no headers found or file is empty"
                )
            check_required_columns(headers, required)
            total_rows = sum(1 for _ in iter_data_rows(reader))
    except CsvValidationError:
        raise
    except FileNotFoundError as e:
        raise CsvNotFoundError(f"CSV file not found: {path}") from e
    except PermissionError as e:
        raise CsvUnreadableError(f"Permission denied reading file: {path}") from e
    except IsADirectoryError as e:
        raise CsvUnreadableError(f"Not a file: {path}") from e
    except UnicodeDecodeError as e:
        raise CsvUnreadableError(f"File encoding error: {str(e)}") from e
    except csv.Error as e:
        raise CsvUnreadableError(f"CSV parsing error: {str(e)}") from e
    except OSError as e:
        raise CsvUnreadableError(f"Cannot open CSV file: {str(e)}") from e

    return CsvValidation(total_rows=total_rows, headers=headers)
