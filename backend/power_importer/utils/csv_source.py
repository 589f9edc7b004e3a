"""Sequential, streaming access to delimited product files."""

from __future__ import annotations

import csv
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

# utf-8-sig strips the BOM spreadsheet exports put in front of the header
SOURCE_ENCODING = "utf-8-sig"


@contextmanager
def open_source(file_path: str | Path) -> Iterator[TextIO]:
    """Open a CSV source for reading with the encoding imports expect."""
    with Path(file_path).open("r", encoding=SOURCE_ENCODING, newline="") as handle:
        yield handle


def read_header(reader: Iterator[list[str]]) -> list[str] | None:
    """Return the trimmed header row, or None when the file has none."""
    for row in reader:
        headers = [value.strip() for value in row]
        if any(headers):
            return headers
        return None
    return None


def iter_data_rows(reader: Iterator[list[str]]) -> Iterator[list[str]]:
    """Yield data rows, ignoring blank lines.

    Row counting during validation and offset skipping during chunk
    execution both go through here, so they always agree on what a row is.
    """
    for row in reader:
        if not row or all(not value.strip() for value in row):
            continue
        yield row


def skip_rows(rows: Iterator[list[str]], count: int) -> int:
    """Advance ``rows`` by up to ``count`` rows; return how many were skipped."""
    skipped = 0
    while skipped < count:
        if next(rows, None) is None:
            break
        skipped += 1
    return skipped


def make_reader(handle: TextIO) -> Iterator[list[str]]:
    return csv.reader(handle)
