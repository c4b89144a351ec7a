"""CSV input reading for the four relationship files."""
import csv
from pathlib import Path
from typing import Union

import structlog

from vehicle_reconciliation.core.exceptions import InputError

logger = structlog.get_logger(__name__)

# Stands in for bytes that are not valid UTF-8
UNDECODABLE = "\ufffd"


def read_csv_rows(path: Union[str, Path], column_count: int) -> list[tuple[str, ...]]:
    """
    Read a comma-separated file, skipping its header row.

    Columns beyond ``column_count`` are ignored. Shorter rows and rows holding
    bytes that are not UTF-8 are dropped. Cell values are returned as-is;
    blank checks belong to the loader.

    Raises:
        InputError: The file cannot be opened, or none of its data rows
            decode as UTF-8
    """
    path = Path(path)
    rows: list[tuple[str, ...]] = []
    short_rows = 0
    undecodable_rows = 0

    try:
        with path.open(newline="", encoding="utf-8-sig", errors="replace") as handle:
            reader = csv.reader(handle)
            next(reader, None)
            for line in reader:
                if any(UNDECODABLE in cell for cell in line[:column_count]):
                    undecodable_rows += 1
                    continue
                if len(line) < column_count:
                    short_rows += 1
                    continue
                rows.append(tuple(line[:column_count]))
    except (OSError, csv.Error) as e:
        raise InputError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e

    if undecodable_rows and not rows:
        raise InputError(
            f"{path} is not UTF-8 encoded: none of its {undecodable_rows} rows decode",
            details={"path": str(path)},
        )

    logger.debug(
        "Read CSV file",
        path=str(path),
        rows=len(rows),
        short_rows_dropped=short_rows,
        undecodable_rows_dropped=undecodable_rows,
    )
    return rows
