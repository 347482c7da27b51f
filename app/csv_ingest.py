from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List

from .fingerprint import fingerprint

DEFAULT_WINDOW_SIZE = 500


class CsvIngestError(ValueError):
    pass


@dataclass(frozen=True)
class Row:
    index: int
    row_id: str
    fields: Dict[str, str]
    row_hash: str


def row_id_for(index: int) -> str:
    return f"r{index}"


def _iter_records(path: Path) -> Iterator[Dict[str, str]]:
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.DictReader(handle, strict=True)
            if not reader.fieldnames:
                raise CsvIngestError(f"CSV file has no header row: {path.name}")
            for record in reader:
                if None in record:
                    raise CsvIngestError(
                        f"malformed CSV record at line {reader.line_num}: "
                        f"{len(reader.fieldnames) + len(record[None])} fields, "
                        f"header has {len(reader.fieldnames)}"
                    )
                yield {key: value if value is not None else "" for key, value in record.items()}
    except csv.Error as exc:
        raise CsvIngestError(f"malformed CSV in {path.name}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise CsvIngestError(f"CSV file is not valid UTF-8: {path.name}") from exc


def iter_row_windows(path: Path, window_size: int = DEFAULT_WINDOW_SIZE) -> Iterator[List[Row]]:
    """Yield consecutive windows of at most ``window_size`` rows in file order.

    The file is read lazily. While the caller is processing a window the
    generator is suspended, so at most one window is held in memory.
    """
    if window_size <= 0:
        raise ValueError("window_size must be > 0")

    window: List[Row] = []
    for index, record in enumerate(_iter_records(Path(path))):
        window.append(
            Row(
                index=index,
                row_id=row_id_for(index),
                fields=record,
                row_hash=fingerprint(record),
            )
        )
        if len(window) >= window_size:
            yield window
            window = []
    if window:
        yield window


def count_csv_rows(path: Path) -> int:
    count = 0
    for _record in _iter_records(Path(path)):
        count += 1
    return count
