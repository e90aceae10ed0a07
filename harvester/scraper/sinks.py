"""Serialise a :class:`ResultTable` to disk (one row per record)."""

from __future__ import annotations

import csv
import json
from pathlib import Path

from harvester.scraper.models import ResultTable

URL_COLUMN = "url"


def _check_columns(table: ResultTable, include_url: bool) -> None:
    if include_url and URL_COLUMN in table.columns:
        raise ValueError(
            f"Field name {URL_COLUMN!r} clashes with the source URL column; "
            "rename the field or pass include_url=False"
        )


def write_csv(table: ResultTable, path: Path, include_url: bool = True) -> Path:
    """Write *table* as CSV; missing values become empty cells."""
    _check_columns(table, include_url)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    header = ([URL_COLUMN] if include_url else []) + table.columns
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=header)
        writer.writeheader()
        for record, row in zip(table, table.rows(missing="")):
            if include_url:
                row = {URL_COLUMN: record.url, **row}
            writer.writerow(row)
    return path


def write_json(table: ResultTable, path: Path, include_url: bool = True) -> Path:
    """Write *table* as a JSON list of objects; missing values become ``null``."""
    _check_columns(table, include_url)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = []
    for record, row in zip(table, table.rows(missing=None)):
        rows.append({URL_COLUMN: record.url, **row} if include_url else row)
    path.write_text(json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
