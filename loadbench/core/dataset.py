"""
Dataset Provider

Loads a delimited tabular dataset exactly once and hands out rows by
iteration index. The loaded dataset is an immutable value shared by reference
across every VU; row lookup is a pure modulo index with no locking.
"""

import csv
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

from loadbench.errors import DataLoadError

logger = logging.getLogger(__name__)

DatasetRow = Mapping[str, str]

REQUIRED_FIELDS: tuple[str, ...] = ("Name", "Surname", "Email")

# Optional columns and the value used when a row leaves them empty.
OPTIONAL_DEFAULTS: Mapping[str, str] = MappingProxyType(
    {"Message": "My comment or my message"}
)

FALLBACK_ROW: Mapping[str, str] = MappingProxyType(
    {
        "Name": "John",
        "Surname": "Doe",
        "Email": "john@example.com",
        "Message": "Test message",
    }
)


class Dataset:
    """
    Ordered, immutable sequence of dataset rows.

    Rows are read-only mappings; ``row_for(i)`` returns ``rows[i % len(rows)]``.
    """

    __slots__ = ("_rows", "_source")

    def __init__(self, rows: Iterable[Mapping[str, str]], source: str = "<memory>"):
        frozen = tuple(MappingProxyType(dict(r)) for r in rows)
        if not frozen:
            raise DataLoadError(f"Dataset {source} has no rows")
        self._rows: tuple[DatasetRow, ...] = frozen
        self._source = source

    def __setattr__(self, name, value):
        if hasattr(self, "_source"):
            raise AttributeError("Dataset is read-only")
        object.__setattr__(self, name, value)

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, index: int) -> DatasetRow:
        return self._rows[index]

    def __iter__(self):
        return iter(self._rows)

    def __repr__(self) -> str:
        return f"Dataset(source={self._source!r}, rows={len(self._rows)})"

    @property
    def source(self) -> str:
        return self._source

    @property
    def rows(self) -> tuple[DatasetRow, ...]:
        return self._rows

    def row_for(self, iteration_index: int) -> DatasetRow:
        """Return the row for an iteration index (cyclic reuse)."""
        return self._rows[iteration_index % len(self._rows)]


def _read_rows(
    path: Path, delimiter: str, required_fields: Sequence[str]
) -> list[dict[str, str]]:
    if not path.is_file():
        raise DataLoadError(f"Dataset file not found: {path}")

    try:
        with path.open("r", encoding="utf-8", newline="") as handle:
            reader = csv.DictReader(handle, delimiter=delimiter)
            header = [h.strip() for h in (reader.fieldnames or [])]
            missing = [f for f in required_fields if f not in header]
            if missing:
                raise DataLoadError(
                    f"Dataset {path} is missing required column(s): {', '.join(missing)}"
                )
            rows: list[dict[str, str]] = []
            for raw in reader:
                row = {
                    str(k).strip(): (v or "").strip()
                    for k, v in raw.items()
                    if k is not None
                }
                if not any(row.values()):
                    continue
                rows.append(row)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise DataLoadError(f"Failed to read dataset {path}: {e}") from e

    if not rows:
        raise DataLoadError(f"Dataset {path} loaded but contains no data")
    return rows


def _apply_defaults(row: dict[str, str], defaults: Mapping[str, str]) -> dict[str, str]:
    for key, default in defaults.items():
        if not row.get(key):
            row[key] = default
    return row


def load_dataset(
    path: str | Path,
    *,
    delimiter: str = ",",
    required_fields: Sequence[str] = REQUIRED_FIELDS,
    defaults: Mapping[str, str] = OPTIONAL_DEFAULTS,
    fallback_row: Optional[Mapping[str, str]] = FALLBACK_ROW,
) -> Dataset:
    """
    Load the dataset once, before any scenario starts.

    A missing, unreadable or empty source is not fatal: a warning is logged
    and a dataset holding the single ``fallback_row`` is returned instead.

    Args:
        path: Path to a delimited text file whose header names the fields
        delimiter: Field delimiter
        required_fields: Columns that must be present in the header
        defaults: Values for optional columns left empty in a row
        fallback_row: Row used when loading fails; ``None`` re-raises instead

    Returns:
        Dataset instance
    """
    path = Path(path)
    try:
        rows = _read_rows(path, delimiter, required_fields)
    except DataLoadError as e:
        if fallback_row is None:
            raise
        logger.warning("%s; falling back to one default row", e)
        return Dataset([dict(fallback_row)], source="<fallback>")

    rows = [_apply_defaults(r, defaults) for r in rows]
    logger.info("Loaded %d dataset row(s) from %s", len(rows), path)
    return Dataset(rows, source=str(path))
