"""Data models for the crawl-and-extract pipeline."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, List, Optional

import soupsieve
from bs4 import BeautifulSoup

# Names accepted by ``FieldRule.coerce``.  The functions themselves live in
# ``harvester.scraper.extractor``.
COERCIONS = ("text", "number", "int")

LinkSet = List[str]
Worklist = List[str]


# ---------------------------------------------------------------------------
# Missing marker
# ---------------------------------------------------------------------------

class Missing:
    """Singleton marker for a field whose value could not be extracted.

    Distinct from ``None`` and from a legitimately empty string.
    """

    _instance: Optional["Missing"] = None

    def __new__(cls) -> "Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (Missing, ())


MISSING = Missing()


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

@dataclass
class Page:
    """A fetched page: its source URL, raw markup, and a parsed handle."""

    url: str
    html: str
    status_code: int = 200
    _soup: Optional[BeautifulSoup] = field(default=None, init=False, repr=False, compare=False)

    @property
    def soup(self) -> BeautifulSoup:
        """Parsed markup, built on first access."""
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup


# ---------------------------------------------------------------------------
# Field specification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRule:
    """How to extract one field: a CSS selector plus optional attribute/coercion."""

    selector: str
    attribute: Optional[str] = None
    coerce: str = "text"

    def __post_init__(self) -> None:
        if not self.selector or not self.selector.strip():
            raise ValueError("FieldRule.selector must be a non-empty CSS selector")
        try:
            soupsieve.compile(self.selector)
        except soupsieve.SelectorSyntaxError as exc:
            raise ValueError(f"Invalid CSS selector {self.selector!r}: {exc}") from exc
        if self.coerce not in COERCIONS:
            raise ValueError(
                f"Unknown coercion {self.coerce!r}. Available: {list(COERCIONS)}"
            )

    @classmethod
    def from_value(cls, value: Any) -> FieldRule:
        """Build a rule from a bare selector string or a ``{"selector": ...}`` dict."""
        if isinstance(value, FieldRule):
            return value
        if isinstance(value, str):
            return cls(selector=value)
        if isinstance(value, Mapping):
            unknown = set(value) - {"selector", "attribute", "coerce"}
            if unknown:
                raise ValueError(f"Unknown field rule keys: {sorted(unknown)}")
            if "selector" not in value:
                raise ValueError("Field rule requires a 'selector'")
            return cls(
                selector=value["selector"],
                attribute=value.get("attribute"),
                coerce=value.get("coerce") or "text",
            )
        raise ValueError(f"Cannot build a field rule from {type(value).__name__}")


class FieldSpec(Mapping):
    """Ordered, read-only mapping of field name to :class:`FieldRule`."""

    def __init__(self, rules: Mapping[str, Any]) -> None:
        if not rules:
            raise ValueError("FieldSpec requires at least one field")
        built = {}
        for name, value in rules.items():
            if not isinstance(name, str) or not name:
                raise ValueError(f"Invalid field name: {name!r}")
            built[name] = FieldRule.from_value(value)
        self._rules = MappingProxyType(built)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldSpec:
        return cls(data)

    def __getitem__(self, name: str) -> FieldRule:
        return self._rules[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"FieldSpec({dict(self._rules)!r})"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class Record(Mapping):
    """One result row: exactly one slot per FieldSpec field.

    ``url`` records which leaf page the row came from; it is metadata, not a
    field.
    """

    def __init__(self, url: str, values: Mapping[str, Any]) -> None:
        self.url = url
        self._values = dict(values)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Record(url={self.url!r}, values={self._values!r})"

    def is_missing(self, name: str) -> bool:
        return self._values[name] is MISSING

    @property
    def all_missing(self) -> bool:
        return all(v is MISSING for v in self._values.values())

    def as_row(self, missing: Any = None) -> dict[str, Any]:
        """Plain dict with ``MISSING`` replaced by *missing*."""
        return {k: (missing if v is MISSING else v) for k, v in self._values.items()}


class ResultTable:
    """Append-only sequence of Records with a fixed column order."""

    def __init__(self, columns: List[str], capacity: Optional[int] = None) -> None:
        self.columns = list(columns)
        self.capacity = capacity
        self._records: List[Record] = []

    def append(self, record: Record) -> None:
        if set(record) != set(self.columns):
            raise ValueError(
                f"Record fields {sorted(record)} do not match table columns {sorted(self.columns)}"
            )
        if self.capacity is not None and len(self._records) >= self.capacity:
            raise ValueError(f"ResultTable is full (capacity={self.capacity})")
        self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __getitem__(self, index: int) -> Record:
        return self._records[index]

    def rows(self, missing: Any = None) -> List[dict[str, Any]]:
        """Return every record as a plain dict in column order."""
        return [
            {col: (missing if rec[col] is MISSING else rec[col]) for col in self.columns}
            for rec in self._records
        ]
