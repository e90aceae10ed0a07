"""Field extraction: turns a :class:`Page` into a :class:`Record`.

Extraction is best-effort and field-independent.  A selector that matches
nothing, a missing attribute, or text that fails coercion degrades that one
field to :data:`MISSING`; it never aborts extraction of the other fields.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict

from harvester.scraper.models import MISSING, FieldRule, FieldSpec, Page, Record

logger = logging.getLogger("harvester.scraper.extractor")


class CoercionError(ValueError):
    """Extracted text could not be converted to the field's declared type."""


# ---------------------------------------------------------------------------
# Coercions
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")


def _to_text(raw: str) -> str:
    return raw.strip()


def _to_number(raw: str) -> float:
    """Parse the first numeric token in *raw*, e.g. ``"$1,250.50 / mo"`` -> 1250.5."""
    cleaned = raw.replace(",", "").replace("\xa0", "")
    match = _NUMBER_RE.search(cleaned)
    if not match:
        raise CoercionError(f"no number in {raw!r}")
    return float(match.group(0))


def _to_int(raw: str) -> int:
    value = _to_number(raw)
    if not value.is_integer():
        raise CoercionError(f"{raw!r} is not an integer")
    return int(value)


_COERCE: Dict[str, Callable[[str], Any]] = {
    "text": _to_text,
    "number": _to_number,
    "int": _to_int,
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extract_field(page: Page, name: str, rule: FieldRule) -> Any:
    element = page.soup.select_one(rule.selector)
    if element is None:
        logger.debug("Selector miss field=%s selector=%r url=%s", name, rule.selector, page.url)
        return MISSING

    if rule.attribute:
        raw = element.get(rule.attribute)
        if raw is None:
            logger.debug("Attribute miss field=%s attribute=%r url=%s", name, rule.attribute, page.url)
            return MISSING
        if isinstance(raw, list):
            raw = " ".join(raw)
    else:
        raw = element.get_text(" ", strip=True)

    try:
        return _COERCE[rule.coerce](raw)
    except CoercionError as exc:
        logger.debug("Coercion failed field=%s coerce=%s url=%s: %s", name, rule.coerce, page.url, exc)
        return MISSING


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract(page: Page, field_spec: FieldSpec) -> Record:
    """Apply every rule in *field_spec* to *page*.

    Returns:
        A :class:`Record` with one slot per field; fields that could not be
        extracted hold :data:`MISSING`.
    """
    values = {name: _extract_field(page, name, rule) for name, rule in field_spec.items()}
    return Record(url=page.url, values=values)


def missing_record(field_spec: FieldSpec, url: str) -> Record:
    """Return a Record for *url* with every field marked missing."""
    return Record(url=url, values={name: MISSING for name in field_spec})
