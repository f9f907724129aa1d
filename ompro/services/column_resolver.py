"""
Column Resolver — maps free-form spreadsheet headers onto task fields.

Planning exports never agree on header names ("Nº OM", "Ordem", "TAG"...),
so each task field carries a list of synonyms. Matching is done on a
normalized form of both sides:

    "Descrição"   → "descricao"
    "Nº OM"       → "nom"
    "Centro Trab." → "centrotrab"

Resolution order for one field:
    1. exact: first header (in header order) equal to any synonym
    2. prefix: first header that starts with a synonym, or that a synonym
       starts with (only tried when step 1 found nothing)

Headers that normalize to "" (blank or punctuation only) never match.
"""

import re
import unicodedata
from dataclasses import dataclass

from ompro.core.exceptions import ValidationError

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ColumnSpec:
    field: str
    synonyms: tuple
    default: str = ""
    required: bool = False


TASK_COLUMNS = (
    ColumnSpec("om_number", ("n om", "om", "ordem", "numero ordem", "tag"), "S/N", True),
    ColumnSpec("description", ("descricao", "texto breve", "atividade", "texto"), "no description", True),
    ColumnSpec("work_center", ("centro de trabalho", "centro trabalho", "ct", "cc", "setor"), "N/A", True),
    ColumnSpec("circuit", ("circuito", "circuit", "loc", "tag loc")),
    ColumnSpec("min_date", ("data minima", "inicio", "data min", "min")),
    ColumnSpec("max_date", ("data maxima", "fim", "data max", "max")),
)


def normalize(text) -> str:
    """Lower-case, strip diacritics and drop every non-alphanumeric character."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", stripped)


def find_column(headers, synonyms):
    """Return the header matching one of ``synonyms``, or None.

    Exact matches anywhere in ``headers`` win over prefix matches.
    """
    targets = [t for t in (normalize(s) for s in synonyms) if t]
    candidates = [(h, normalize(h)) for h in headers]
    candidates = [(h, n) for h, n in candidates if n]

    for header, norm in candidates:
        if norm in targets:
            return header

    for header, norm in candidates:
        for target in targets:
            if norm.startswith(target) or target.startswith(norm):
                return header

    return None


def resolve_columns(headers, columns=TASK_COLUMNS) -> dict:
    """Map every field in ``columns`` to a header (or None)."""
    headers = list(headers)
    return {spec.field: find_column(headers, spec.synonyms) for spec in columns}


def apply_explicit_mapping(headers, mapping, columns=TASK_COLUMNS) -> dict:
    """Validate a user-chosen mapping and return it completed for every field.

    ``mapping`` is ``{field: header}``; a falsy header means "not mapped".

    Raises:
        ValidationError: unknown field, header not in the sheet, or a
            required field left unmapped. ``details`` holds one message per field.
    """
    if not isinstance(mapping, dict):
        raise ValidationError("mapping must be an object of field → header")

    known = {spec.field: spec for spec in columns}
    header_set = set(headers)
    errors = {}

    for field, header in mapping.items():
        if field not in known:
            errors[field] = "unknown field"
        elif header is not None and not isinstance(header, str):
            errors[field] = "column name must be text"
        elif header and header not in header_set:
            errors[field] = f"column {header!r} not found in spreadsheet"

    resolved = {spec.field: (mapping.get(spec.field) or None) for spec in columns}

    for spec in columns:
        if spec.required and not resolved[spec.field] and spec.field not in errors:
            errors[spec.field] = "required field is not mapped"

    if errors:
        raise ValidationError("Invalid column mapping", details=errors)
    return resolved


def suggest_mapping(headers, columns=TASK_COLUMNS) -> dict:
    """Automatic mapping plus the metadata the mapping step needs."""
    mapping = resolve_columns(headers, columns)
    return {
        "mapping": mapping,
        "unmapped": [field for field, header in mapping.items() if header is None],
        "fields": [
            {"field": spec.field, "required": spec.required, "default": spec.default}
            for spec in columns
        ],
    }
