"""User overrides layered over computed payroll rows.

Overrides are keyed by canonical employee id, then by snake_case field name.
A missing key means "use the computed value"; an explicit 0 is a real override.
"""

from typing import Any, Dict, Iterable, List, Mapping, Type, TypeVar

from opsdesk.core.exceptions import UnknownFieldError
from opsdesk.schemas.payroll import PayrollRow, canonical_id

R = TypeVar("R", bound=PayrollRow)

OverrideSet = Dict[str, Dict[str, Any]]


def resolve_field(row_model: Type[PayrollRow], field: str) -> str:
    """Map a field name or its camelCase alias to the model's field name."""
    fields = row_model.model_fields
    if field in fields:
        return field
    for name, info in fields.items():
        if info.alias == field:
            return name
    raise UnknownFieldError(field)


def merge_row(row: R, overrides: Mapping[str, Mapping[str, Any]]) -> R:
    entry = overrides.get(canonical_id(row.employee_id))
    if not entry:
        return row.model_copy()
    fields = type(row).model_fields
    return row.model_copy(update={name: value for name, value in entry.items() if name in fields})


def merge_rows(rows: Iterable[R], overrides: Mapping[str, Mapping[str, Any]]) -> List[R]:
    return [merge_row(row, overrides) for row in rows]


def copy_overrides(overrides: Mapping[str, Mapping[str, Any]]) -> OverrideSet:
    return {key: dict(entry) for key, entry in overrides.items()}
