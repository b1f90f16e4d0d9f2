"""DTO utilities for service layer.

Converts service records into JSON-safe dictionaries for the HTTP API
and the CLI.
"""

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from src.utils.datetime_utils import as_utc


def to_jsonable(value: Any) -> Any:
    """
    Recursively convert records to JSON-compatible structures.

    - dataclasses become dicts (with a ``status``-independent shape)
    - Decimal becomes its exact string form
    - datetimes become ISO-8601 UTC strings
    - tuples and lists become lists

    Examples:
        >>> to_jsonable(Decimal("15375.0000"))
        '15375.0000'
        >>> to_jsonable((1, 2))
        [1, 2]
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value
