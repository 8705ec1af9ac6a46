"""Masking of configured private fields inside log payloads."""

from collections.abc import Iterable, Mapping
from typing import Any

MASK = "***"


def hide_fields_from_log(data: Any, private_fields: Iterable[str] | None) -> Any:
    """
    Replace the value of every key named in private_fields with MASK.

    Walks nested mappings and lists. The input is never mutated; a masked
    copy is returned. Values of any type (including whole lists and objects)
    are replaced, not descended into, once their key matches.
    """
    fields = frozenset(private_fields or ())
    if not fields:
        return data
    return _mask(data, fields)


def _mask(value: Any, fields: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            key: MASK if key in fields else _mask(item, fields)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [_mask(item, fields) for item in value]
    return value
