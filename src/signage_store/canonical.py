from __future__ import annotations

import hashlib
from datetime import date, datetime, time
from enum import Enum
from typing import Any

import rfc8785
from pydantic import BaseModel

# JSON-primitive types that pass through unchanged.
_PASSTHROUGH_TYPES = (bool, int, float, str, type(None))


def to_jsonable(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Recursively convert records into the JSON shape stored on disk.

    Pydantic models are dumped by alias with unset optional fields omitted,
    which is the on-disk convention for every detail and index record.

    Args:
        value: A record, a list of records, or plain JSON-compatible data.

    Returns:
        A structure made only of JSON primitives, lists and string-keyed dicts.

    Raises:
        TypeError: If value contains a type that has no JSON representation.
    """
    if isinstance(value, _PASSTHROUGH_TYPES):
        return value

    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)

    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]

    if isinstance(value, Enum):
        return to_jsonable(value.value)

    if isinstance(value, (datetime, date, time)):
        return value.isoformat()

    if isinstance(value, bytes):
        raise TypeError(f"Cannot store raw bytes inside a JSON record: {value!r:.64}")

    raise TypeError(f"Cannot serialize type {type(value).__name__} to a JSON record")


def to_canonical_json(value: Any) -> str:
    """Serialize a value to byte-for-byte reproducible JSON per RFC 8785."""
    return rfc8785.dumps(to_jsonable(value)).decode("utf-8")


def fingerprint(value: Any) -> str:
    """SHA-256 of the canonical JSON form; equal records share a fingerprint."""
    return hashlib.sha256(to_canonical_json(value).encode("utf-8")).hexdigest()
