"""
Pydantic schema for shipped log records.

The schema validates an already pre-formatted record: defaults are filled in
and the payload is serialized before validation runs, so every field here is
in its wire form.
"""

import uuid
from typing import Annotated

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError

NonEmptyStr = Annotated[str, Field(min_length=1)]
PositiveInt = Annotated[int, Field(gt=0)]


class LogRecord(BaseModel):
    """A single trace record as it is delivered to the stream."""

    # Strict: no int -> str or bool -> int coercion. Extra keys ride along.
    model_config = ConfigDict(strict=True, extra="allow")

    id: str
    service: NonEmptyStr
    client: NonEmptyStr
    entity: NonEmptyStr
    type: NonEmptyStr
    entityId: NonEmptyStr | PositiveInt | None = None
    message: str | None = None
    userCreated: str | None = None
    log: str | None = None
    dateCreated: str | None = None

    @field_validator("id")
    @classmethod
    def _uuid4(cls, v: str) -> str:
        try:
            parsed = uuid.UUID(v)
        except ValueError:
            raise ValueError("id must be a UUID") from None
        if parsed.version != 4:
            raise ValueError("id must be a version 4 UUID")
        return v


def _describe(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "record"
    return f"{location}: {first.get('msg', 'invalid value')}"


def validate_record(record: dict) -> dict:
    """
    Validate a pre-formatted record.

    Returns the record unchanged so callers can chain it.
    Raises ValidationError with the first schema violation.
    """
    try:
        LogRecord.model_validate(record)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e
    return record
