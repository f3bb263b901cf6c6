"""
Pydantic models for inbound writer records.

A record is either mergeable (prefix/suffix/value, batched by key) or
immediate (a raw query executed on its own).
"""

from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import InvalidRequestError


class BatchKey(NamedTuple):
    """Consolidation identity: requests with equal keys are merged."""

    prefix: str
    suffix: str


class MergeableRequest(BaseModel):
    """Values sharing a prefix/suffix pair are rendered as one statement."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    prefix: str
    suffix: str = ""
    value: str

    @field_validator("suffix", mode="before")
    @classmethod
    def _null_suffix(cls, v):
        return "" if v is None else v

    @property
    def key(self) -> BatchKey:
        return BatchKey(self.prefix, self.suffix)


class ImmediateRequest(BaseModel):
    """Raw statement executed as soon as it is dequeued."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    query: str

    @field_validator("query")
    @classmethod
    def _not_blank(cls, v):
        if not v.strip():
            raise ValueError("query must not be blank")
        return v


Request = Union[MergeableRequest, ImmediateRequest]


def parse_request(record: Any) -> Request:
    """Build a request model from a queue record.

    Accepts a mapping with either ``prefix``/``suffix``/``value`` or ``query``
    (never both), or an already-built request model.

    Raises:
        InvalidRequestError: record matches neither shape
    """
    if isinstance(record, (MergeableRequest, ImmediateRequest)):
        return record
    if not isinstance(record, Mapping):
        raise InvalidRequestError(f"Unsupported record type: {type(record).__name__}")

    mergeable = "prefix" in record
    immediate = "query" in record
    if mergeable == immediate:
        raise InvalidRequestError(
            "Record must carry either prefix/suffix/value or query, "
            f"got keys: {list(record)}"
        )

    model = MergeableRequest if mergeable else ImmediateRequest
    try:
        return model.model_validate(dict(record))
    except (ValidationError, TypeError) as e:
        raise InvalidRequestError(str(e)) from e


def describe(record: Any, limit: Optional[int] = 120) -> str:
    """Short printable form of a record for log lines."""
    text = repr(record)
    if limit is not None and len(text) > limit:
        return text[: limit - 3] + "..."
    return text
