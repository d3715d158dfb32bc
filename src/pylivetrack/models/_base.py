"""Base model for pylivetrack documents.

Every stored or published model inherits from :class:`LiveTrackBaseModel`
which provides:

* ``alias_generator=to_camel`` so snake_case fields round-trip through
  camelCase store documents (``speedKmh``, ``isActive``...).
* ``frozen=True``: samples and records are values, never mutated in place.
* :meth:`to_document` / :meth:`from_document` for the store boundary.
"""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class LiveTrackBaseModel(BaseModel):
    """Base for pylivetrack value models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_document(self, *, exclude_none: bool = False) -> dict[str, Any]:
        """Dump to a camelCase dict suitable for the shared store."""
        return self.model_dump(by_alias=True, exclude_none=exclude_none)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Self:
        """Validate a camelCase store document."""
        return cls.model_validate(document)


def require_non_empty(value: str, field_name: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError(f"{field_name} must be non-empty")
    return text
