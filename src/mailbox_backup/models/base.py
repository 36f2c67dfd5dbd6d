"""Base Pydantic model configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class AppModel(BaseModel):
    """Mutable model validated on assignment; unknown fields are rejected."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        validate_default=True,
        validate_assignment=True,
    )


class FrozenModel(BaseModel):
    """Immutable, hashable value model passed by copy between components.

    Strings are kept verbatim: provider ids are opaque.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        frozen=True,
    )
