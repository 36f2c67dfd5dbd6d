"""Pydantic models for remote messages, local records and session config."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Self

from pydantic import Field, model_validator

from mailbox_backup.models.base import AppModel, FrozenModel


class RemoteMetadata(FrozenModel):
    """Metadata reported by the provider listing (fields may be missing)."""

    size_bytes: int | None = Field(default=None, ge=0)
    received_at: datetime | None = None
    folder: str | None = None


class MessageRef(FrozenModel):
    """Reference to one remote message. Identity is `id`."""

    id: str = Field(min_length=1)
    metadata: RemoteMetadata = Field(default_factory=RemoteMetadata)


class LocalRecord(FrozenModel):
    """A message already persisted under the data folder."""

    id: str = Field(min_length=1)
    file_path: Path
    size_bytes: int = Field(ge=0)
    written_at: datetime


class FilterSpec(AppModel):
    """Provider filter string plus inclusive date bounds."""

    query: str = ""
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def _dates_ordered(self) -> Self:
        """Reject a date range whose start is after its end.

        Returns:
            The validated filter.

        Raises:
            ValueError: If start_date > end_date.
        """
        if self.start_date and self.end_date and self.start_date > self.end_date:
            msg = f"start_date {self.start_date} is after end_date {self.end_date}"
            raise ValueError(msg)
        return self


class SessionConfig(AppModel):
    """Inputs of a single backup run."""

    data_folder: Path
    filter: FilterSpec = Field(default_factory=FilterSpec)
    max_connections: int = Field(default=1, ge=1)
    sync_deletes: bool = False
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)
