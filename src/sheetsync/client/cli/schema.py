"""Pydantic models for the CLI configuration file.

The config file declares the replica connection, engine settings, and the
column layout of each collection, from which codecs are built.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from sheetsync.client.sync.codec import ID_FIELD, VERSION_FIELD, Column, ColumnKind, RowCodec
from sheetsync.client.sync.types import Collection
from sheetsync.core.config import DEFAULT_BASE_URL, SyncSettings
from sheetsync.core.types import MergePolicyName

# === Collection schemas ===


class ColumnSchema(BaseModel):
    """One column of a collection layout."""

    name: str
    kind: ColumnKind = ColumnKind.STRING
    required: bool = False
    default: Any = None
    header: str | None = None
    choices: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def name_is_identifier(cls, value: str) -> str:
        if not value.isidentifier():
            raise ValueError(f"column name {value!r} is not a valid identifier")
        return value

    def to_column(self) -> Column:
        return Column(
            name=self.name,
            kind=self.kind,
            required=self.required,
            default=self.default,
            header=self.header,
            choices=tuple(self.choices),
        )


class CollectionSchema(BaseModel):
    """A collection: its ranges and column layout."""

    range: str
    clear_range: str | None = None
    write_range: str | None = None
    columns: list[ColumnSchema]

    @model_validator(mode="after")
    def has_id_column(self) -> CollectionSchema:
        if not any(c.name == ID_FIELD for c in self.columns):
            raise ValueError("columns must include an 'id' column")
        return self

    @model_validator(mode="after")
    def version_column_is_integer(self) -> CollectionSchema:
        for column in self.columns:
            if column.name == VERSION_FIELD and column.kind != ColumnKind.INTEGER:
                raise ValueError(f"column '{VERSION_FIELD}' must be of kind 'integer', got '{column.kind.value}'")
        return self

    def to_collection(self, key: str) -> Collection:
        """Build the collection descriptor with a generated record type."""
        type_name = "".join(part.capitalize() for part in key.replace("-", "_").split("_")) or "Record"
        codec = RowCodec.for_schema(type_name, [c.to_column() for c in self.columns])
        return Collection(
            key=key,
            codec=codec,
            read_range=self.range,
            clear_range=self.clear_range or "",
            write_range=self.write_range or "",
        )


# === Settings schema ===


class SettingsSchema(BaseModel):
    """Engine settings."""

    max_retries: int = Field(default=3, ge=1)
    padding_margin: int = Field(default=5, ge=0)
    policy: MergePolicyName = MergePolicyName.VERSIONED
    cache_ttl: float = Field(default=120.0, ge=0)
    conflict_backoff: float = Field(default=0.0, ge=0)

    def to_settings(self) -> SyncSettings:
        return SyncSettings(**self.model_dump())


# === Config file ===


class ConfigFile(BaseModel):
    """Contents of config.json."""

    spreadsheet_id: str = ""
    token: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = Field(default=30.0, gt=0)
    settings: SettingsSchema = Field(default_factory=SettingsSchema)
    collections: dict[str, CollectionSchema] = Field(default_factory=dict)

    def collection(self, key: str) -> Collection:
        """Get a collection descriptor by key.

        Raises:
            KeyError: If the collection is not configured.
        """
        if key not in self.collections:
            raise KeyError(key)
        return self.collections[key].to_collection(key)
