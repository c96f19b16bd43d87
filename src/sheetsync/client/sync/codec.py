"""Typed record <-> row codec.

A RowCodec maps a record dataclass to a fixed column layout. Each Column
declares its cell type and whether it is required, so encoding is an
explicit serializer rather than a dump of whatever attributes happen to be
set.

Decoding is total: a cell that cannot be converted yields the column
default and a MappingError is collected, never raised. Encoding is strict:
a required column holding None raises MappingError before anything is
written.

Usage:
    @dataclass
    class Product:
        id: str
        name: str = ""
        quantity: float = 0.0
        version: int | None = None
        updated_at: str | None = None

    codec = RowCodec(Product, [
        Column("id", required=True, header="ID"),
        Column("name", required=True),
        Column("quantity", ColumnKind.NUMBER, required=True),
        Column("version", ColumnKind.INTEGER),
        Column("updated_at"),
    ])
"""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from sheetsync.client.sync.types import MappingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ID_FIELD = "id"
VERSION_FIELD = "version"
UPDATED_AT_FIELD = "updated_at"

_NUMBER_JUNK = re.compile(r"[^\d.\-eE]")
_TRUE_VALUES = frozenset({"true", "1", "yes", "y"})
_FALSE_VALUES = frozenset({"false", "0", "no", "n"})


class ColumnKind(str, Enum):
    """Cell type of a column."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    JSON = "json"
    CHOICE = "choice"


_ZERO_VALUES: dict[ColumnKind, Any] = {
    ColumnKind.STRING: "",
    ColumnKind.NUMBER: 0.0,
    ColumnKind.INTEGER: 0,
    ColumnKind.BOOLEAN: False,
    ColumnKind.JSON: None,
    ColumnKind.CHOICE: "",
}


@dataclass(frozen=True)
class Column:
    """Declaration of one column.

    Attributes:
        name: Record field the column maps to
        kind: Cell type
        required: Required columns never decode to None and refuse to
            encode None
        default: Value used for empty or malformed cells
        header: Column title in the header row (defaults to name)
        choices: Allowed values for CHOICE columns
    """

    name: str
    kind: ColumnKind = ColumnKind.STRING
    required: bool = False
    default: Any = None
    header: str | None = None
    choices: tuple[str, ...] = ()

    @property
    def title(self) -> str:
        return self.header or self.name

    @property
    def fallback(self) -> Any:
        """Value used when a cell is empty or malformed."""
        if self.default is not None:
            return self.default
        if self.kind == ColumnKind.CHOICE and self.choices:
            return self.choices[0] if self.required else None
        return _ZERO_VALUES[self.kind] if self.required else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_number(column: Column, raw: Any) -> float:
    if isinstance(raw, bool):
        raise MappingError(column.name, raw, "boolean is not a number")
    if isinstance(raw, (int, float)):
        number = float(raw)
    else:
        text = _NUMBER_JUNK.sub("", str(raw).replace(",", "."))
        try:
            number = float(text)
        except ValueError:
            raise MappingError(column.name, raw, "not a number") from None
    if not math.isfinite(number):
        raise MappingError(column.name, raw, "not finite")
    return number


def parse_cell(column: Column, raw: Any) -> Any:
    """Convert one raw cell to the column's type.

    Args:
        column: Column declaration.
        raw: Cell value as returned by the API.

    Returns:
        Converted value, or the column fallback for blank cells.

    Raises:
        MappingError: If a non-blank cell cannot be converted.
    """
    if _is_blank(raw):
        return column.fallback

    kind = column.kind
    if kind == ColumnKind.STRING:
        return raw if isinstance(raw, str) else str(raw)

    if kind == ColumnKind.NUMBER:
        return _parse_number(column, raw)

    if kind == ColumnKind.INTEGER:
        number = _parse_number(column, raw)
        if not number.is_integer():
            raise MappingError(column.name, raw, "not an integer")
        return int(number)

    if kind == ColumnKind.BOOLEAN:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise MappingError(column.name, raw, "not a boolean")

    if kind == ColumnKind.JSON:
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise MappingError(column.name, raw, f"invalid JSON ({e.msg})") from None

    # CHOICE
    text = str(raw).strip()
    if text not in column.choices:
        raise MappingError(column.name, raw, f"expected one of {list(column.choices)}")
    return text


def format_cell(column: Column, value: Any) -> Any:
    """Convert a record value to a cell value.

    Raises:
        MappingError: If a required column holds None.
    """
    if value is None:
        if column.required:
            raise MappingError(column.name, value, "required column is empty")
        return ""
    if column.kind == ColumnKind.JSON:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    if column.kind == ColumnKind.CHOICE and column.choices and value not in column.choices:
        raise MappingError(column.name, value, f"expected one of {list(column.choices)}")
    return value


class RowCodec(Generic[T]):
    """Maps records of one dataclass type to rows of a fixed layout."""

    def __init__(self, record_type: type[T], columns: Sequence[Column]) -> None:
        """Initialize the codec.

        Args:
            record_type: Dataclass of the records.
            columns: Column layout, in sheet order.

        Raises:
            ValueError: If the layout is missing an id column, repeats a
                column, names a field the record type lacks, or gives the
                version column a kind other than integer.
        """
        if not dataclasses.is_dataclass(record_type):
            raise ValueError(f"{record_type!r} is not a dataclass")

        names = [c.name for c in columns]
        if ID_FIELD not in names:
            raise ValueError("Column layout must include an 'id' column")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate columns in layout: {names}")

        field_names = {f.name for f in dataclasses.fields(record_type)}
        unknown = [n for n in names if n not in field_names]
        if unknown:
            raise ValueError(f"{record_type.__name__} has no fields {unknown}")
        if VERSION_FIELD in names and columns[names.index(VERSION_FIELD)].kind != ColumnKind.INTEGER:
            raise ValueError(f"Column '{VERSION_FIELD}' must be of kind '{ColumnKind.INTEGER.value}'")

        self._record_type = record_type
        self._columns = tuple(columns)
        self._id_index = names.index(ID_FIELD)
        self._field_names = field_names

    @classmethod
    def for_schema(cls, name: str, columns: Sequence[Column]) -> RowCodec[Any]:
        """Build a codec together with a generated record dataclass.

        The generated type always carries ``id``, ``version`` and
        ``updated_at`` so it satisfies SyncedRecord even when the layout
        does not store them.
        """
        specs: list[tuple[str, Any, Any]] = [(ID_FIELD, str, dataclasses.field(default=""))]
        for column in columns:
            if column.name in (ID_FIELD, VERSION_FIELD, UPDATED_AT_FIELD):
                continue
            fallback = column.fallback
            if isinstance(fallback, (list, dict, set)):
                spec = dataclasses.field(default_factory=lambda v=fallback: copy.deepcopy(v))
            else:
                spec = dataclasses.field(default=fallback)
            specs.append((column.name, Any, spec))
        specs.append((VERSION_FIELD, "int | None", dataclasses.field(default=None)))
        specs.append((UPDATED_AT_FIELD, "str | None", dataclasses.field(default=None)))
        record_type = dataclasses.make_dataclass(name, specs)
        return cls(record_type, columns)

    @property
    def record_type(self) -> type[T]:
        return self._record_type

    @property
    def columns(self) -> tuple[Column, ...]:
        return self._columns

    @property
    def width(self) -> int:
        """Number of columns."""
        return len(self._columns)

    @property
    def id_index(self) -> int:
        """Position of the identity column."""
        return self._id_index

    @property
    def id_header(self) -> str:
        """Title of the identity column, used to recognise header rows."""
        return self._columns[self._id_index].title

    @property
    def has_versions(self) -> bool:
        """True if records carry a version field."""
        return VERSION_FIELD in self._field_names

    def header_row(self) -> list[str]:
        """Column titles, in sheet order."""
        return [c.title for c in self._columns]

    def blank_row(self) -> list[str]:
        """A row of empty cells, used to overwrite stale rows."""
        return [""] * self.width

    def row_id(self, row: Sequence[Any]) -> str:
        """Identity cell of a raw row, stripped ("" if missing)."""
        if len(row) <= self._id_index or row[self._id_index] is None:
            return ""
        return str(row[self._id_index]).strip()

    def is_header(self, row: Sequence[Any]) -> bool:
        """True if the row is the header row."""
        return self.row_id(row).lower() == self.id_header.strip().lower()

    def decode(self, row: Sequence[Any], errors: list[MappingError] | None = None) -> T:
        """Decode a row into a record.

        Args:
            row: Raw cells; short rows are padded with blanks.
            errors: Optional list collecting MappingErrors for bad cells.

        Returns:
            A record; malformed cells hold their column fallback.
        """
        values: dict[str, Any] = {}
        for index, column in enumerate(self._columns):
            raw = row[index] if index < len(row) else None
            try:
                value = parse_cell(column, raw)
                if column.name == VERSION_FIELD and value is not None and value < 1:
                    raise MappingError(column.name, raw, "version must be >= 1")
            except MappingError as e:
                logger.debug("%s", e)
                if errors is not None:
                    errors.append(e)
                value = column.fallback
            values[column.name] = copy.deepcopy(value)
        values[ID_FIELD] = self.row_id(row)
        return self._record_type(**values)

    def encode(self, record: T) -> list[Any]:
        """Encode a record into a row.

        Raises:
            MappingError: If a required column holds None or a CHOICE
                value is not allowed.
        """
        return [format_cell(c, getattr(record, c.name, None)) for c in self._columns]
