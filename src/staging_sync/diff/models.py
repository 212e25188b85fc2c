"""Pydantic models for diff output.

Defines the data contracts shared by the differs, the grouper and the
sync layer:

- ``ChangeStatus``: added / modified / deleted.
- ``FieldValue`` and ``Row``: typed row representation.
- ``ItemRef``: addressable reference to a file or a row.
- ``FileChange``, ``RowChange``, ``ChangeGroup``: change records.
- ``FileDiffReport``, ``DatabaseDiffReport``, ``GroupedChanges``:
  aggregate outputs of one diff pass.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

import base64
from collections import OrderedDict
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ChangeStatus(str, Enum):
    """Classification of a single change."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Typed values
# ---------------------------------------------------------------------------


class ValueKind(str, Enum):
    """Tag carried by every ``FieldValue``."""

    NULL = "null"
    TEXT = "text"
    NUMBER = "number"
    BYTES = "bytes"
    TEMPORAL = "temporal"


def normalize_text(text: str) -> str:
    """Normalize line endings to ``\\n`` and trim surrounding whitespace."""
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


class FieldValue(BaseModel):
    """A single column value tagged with its kind.

    ``value`` keeps the native Python object returned by the database
    driver so it can be written back unchanged.
    """

    kind: ValueKind
    value: Any = None

    model_config = {"frozen": True}

    @classmethod
    def of(cls, raw: Any) -> FieldValue:
        """Wrap a raw driver value."""
        match raw:
            case None:
                return cls(kind=ValueKind.NULL)
            case bool():
                return cls(kind=ValueKind.NUMBER, value=int(raw))
            case int() | float() | Decimal():
                return cls(kind=ValueKind.NUMBER, value=raw)
            case str():
                return cls(kind=ValueKind.TEXT, value=raw)
            case bytes() | bytearray() | memoryview():
                return cls(kind=ValueKind.BYTES, value=bytes(raw))
            case datetime() | date() | time():
                return cls(kind=ValueKind.TEMPORAL, value=raw)
            case _:
                return cls(kind=ValueKind.TEXT, value=str(raw))

    @property
    def is_blank(self) -> bool:
        """``True`` for NULL and for text that normalizes to ``""``."""
        if self.kind is ValueKind.NULL:
            return True
        return (
            self.kind is ValueKind.TEXT
            and normalize_text(self.value) == ""
        )

    def comparison_key(self) -> Any:
        """Return the JSON-safe form used for equality.

        NULL and blank text share the key ``None``; text is normalized;
        numbers compare numerically; bytes and temporal values use a
        string encoding.
        """
        if self.is_blank:
            return None
        match self.kind:
            case ValueKind.TEXT:
                return normalize_text(self.value)
            case ValueKind.NUMBER:
                if isinstance(self.value, Decimal):
                    if self.value == self.value.to_integral_value():
                        return int(self.value)
                    return float(self.value)
                return self.value
            case ValueKind.BYTES:
                return self.value.hex()
            case ValueKind.TEMPORAL:
                return self.value.isoformat()
        return self.value

    def to_json(self) -> Any:
        """Return a JSON-serialisable rendering of the raw value."""
        match self.kind:
            case ValueKind.NULL:
                return None
            case ValueKind.BYTES:
                return base64.b64encode(self.value).decode("ascii")
            case ValueKind.TEMPORAL:
                return self.value.isoformat()
            case ValueKind.NUMBER if isinstance(self.value, Decimal):
                return str(self.value)
        return self.value

    def display(self) -> str:
        """Short human-readable rendering."""
        if self.kind is ValueKind.NULL:
            return "NULL"
        if self.kind is ValueKind.BYTES:
            return f"<{len(self.value)} bytes>"
        return str(self.to_json())


def values_equal(a: FieldValue, b: FieldValue) -> bool:
    """Normalized-value equality used by the relational differ.

    NULL and empty text are equal to each other and to nothing else;
    text compares after line-ending normalization and trimming; other
    values compare strictly.
    """
    return a.comparison_key() == b.comparison_key()


Row = dict[str, FieldValue]
"""A typed row: column name mapped to a tagged value."""


def row_from_mapping(mapping: Any) -> Row:
    """Build a typed ``Row`` from a driver row mapping."""
    return {
        str(column): FieldValue.of(raw) for column, raw in mapping.items()
    }


def row_snapshot(
    row: Row, excluded_columns: frozenset[str] | set[str] = frozenset()
) -> dict[str, Any]:
    """Comparison form of *row* for persistence and equality checks."""
    return {
        column: value.comparison_key()
        for column, value in row.items()
        if column not in excluded_columns
    }


# ---------------------------------------------------------------------------
# Item references
# ---------------------------------------------------------------------------


class ItemType(str, Enum):
    """Kind of item a change or conflict refers to."""

    FILE = "file"
    DATABASE = "database"


class ItemRef(BaseModel):
    """Reference to one file or one row.

    String form: a file is its relative path (``file:`` prefix optional),
    a row is ``db:<table>:<primary key>``.
    """

    item_type: ItemType
    path: str | None = None
    table: str | None = None
    key: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def file(cls, path: str) -> ItemRef:
        return cls(item_type=ItemType.FILE, path=path)

    @classmethod
    def row(cls, table: str, key: str) -> ItemRef:
        return cls(item_type=ItemType.DATABASE, table=table, key=str(key))

    @classmethod
    def parse(cls, text: str) -> ItemRef:
        """Parse the string form of a reference.

        Raises:
            ValueError: If a ``db:`` reference lacks a table or key.
        """
        if text.startswith("db:"):
            table, sep, key = text[3:].partition(":")
            if not sep or not table or not key:
                raise ValueError(
                    f"Invalid row reference '{text}': expected db:<table>:<key>"
                )
            return cls.row(table, key)
        if text.startswith("file:"):
            text = text[5:]
        if not text:
            raise ValueError("Empty item reference")
        return cls.file(text)

    def __str__(self) -> str:
        if self.item_type is ItemType.FILE:
            return str(self.path)
        return f"db:{self.table}:{self.key}"


# ---------------------------------------------------------------------------
# Change records
# ---------------------------------------------------------------------------


class FileChange(BaseModel):
    """Difference for one relative path.

    Attributes:
        relative_path: POSIX-style path relative to both roots.
        status: Added, modified or deleted.
        source_hash: Fingerprint on the source side, if present.
        destination_hash: Fingerprint on the destination side, if present.
    """

    relative_path: str
    status: ChangeStatus
    source_hash: str | None = None
    destination_hash: str | None = None

    model_config = {"frozen": True}

    @property
    def item_ref(self) -> ItemRef:
        return ItemRef.file(self.relative_path)


class FieldDiff(BaseModel):
    """Differing values of one column."""

    source_value: FieldValue
    destination_value: FieldValue

    model_config = {"frozen": True}


class RowChange(BaseModel):
    """Difference for one row, identified by (table, primary key).

    Attributes:
        table: Logical table name (environment prefix removed).
        primary_key_column: Discovered single-column primary key.
        primary_key_value: Key value rendered as a string.
        status: Added, modified or deleted.
        field_diffs: Per-column differences (modified rows only).
        summary: Short human-readable description.
        details: Full typed row; the source row for added and modified
            changes, the destination row for deleted ones.
    """

    table: str
    primary_key_column: str
    primary_key_value: str
    status: ChangeStatus
    field_diffs: dict[str, FieldDiff] = Field(default_factory=dict)
    summary: str = ""
    details: dict[str, FieldValue] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def item_ref(self) -> ItemRef:
        return ItemRef.row(self.table, self.primary_key_value)

    def detail_text(self, column: str) -> str | None:
        """Return ``details[column]`` as text, or ``None`` when blank/absent."""
        value = self.details.get(column)
        if value is None or value.is_blank:
            return None
        return str(value.to_json())


class ChangeGroup(BaseModel):
    """A logical content unit: an anchor row plus its dependent rows.

    ``members`` maps a table name (or ``"attachments"``) to the member
    rows in discovery order.  The anchor is not repeated in ``members``.
    """

    group_id: str
    anchor: RowChange
    members: dict[str, list[RowChange]] = Field(default_factory=dict)
    title: str
    status: ChangeStatus
    kind: str = ""

    model_config = {"frozen": True}

    @property
    def rows(self) -> list[RowChange]:
        """Anchor followed by every member row."""
        result = [self.anchor]
        for changes in self.members.values():
            result.extend(changes)
        return result


class ScanWarning(BaseModel):
    """A non-fatal problem met while scanning."""

    path: str
    message: str

    model_config = {"frozen": True}


class SkippedTable(BaseModel):
    """A table left out of a database diff."""

    table: str
    reason: str

    model_config = {"frozen": True}


class FileDiffReport(BaseModel):
    """Result of one tree diff pass."""

    changes: list[FileChange] = Field(default_factory=list)
    warnings: list[ScanWarning] = Field(default_factory=list)
    generated_at: str

    model_config = {"frozen": True}


class DatabaseDiffReport(BaseModel):
    """Result of one relational diff pass."""

    changes: list[RowChange] = Field(default_factory=list)
    skipped_tables: list[SkippedTable] = Field(default_factory=list)
    generated_at: str

    model_config = {"frozen": True}


class GroupedChanges(BaseModel):
    """Grouped view over a flat list of row changes."""

    groups: list[ChangeGroup] = Field(default_factory=list)
    standalone: list[RowChange] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def by_kind(self) -> dict[str, list[ChangeGroup]]:
        """Groups bucketed by root kind, in first-seen order."""
        buckets: OrderedDict[str, list[ChangeGroup]] = OrderedDict()
        for group in self.groups:
            buckets.setdefault(group.kind, []).append(group)
        return dict(buckets)


class FileDiffDetail(BaseModel):
    """Side-by-side information for a single path."""

    relative_path: str
    is_binary: bool
    source_exists: bool
    destination_exists: bool
    source_size: int | None = None
    destination_size: int | None = None
    diff: str | None = None

    model_config = {"frozen": True}
