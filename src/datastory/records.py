"""
Record types and entities.

A record type is an SQLAlchemy ``Table``. Its metadata answers every
question the core asks about a kind of record:

- identity    : the single primary-key column
- relationship: a column with exactly one ForeignKey; target = referenced table
- external id : a column declared with ``info={"external_id": True}``
- setup       : a table declared with ``info={"setup": True}``
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, Mapping, Optional, Union

from sqlalchemy.sql.schema import Table

from .errors import DatastoryError

RecordType = Table
TypeKey = str


class InvalidRecordType(DatastoryError):
    """The table cannot be used as a record type (no single-column primary key)."""
    pass


class InvalidRelationshipField(DatastoryError):
    """The field is not a relationship field of the record type."""

    def __init__(self, record_type: Union[RecordType, str], field: str, reason: str = "") -> None:
        self.record_type = record_type_key(record_type)
        self.field = field
        message = f"{self.record_type}.{field} is not a relationship field"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Record type metadata
# ---------------------------------------------------------------------------


def record_type_key(record_type: Union[RecordType, str]) -> TypeKey:
    """Stable token for a record type (the table's schema-qualified name)."""
    if isinstance(record_type, Table):
        return record_type.fullname
    return str(record_type)


def primary_key_name(record_type: RecordType) -> str:
    columns = list(record_type.primary_key.columns)
    if len(columns) != 1:
        raise InvalidRecordType(
            f"{record_type.fullname} must have exactly one primary-key column, "
            f"found {[c.name for c in columns]}"
        )
    return columns[0].name


def relationship_target(record_type: RecordType, field: str) -> RecordType:
    """
    Return the record type a relationship field points at.

    Raises InvalidRelationshipField when the column does not exist or does
    not carry exactly one foreign key.
    """
    if field not in record_type.c:
        raise InvalidRelationshipField(record_type, field, "no such column")

    foreign_keys = list(record_type.c[field].foreign_keys)
    if len(foreign_keys) != 1:
        raise InvalidRelationshipField(
            record_type, field, f"expected one foreign key, found {len(foreign_keys)}"
        )
    return foreign_keys[0].column.table


def is_external_id(record_type: RecordType, field: str) -> bool:
    if field not in record_type.c:
        return False
    return bool(record_type.c[field].info.get("external_id", False))


def is_setup_type(record_type: RecordType) -> bool:
    return bool(record_type.info.get("setup", False))


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


class Entity:
    """
    Mutable field/value container of one record type.

    The identity is the value held under the primary-key column; it is unset
    (None) until the record is persisted or mocked.
    """

    __slots__ = ("record_type", "_values", "_pk")

    def __init__(self, record_type: RecordType, values: Optional[Mapping[str, Any]] = None) -> None:
        self.record_type = record_type
        self._pk = primary_key_name(record_type)
        self._values: Dict[str, Any] = {}
        for field, value in (values or {}).items():
            self.set(field, value)

    @property
    def type_key(self) -> TypeKey:
        return record_type_key(self.record_type)

    @property
    def identity(self) -> Any:
        return self._values.get(self._pk)

    @identity.setter
    def identity(self, value: Any) -> None:
        self._values[self._pk] = value

    @property
    def identity_field(self) -> str:
        return self._pk

    def set(self, field: str, value: Any) -> None:
        if field not in self.record_type.c:
            raise KeyError(f"{self.type_key} has no field {field!r}")
        self._values[field] = value

    def get(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def __getitem__(self, field: str) -> Any:
        return self._values[field]

    def __contains__(self, field: object) -> bool:
        return field in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def as_dict(self) -> Dict[str, Any]:
        """Shallow copy of the assigned values (identity included when set)."""
        return dict(self._values)

    def restore(self, values: Mapping[str, Any]) -> None:
        """Replace every assigned value with ``values`` (an earlier ``as_dict``)."""
        self._values = dict(values)

    def __repr__(self) -> str:
        return f"Entity({self.type_key}, {self._values!r})"
