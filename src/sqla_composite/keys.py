from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

import sqlalchemy as sa
from sqlalchemy import orm

from .datastructures import CompositeKey
from .errors import KeyColumnCountMismatchError, MissingColumnError
from .tools import get_column, get_identity_column


INTEGER_KEY_TYPES: Final[frozenset[str]] = frozenset({"int", "integer"})

_MISSING: Final = object()


class MembershipMethod(str, enum.Enum):
    """How a batch ``IN`` predicate is rendered for one key column."""

    RAW_INTEGER = "raw_integer"
    GENERIC = "generic"


def _is_integer_type(type_: Any) -> bool:
    if isinstance(type_, str):
        return type_.lower() in INTEGER_KEY_TYPES

    if isinstance(type_, sa.TypeDecorator):
        return _is_integer_type(type_.impl_instance)

    if isinstance(type_, sa.types.TypeEngine):
        return isinstance(type_, sa.Integer)

    if isinstance(type_, type):
        if issubclass(type_, sa.TypeDecorator):
            return _is_integer_type(type_.impl)
        if issubclass(type_, sa.types.TypeEngine):
            return issubclass(type_, sa.Integer)

        return issubclass(type_, int) and not issubclass(type_, bool)

    return False


def choose_membership_method(
    identity_column: str,
    candidate_column: str,
    candidate_type: Any,
) -> MembershipMethod:
    """Pick the membership predicate flavour for a key column.

    Raw integer membership skips per-value binding and is only safe when the
    values are integral identities, so it is chosen only when the candidate is
    the identity column *and* its declared type is an integer kind.

    Args:
        identity_column: Name of the model's identity (primary key) column.
        candidate_column: Column being filtered, optionally table-qualified.
        candidate_type: Declared type: ``"int"``/``"integer"``, ``int``, or a
            SQLAlchemy type class or instance.

    Returns:
        ``MembershipMethod.RAW_INTEGER`` or ``MembershipMethod.GENERIC``.
    """
    column = candidate_column.rpartition(".")[2]
    if identity_column and column == identity_column and _is_integer_type(candidate_type):
        return MembershipMethod.RAW_INTEGER

    return MembershipMethod.GENERIC


def read_attribute(record: Any, column: str) -> Any:
    """Read *column* off a mapped instance, ``sa.Row`` or mapping."""
    if isinstance(record, sa.Row):
        record = record._mapping

    if isinstance(record, Mapping):
        value = record.get(column, _MISSING)
    else:
        value = getattr(record, column, _MISSING)

    if value is _MISSING:
        raise MissingColumnError(column, record)

    return value


def extract_key(record: Any, columns: Sequence[str]) -> CompositeKey:
    """Return the ordered tuple of *columns* read from *record*."""
    return tuple(read_attribute(record, column) for column in columns)


@dataclass(frozen=True, slots=True)
class KeySelector:
    """Positional pairing of parent-side local keys and related-side foreign keys."""

    local_keys: tuple[str, ...]
    foreign_keys: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.local_keys or len(self.local_keys) != len(self.foreign_keys):
            raise KeyColumnCountMismatchError(self.local_keys, self.foreign_keys)

    def local_key(self, parent: Any) -> CompositeKey:
        return extract_key(parent, self.local_keys)

    def foreign_key(self, record: Any) -> CompositeKey:
        return extract_key(record, self.foreign_keys)

    def membership_methods(
        self, parent_model: type[orm.DeclarativeBase]
    ) -> tuple[MembershipMethod, ...]:
        """Choose a membership method for every local-key column of *parent_model*.

        The parent's single-column primary key is the identity column; models
        with a composite primary key have none, so every column is generic.
        """
        identity = get_identity_column(parent_model)

        return tuple(
            choose_membership_method(identity, key, get_column(parent_model, key).type)
            for key in self.local_keys
        )
