from __future__ import annotations

from collections.abc import Callable, Hashable, MutableMapping, Sequence
from functools import lru_cache
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.orm.attributes import set_committed_value

from .errors import MissingColumnError


T = TypeVar("T", bound=orm.DeclarativeBase)
_R = TypeVar("_R")


def unique_scalars(result: sa.Result[tuple[_R]]) -> Sequence[_R]:
    """Shorthand for ``result.unique().scalars().all()``.

    Example (async)::

        orders = unique_scalars(await session.execute(relation.select(users)))

    Example (sync)::

        orders = unique_scalars(session.execute(relation.select(users)))
    """
    return result.unique().scalars().all()


@lru_cache
def _get_table_name(model: type[T]) -> str:
    """Return the table name for *model*, preferring ``__tablename__`` (cached)."""
    result = getattr(
        model,
        "__tablename__",
        model.__table__.description,
    )
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


@lru_cache
def _get_primary_keys(model: type[T]) -> tuple[str, ...]:
    """Return the attribute keys of *model*'s primary-key columns (cached)."""
    mapper = sa.inspect(model)

    return tuple(mapper.get_property_by_column(column).key for column in mapper.primary_key)


@lru_cache
def _get_column(model: type[T], key: str) -> sa.Column[Any]:
    """Return the column mapped to attribute *key* on *model* (cached)."""
    try:
        column = sa.inspect(model).columns[key]
    except KeyError:
        raise MissingColumnError(key, model) from None

    return column


def get_table_name(model: type[T]) -> str:
    """Get the table name for a SQLAlchemy model.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(model)


def get_primary_keys(model: type[T]) -> tuple[str, ...]:
    """Get the primary-key attribute names of a SQLAlchemy model, in mapper order."""
    return _get_primary_keys(model)


def get_identity_column(model: type[T]) -> str:
    """Return the single primary-key attribute name, or ``""`` for composite keys."""
    keys = _get_primary_keys(model)

    return keys[0] if len(keys) == 1 else ""


def get_column(model: type[T], key: str) -> sa.Column[Any]:
    """Get the column behind mapped attribute *key*.

    Raises:
        MissingColumnError: If *model* maps no column under *key*.
    """
    return _get_column(model, key)


def qualify_column(model: type[T], key: str) -> str:
    """Return ``"table.column"`` for mapped attribute *key* on *model*."""
    return f"{get_table_name(model)}.{get_column(model, key).name}"


def get_identity(record: Any, keys: Sequence[str]) -> tuple[Hashable, ...]:
    """Return the identity of a related record.

    Mapped instances use their mapper's primary key; other records (rows,
    mappings) are read through *keys*.
    """
    state = sa.inspect(record, raiseerr=False)
    if isinstance(state, orm.InstanceState):
        return tuple(state.mapper.primary_key_from_instance(record))

    from .keys import extract_key

    return extract_key(record, keys)


def set_relation(parent: Any, relation: str, value: list[Any]) -> None:
    """Write *value* into the *relation* slot of *parent*.

    Instrumented attributes are populated as committed state so the parent is
    not marked dirty; mutable mappings are written by item and anything else
    by attribute.
    """
    if isinstance(parent, MutableMapping):
        parent[relation] = value
        return

    state = sa.inspect(parent, raiseerr=False)
    if isinstance(state, orm.InstanceState) and relation in state.mapper.attrs:
        set_committed_value(parent, relation, value)
        return

    setattr(parent, relation, value)


def add_conditions(
    *conditions: sa.ColumnExpressionArgument[bool],
) -> Callable[[sa.Select[tuple[T]]], sa.Select[tuple[T]]]:
    """Create a function that adds WHERE conditions to a select query.

    Use it as the ``conditions`` argument of a composite relation to narrow
    the related rows fetched for every batch.

    Example:
        >>> class Warehouse(Base):
        ...     shipments = HasManyComposite(
        ...         "Shipment",
        ...         foreign_keys=("warehouse_region", "warehouse_code"),
        ...         local_keys=("region", "code"),
        ...         conditions=add_conditions(Shipment.cancelled.is_(False)),
        ...     )
    """

    def _add(query: sa.Select[tuple[T]]) -> sa.Select[tuple[T]]:
        return query.where(*conditions)

    return _add


def composite_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for the model lookups."""
    return {
        fn.__name__: fn.cache_info() for fn in (_get_table_name, _get_primary_keys, _get_column)
    }


def composite_cache_clear() -> None:
    """Clear the model lookup LRU caches."""
    for fn in (_get_table_name, _get_primary_keys, _get_column):
        fn.cache_clear()
