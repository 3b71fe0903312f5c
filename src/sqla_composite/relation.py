from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, Final, Generic, Literal, TypeVar, overload

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.orm import exc as orm_exc

from .datastructures import CompositeKey, RelationDictionary
from .errors import TypeComparisonAmbiguityError
from .keys import KeySelector, MembershipMethod
from .matcher import RelationMatcher
from .tools import (
    get_column,
    get_identity,
    get_primary_keys,
    qualify_column,
    set_relation,
    unique_scalars,
)


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=orm.DeclarativeBase)
R = TypeVar("R", bound=orm.DeclarativeBase)

PredicateMode = Literal["columns", "tuple"]
PREDICATE_MODES: Final[frozenset[str]] = frozenset({"columns", "tuple"})


def _as_keys(keys: str | Sequence[str]) -> tuple[str, ...]:
    return (keys,) if isinstance(keys, str) else tuple(keys)


def _distinct(values: Iterable[Any]) -> list[Any]:
    return list(dict.fromkeys(values))


class HasManyComposite(Generic[P, R]):
    """One-to-many relationship matched on a (possibly composite) key.

    Declare it as a plain class attribute of the parent model; the attribute
    name becomes the relation slot filled on each parent::

        class Warehouse(Base):
            __tablename__ = "warehouses"

            id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
            region: orm.Mapped[str] = orm.mapped_column(sa.String(10))
            code: orm.Mapped[int] = orm.mapped_column()

            shipments = HasManyComposite(
                "Shipment",
                foreign_keys=("warehouse_region", "warehouse_code"),
                local_keys=("region", "code"),
            )

    Local keys pair positionally with foreign keys. When ``local_keys`` is
    omitted the parent's primary key is used, and the pairing is checked
    once the parent is mapped (see :meth:`configure`).

    ``predicate`` picks the shape of the batch ``WHERE``. ``"columns"`` (the
    default) ANDs one ``IN`` per key column and runs on any backend, but it
    fetches every cross combination of the batch's key parts: parents
    ``(5, "a")`` and ``(6, "b")`` also pull rows keyed ``(5, "b")`` and
    ``(6, "a")``, which are then dropped in memory. Mixed batches of
    composite keys should use ``"tuple"``, a row-value
    ``(a, b) IN ((..), ..)`` supported by PostgreSQL, MySQL and SQLite 3.15+.

    ``Warehouse.shipments`` returns this definition. ``warehouse.shipments``
    returns the loaded list, lazily loading it through the instance's sync
    ``Session`` on first access. Instances owned by an ``AsyncSession`` must
    be loaded with :meth:`eager_load_async` or :meth:`get_results_async`.
    """

    __slots__ = (
        "_configured",
        "_foreign_keys",
        "_local_keys",
        "_matcher",
        "_parent",
        "_related",
        "_selector",
        "conditions",
        "name",
        "order_by",
        "predicate",
    )

    def __init__(
        self,
        related: type[R] | str,
        foreign_keys: str | Sequence[str],
        local_keys: str | Sequence[str] | None = None,
        *,
        order_by: tuple[str, ...] | None = None,
        conditions: Callable[[sa.Select[tuple[R]]], sa.Select[tuple[R]]] | None = None,
        predicate: PredicateMode = "columns",
    ) -> None:
        if predicate not in PREDICATE_MODES:
            raise ValueError(
                f"Unknown predicate mode {predicate!r}, expected one of {sorted(PREDICATE_MODES)}"
            )

        self._related = related
        self._foreign_keys = _as_keys(foreign_keys)
        self._local_keys = None if local_keys is None else _as_keys(local_keys)
        self._parent: type[P] | None = None
        self._configured = False
        self._matcher: RelationMatcher[P, R] | None = None
        self.name = ""
        self.order_by = order_by
        self.conditions = conditions
        self.predicate = predicate

        # explicit keys are checked right away
        self._selector = (
            None
            if self._local_keys is None
            else KeySelector(local_keys=self._local_keys, foreign_keys=self._foreign_keys)
        )

    def __set_name__(self, owner: type[P], name: str) -> None:
        self.bind(owner, name)

    @overload
    def __get__(self, instance: None, owner: type[P] | None = None) -> HasManyComposite[P, R]: ...

    @overload
    def __get__(self, instance: P, owner: type[P] | None = None) -> list[R]: ...

    def __get__(
        self, instance: P | None, owner: type[P] | None = None
    ) -> HasManyComposite[P, R] | list[R]:
        if instance is None:
            return self

        # Only reached while the slot is unset: the written list shadows this
        # non-data descriptor.
        if sa.inspect(instance).async_session is not None:
            raise sa.exc.InvalidRequestError(
                f"Composite relation {self.name!r} of a {type(instance).__name__} owned by an "
                f"AsyncSession cannot be lazy loaded; use eager_load_async() or "
                f"get_results_async() first"
            )

        session = orm.object_session(instance)
        if session is None:
            raise orm_exc.DetachedInstanceError(
                f"Parent {type(instance).__name__} instance is not bound to a Session; "
                f"composite relation {self.name!r} cannot be loaded"
            )

        results = self.get_results(session, instance)
        set_relation(instance, self.name, results)

        return results

    def __repr__(self) -> str:
        parent = self._parent.__name__ if self._parent is not None else "?"
        related = self._related if isinstance(self._related, str) else self._related.__name__

        return f"<{type(self).__name__} {parent}.{self.name or '?'} -> {related}{self._foreign_keys!r}>"

    def bind(self, owner: type[P], name: str) -> HasManyComposite[P, R]:
        """Attach this definition to its parent model under relation *name*."""
        self._parent = owner
        self.name = name

        return self

    @property
    def parent_model(self) -> type[P]:
        if self._parent is None:
            raise RuntimeError(f"{self!r} is not bound to a parent model")

        return self._parent

    @property
    def related_model(self) -> type[R]:
        if isinstance(self._related, str):
            self._related = self._resolve_related(self._related)

        return self._related

    @property
    def key_selector(self) -> KeySelector:
        if self._selector is None:
            self._selector = KeySelector(
                local_keys=get_primary_keys(self.parent_model),
                foreign_keys=self._foreign_keys,
            )

        return self._selector

    @property
    def matcher(self) -> RelationMatcher[P, R]:
        if self._matcher is None:
            selector = self.key_selector
            self._matcher = RelationMatcher(
                parent_key=selector.local_key,
                related_key=selector.foreign_key,
                identity=self._identity,
            )

        return self._matcher

    def configure(self) -> HasManyComposite[P, R]:
        """Resolve the related model and check every key column is mapped.

        Raises:
            KeyColumnCountMismatchError: If local and foreign keys don't pair up.
            MissingColumnError: If a key attribute maps no column.
        """
        if self._configured:
            return self

        selector = self.key_selector
        for key in selector.local_keys:
            get_column(self.parent_model, key)
        for key in selector.foreign_keys:
            get_column(self.related_model, key)

        self._configured = True

        return self

    def _resolve_related(self, name: str) -> type[R]:
        found = [
            mapper.class_
            for mapper in self.parent_model.registry.mappers
            if mapper.class_.__name__ == name
        ]
        if len(found) != 1:
            raise ValueError(
                f"Cannot resolve related model {name!r} for {self!r}: "
                f"{len(found)} mapped classes match"
            )

        return found[0]

    def _slot(self, relation: str | None) -> str:
        """Name of the slot written on parents; unbound definitions have none."""
        if relation:
            return relation
        if self._parent is None:
            raise RuntimeError(f"{self!r} is not bound to a parent model")

        return self.name

    def _identity(self, record: R) -> tuple[Hashable, ...]:
        return get_identity(record, get_primary_keys(self.related_model))

    def parent_key(self, parent: P) -> CompositeKey:
        """Local-key tuple of *parent*."""
        return self.key_selector.local_key(parent)

    def foreign_key(self, record: R) -> CompositeKey:
        """Foreign-key tuple of a related *record*."""
        return self.key_selector.foreign_key(record)

    def qualified_parent_key_names(self) -> list[str]:
        return [qualify_column(self.parent_model, key) for key in self.key_selector.local_keys]

    def qualified_foreign_key_names(self) -> list[str]:
        return [
            qualify_column(self.related_model, key) for key in self.key_selector.foreign_keys
        ]

    def membership_methods(self) -> tuple[MembershipMethod, ...]:
        return self.key_selector.membership_methods(self.parent_model)

    def eager_constraints(self, parents: Sequence[P]) -> sa.ColumnElement[bool]:
        """Build the batch predicate selecting related rows for *parents*."""
        return self._constraints(self._batch_keys(parents))

    def select(self, parents: Sequence[P]) -> sa.Select[tuple[R]]:
        """Build the single ``SELECT`` fetching related rows for *parents*."""
        return self._select_keys(self._batch_keys(parents))

    def init_relation(self, parents: Sequence[P], relation: str | None = None) -> Sequence[P]:
        return self.matcher.init_relation(parents, self._slot(relation))

    def build_dictionary(self, results: Iterable[R]) -> RelationDictionary[R]:
        return self.matcher.build_dictionary(results)

    def match(
        self, parents: Sequence[P], results: Iterable[R], relation: str | None = None
    ) -> Sequence[P]:
        return self.matcher.match(parents, results, self._slot(relation))

    def eager_load(self, session: orm.Session, parents: Sequence[P]) -> Sequence[P]:
        """Load this relation for a whole batch of *parents* in one query.

        Every parent ends with a list in its slot, empty when nothing matched.

        Returns:
            *parents*, with their relation slots populated.
        """
        self.init_relation(parents)
        if (keys := self._batch_keys(parents)) is None:
            return parents

        results = unique_scalars(session.execute(self._select_keys(keys)))
        logger.debug("Fetched %d %s rows for %r", len(results), self.related_model.__name__, self)

        return self.match(parents, results)

    async def eager_load_async(self, session: AsyncSession, parents: Sequence[P]) -> Sequence[P]:
        """Async counterpart of :meth:`eager_load`."""
        self.init_relation(parents)
        if (keys := self._batch_keys(parents)) is None:
            return parents

        results = unique_scalars(await session.execute(self._select_keys(keys)))
        logger.debug("Fetched %d %s rows for %r", len(results), self.related_model.__name__, self)

        return self.match(parents, results)

    def get_results(self, session: orm.Session, parent: P) -> list[R]:
        """Fetch the related records of a single *parent* without touching its slot."""
        key = self.parent_key(parent)
        if None in key:
            return []

        results = unique_scalars(session.execute(self._select_keys([key])))

        return self._group_for(key, results)

    async def get_results_async(self, session: AsyncSession, parent: P) -> list[R]:
        """Async counterpart of :meth:`get_results`."""
        key = self.parent_key(parent)
        if None in key:
            return []

        results = unique_scalars(await session.execute(self._select_keys([key])))

        return self._group_for(key, results)

    def _group_for(self, key: CompositeKey, results: Iterable[R]) -> list[R]:
        return self.matcher.unique(self.build_dictionary(results).get(key, ()))

    def _batch_keys(self, parents: Sequence[P]) -> list[CompositeKey] | None:
        """``None``-free parent keys in first-seen order, or ``None``.

        Duplicates are kept here and collapsed by :meth:`_constraints` after the
        value checks, since ``True`` and ``1`` hash alike.
        """
        keys = [key for key in map(self.parent_key, parents) if None not in key]
        if not keys:
            logger.debug("No usable parent keys for %r, skipping fetch", self)
            return None

        return keys

    def _select_keys(self, keys: Sequence[CompositeKey] | None) -> sa.Select[tuple[R]]:
        related = self.related_model
        query = sa.select(related).where(self._constraints(keys))
        if self.conditions is not None:
            query = self.conditions(query)

        return _apply_order_by(query, related, self.order_by)

    def _constraints(self, keys: Sequence[CompositeKey] | None) -> sa.ColumnElement[bool]:
        if not keys:
            return sa.false()

        self.configure()
        columns = [get_column(self.related_model, key) for key in self.key_selector.foreign_keys]
        methods = self.membership_methods()
        for position, method in enumerate(methods):
            if method is MembershipMethod.RAW_INTEGER:
                _check_integers(columns[position], (key[position] for key in keys))

        if self.predicate == "tuple":
            return sa.tuple_(*columns).in_(_distinct(keys))

        return sa.and_(
            *(
                _membership(column, _distinct(key[position] for key in keys), method)
                for position, (column, method) in enumerate(zip(columns, methods))
            )
        )


def _check_integers(column: sa.Column[Any], values: Iterable[Any]) -> None:
    for value in values:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeComparisonAmbiguityError(f"{column.table.name}.{column.name}", value)


def _membership(
    column: sa.Column[Any], values: list[Any], method: MembershipMethod
) -> sa.ColumnElement[bool]:
    """``column IN (...)``; raw integer lists are rendered inline, not bound per value."""
    if method is MembershipMethod.RAW_INTEGER:
        return column.in_(
            sa.bindparam(
                f"{column.name}_keys",
                values,
                type_=sa.Integer(),
                expanding=True,
                literal_execute=True,
                unique=True,
            )
        )

    return column.in_(values)


def _apply_order_by(
    query: sa.Select[tuple[R]],
    related: type[R],
    order_by: tuple[str, ...] | None = None,
) -> sa.Select[tuple[R]]:
    """Apply ORDER BY to the batch query, defaulting to primary key ascending."""
    ob = (
        (getattr(related, by) for by in order_by)
        if order_by
        else iter(related.__table__.primary_key)
    )

    return query.order_by(*ob)
