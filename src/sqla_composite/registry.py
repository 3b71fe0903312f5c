from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, final

from sqlalchemy import orm

from .relation import HasManyComposite


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

RelationMap = Mapping[type[orm.DeclarativeBase], Mapping[str, HasManyComposite[Any, Any]]]


@final
class Registry:
    """Singleton holding the composite relations declared on every mapped model.

    Populated once at startup with :func:`init_registry` and read-only
    afterwards, so that relations can be loaded by name.
    """

    __instance: ClassVar[Registry | None] = None
    _relations: RelationMap

    def __new__(cls, relations: RelationMap | None = None) -> Registry:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if relations is not None:
                instance.set_relations(relations)

            cls.__instance = instance

        if not getattr(cls.__instance, "_relations", None):
            raise RuntimeError("Registry is not initialized or empty")

        return cls.__instance

    def get(self, model: type[orm.DeclarativeBase]) -> Mapping[str, HasManyComposite[Any, Any]]:
        """Composite relations of *model*, empty when it declares none."""
        return self.relations.get(model, MappingProxyType({}))

    def __getitem__(
        self, key: tuple[type[orm.DeclarativeBase], str]
    ) -> HasManyComposite[Any, Any]:
        """Look up ``(model, name)``, raising ``KeyError`` listing what is available."""
        model, name = key
        relations = self.get(model)
        try:
            return relations[name]
        except KeyError:
            raise KeyError(
                f"No composite relation {name!r} on {model.__name__}. "
                f"Available: {sorted(relations)}"
            ) from None

    @property
    def relations(self) -> RelationMap:
        """The underlying model-to-relations mapping (read-only)."""
        return self._relations

    def set_relations(self, relations: RelationMap) -> None:
        self._relations = relations

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._relations = {}
        cls.__instance = None


def get_relations(base: type[orm.DeclarativeBase]) -> RelationMap:
    """Collect composite relations declared on the models of a declarative base.

    Relations declared on a mapped superclass are listed again under each of
    its mapped subclasses.

    Raises:
        AssertionError: If base is not a direct subclass of orm.DeclarativeBase.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    out: dict[type[orm.DeclarativeBase], Mapping[str, HasManyComposite[Any, Any]]] = {}
    for mapper in base.registry.mappers:
        found: dict[str, HasManyComposite[Any, Any]] = {}
        for klass in reversed(mapper.class_.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, HasManyComposite):
                    found[name] = value

        if found:
            out[mapper.class_] = MappingProxyType(found)

    return MappingProxyType(out)


def init_registry(relations: RelationMap) -> None:
    """Configure every relation and install the global :class:`Registry`.

    Misdeclared relations fail here, at startup, rather than on first load.

    Example:
        >>> from myapp.models import Base
        >>> init_registry(get_relations(Base))
    """
    for model_relations in relations.values():
        for relation in model_relations.values():
            relation.configure()

    Registry.reset()
    Registry(relations)


def _lookup(
    parents: Sequence[orm.DeclarativeBase], names: Sequence[str], registry: Registry | None
) -> list[HasManyComposite[Any, Any]]:
    if not parents:
        return []

    registry = registry or Registry()
    model = type(parents[0])

    return [registry[model, name] for name in names]


def composite_load(
    session: orm.Session,
    parents: Sequence[orm.DeclarativeBase],
    *relations: str,
    registry: Registry | None = None,
) -> Sequence[orm.DeclarativeBase]:
    """Eager-load the named composite relations onto a batch of same-model *parents*.

    One query is issued per relation.

    Example:
        >>> warehouses = session.scalars(sa.select(Warehouse)).all()
        >>> composite_load(session, warehouses, "shipments", "audits")
    """
    for relation in _lookup(parents, relations, registry):
        relation.eager_load(session, parents)

    return parents


async def composite_load_async(
    session: AsyncSession,
    parents: Sequence[orm.DeclarativeBase],
    *relations: str,
    registry: Registry | None = None,
) -> Sequence[orm.DeclarativeBase]:
    """Async counterpart of :func:`composite_load`."""
    for relation in _lookup(parents, relations, registry):
        await relation.eager_load_async(session, parents)

    return parents
