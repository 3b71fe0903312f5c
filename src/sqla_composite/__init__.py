"""Composite-key one-to-many relationships for SQLAlchemy.

sqla_composite loads one-to-many relations whose key spans several columns.
Declare a ``HasManyComposite`` on the parent model, then either call
``relation.eager_load(session, parents)`` or, after
``init_registry(get_relations(Base))`` at startup, load relations by name
with ``composite_load(session, parents, "shipments")``. Children for a whole
batch of parents are fetched in one query, grouped by their key tuple and
attached to each parent without duplicates.
"""

from ._version import __version__, __version_tuple__
from .datastructures import CompositeKey, RelationDictionary
from .errors import (
    CompositeRelationError,
    IdentityCollisionWarning,
    KeyColumnCountMismatchError,
    MissingColumnError,
    TypeComparisonAmbiguityError,
)
from .keys import KeySelector, MembershipMethod, choose_membership_method, extract_key
from .matcher import RelationMatcher
from .registry import (
    Registry,
    composite_load,
    composite_load_async,
    get_relations,
    init_registry,
)
from .relation import HasManyComposite
from .tools import (
    add_conditions,
    composite_cache_clear,
    composite_cache_info,
    get_primary_keys,
    get_table_name,
    qualify_column,
    unique_scalars,
)


__all__ = (
    "CompositeKey",
    "CompositeRelationError",
    "HasManyComposite",
    "IdentityCollisionWarning",
    "KeyColumnCountMismatchError",
    "KeySelector",
    "MembershipMethod",
    "MissingColumnError",
    "Registry",
    "RelationDictionary",
    "RelationMatcher",
    "TypeComparisonAmbiguityError",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "choose_membership_method",
    "composite_cache_clear",
    "composite_cache_info",
    "composite_load",
    "composite_load_async",
    "extract_key",
    "get_primary_keys",
    "get_relations",
    "get_table_name",
    "init_registry",
    "qualify_column",
    "unique_scalars",
)
