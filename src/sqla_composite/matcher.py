from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Hashable, Iterable, Sequence
from typing import Any, Generic, TypeVar

from .datastructures import CompositeKey, RelationDictionary
from .errors import IdentityCollisionWarning
from .tools import set_relation


logger = logging.getLogger(__name__)

P = TypeVar("P")
R = TypeVar("R")


class RelationMatcher(Generic[P, R]):
    """Group fetched related records and assign them onto their parents.

    The matcher knows nothing about columns or SQL: it is composed of three
    extraction callables and a writer, so single-column relations are simply
    keys of length one.

    One matching pass runs ``init_relation`` -> ``build_dictionary`` ->
    ``match`` to completion on the calling thread. The matcher is the only
    writer of the relation slot during that pass. Any exception aborts the
    pass and leaves the parents partially assigned.
    """

    __slots__ = ("identity", "parent_key", "related_key", "writer")

    def __init__(
        self,
        *,
        parent_key: Callable[[P], CompositeKey],
        related_key: Callable[[R], CompositeKey],
        identity: Callable[[R], tuple[Hashable, ...]],
        writer: Callable[[P, str, list[R]], None] = set_relation,
    ) -> None:
        self.parent_key = parent_key
        self.related_key = related_key
        self.identity = identity
        self.writer = writer

    def init_relation(self, parents: Sequence[P], relation: str) -> Sequence[P]:
        """Reset the *relation* slot of every parent to a fresh empty list."""
        for parent in parents:
            self.writer(parent, relation, [])

        return parents

    def build_dictionary(self, results: Iterable[R]) -> RelationDictionary[R]:
        """Group *results* by their foreign-key tuple, keeping fetch order."""
        return RelationDictionary.build(results, self.related_key)

    def match(self, parents: Sequence[P], results: Iterable[R], relation: str) -> Sequence[P]:
        """Assign each parent its deduplicated matches.

        Parents with no matching records keep whatever ``init_relation``
        wrote. Parent keys containing ``None`` never match, as in SQL.

        Returns:
            *parents*, mutated in place.
        """
        dictionary = self.build_dictionary(results)
        matched = 0

        for parent in parents:
            key = self.parent_key(parent)
            if None in key:
                continue

            if (records := dictionary.get(key)) is not None:
                self.writer(parent, relation, self.unique(records))
                matched += 1

        logger.debug(
            "Matched %d of %d parents on %r using %d key groups",
            matched,
            len(parents),
            relation,
            len(dictionary),
        )

        return parents

    def unique(self, records: Iterable[R]) -> list[R]:
        """Drop records whose identity was already seen, first one wins.

        Distinct, unequal records sharing an identity point at a broken
        primary key; they are reported with ``IdentityCollisionWarning``.
        """
        seen: dict[Hashable, R] = {}
        out: list[R] = []

        for record in records:
            identity: Any = self.identity(record)
            if all(part is None for part in identity):
                identity = id(record)

            if (first := seen.get(identity)) is not None:
                if first is not record and first != record:
                    warnings.warn(
                        f"Distinct related records share identity {identity!r}; "
                        f"keeping the first one",
                        IdentityCollisionWarning,
                        stacklevel=2,
                    )
                continue

            seen[identity] = record
            out.append(record)

        return out
