from __future__ import annotations

import sys
from collections.abc import Callable, Hashable, Iterable, Iterator, Mapping, Sequence
from typing import Any, TypeAlias, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


R = TypeVar("R")

CompositeKey: TypeAlias = tuple[Hashable, ...]


class RelationDictionary(Mapping[CompositeKey, Sequence[R]]):
    """Grouping map from a composite key to the related records sharing it.

    Built once per eager-load batch and discarded afterwards. Records that
    share a key keep their input order.

    Example:
        >>> rd = RelationDictionary.build(rows, key=lambda r: (r["region"], r["code"]))
        >>> rd[("eu", 5)]
        [{'id': 10, ...}, {'id': 11, ...}]
    """

    __slots__ = ("_groups",)

    def __init__(self) -> None:
        self._groups: dict[CompositeKey, list[R]] = {}

    @classmethod
    def build(cls, records: Iterable[R], key: Callable[[R], CompositeKey]) -> Self:
        """Group *records* under ``key(record)``.

        Args:
            records: Related records in fetch order.
            key: Extracts the composite key of a record.

        Returns:
            New dictionary containing every record exactly once.
        """
        dictionary = cls()
        for record in records:
            dictionary.add(key(record), record)

        return dictionary

    def add(self, key: CompositeKey, record: R) -> None:
        self._groups.setdefault(key, []).append(record)

    def __getitem__(self, key: CompositeKey) -> Sequence[R]:
        return self._groups[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._groups

    def __iter__(self) -> Iterator[CompositeKey]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._groups!r}>"
