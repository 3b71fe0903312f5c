from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class CompositeRelationError(Exception):
    """Base class for structural errors raised while resolving a composite relation."""


class MissingColumnError(CompositeRelationError, LookupError):
    """A declared key column is absent from a record or a mapped model.

    Signals a mismatch between the relationship definition and the data that
    was actually fetched. The whole batch is aborted.
    """

    def __init__(self, column: str, source: Any) -> None:
        self.column = column
        self.source = source
        super().__init__(f"Column {column!r} is not available on {_describe(source)}")


class KeyColumnCountMismatchError(CompositeRelationError, ValueError):
    """Local and foreign key lists differ in length (or are empty)."""

    def __init__(self, local_keys: Sequence[str], foreign_keys: Sequence[str]) -> None:
        self.local_keys = tuple(local_keys)
        self.foreign_keys = tuple(foreign_keys)
        super().__init__(
            f"Expected the same non-zero number of local and foreign key columns, "
            f"got local={self.local_keys!r} foreign={self.foreign_keys!r}"
        )


class TypeComparisonAmbiguityError(CompositeRelationError, TypeError):
    """A non-integer value was offered to a raw integer membership predicate."""

    def __init__(self, column: str, value: Any) -> None:
        self.column = column
        self.value = value
        super().__init__(
            f"Raw integer membership on {column!r} got non-integer value {value!r} "
            f"({type(value).__name__})"
        )


class IdentityCollisionWarning(UserWarning):
    """Two distinct related records share the same identity within one match."""


def _describe(source: Any) -> str:
    if isinstance(source, type):
        return source.__name__

    return f"{type(source).__name__} record"
