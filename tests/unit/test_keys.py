from __future__ import annotations

from types import SimpleNamespace

import pytest
import sqlalchemy as sa

from sqla_composite.errors import KeyColumnCountMismatchError, MissingColumnError
from sqla_composite.keys import (
    KeySelector,
    MembershipMethod,
    choose_membership_method,
    extract_key,
    read_attribute,
)

from ..models import Ledger, User, Warehouse


class _IntegerId(sa.TypeDecorator[int]):
    impl = sa.Integer
    cache_ok = True


class TestChooseMembershipMethod:
    def test_identity_integer_is_raw(self) -> None:
        assert choose_membership_method("id", "id", "integer") is MembershipMethod.RAW_INTEGER

    def test_non_identity_string_is_generic(self) -> None:
        assert choose_membership_method("id", "email", "string") is MembershipMethod.GENERIC

    def test_identity_with_string_type_is_generic(self) -> None:
        assert choose_membership_method("id", "id", sa.String(36)) is MembershipMethod.GENERIC

    def test_non_identity_integer_is_generic(self) -> None:
        assert choose_membership_method("id", "author_id", sa.Integer()) is MembershipMethod.GENERIC

    def test_qualified_candidate_uses_last_segment(self) -> None:
        assert choose_membership_method("id", "users.id", "int") is MembershipMethod.RAW_INTEGER

    def test_empty_identity_never_raw(self) -> None:
        assert choose_membership_method("", "", "int") is MembershipMethod.GENERIC

    @pytest.mark.parametrize(
        "type_",
        ["int", "INTEGER", int, sa.Integer, sa.BigInteger(), sa.SmallInteger, _IntegerId()],
    )
    def test_integer_kinds(self, type_: object) -> None:
        assert choose_membership_method("id", "id", type_) is MembershipMethod.RAW_INTEGER

    @pytest.mark.parametrize("type_", ["str", bool, str, sa.Boolean(), sa.Numeric(), None])
    def test_non_integer_kinds(self, type_: object) -> None:
        assert choose_membership_method("id", "id", type_) is MembershipMethod.GENERIC


class TestReadAttribute:
    def test_object_attribute(self) -> None:
        assert read_attribute(SimpleNamespace(code=5), "code") == 5

    def test_mapping_item(self) -> None:
        assert read_attribute({"code": 5}, "code") == 5

    def test_none_is_a_value(self) -> None:
        assert read_attribute({"code": None}, "code") is None

    def test_missing_on_object(self) -> None:
        with pytest.raises(MissingColumnError) as exc_info:
            read_attribute(SimpleNamespace(code=5), "region")

        assert exc_info.value.column == "region"

    def test_missing_on_mapping(self) -> None:
        with pytest.raises(MissingColumnError):
            read_attribute({"code": 5}, "region")

    def test_mapped_instance(self) -> None:
        assert read_attribute(Warehouse(code=5, region="a"), "region") == "a"


class TestExtractKey:
    def test_ordered_tuple(self) -> None:
        record = {"warehouse_region": "a", "warehouse_code": 5}
        assert extract_key(record, ("warehouse_code", "warehouse_region")) == (5, "a")

    def test_single_column_is_one_tuple(self) -> None:
        assert extract_key({"author_id": 1}, ("author_id",)) == (1,)

    def test_types_are_kept(self) -> None:
        assert extract_key({"a": 5}, ("a",)) != extract_key({"a": "5"}, ("a",))

    def test_any_missing_column_fails(self) -> None:
        with pytest.raises(MissingColumnError):
            extract_key({"warehouse_code": 5}, ("warehouse_code", "warehouse_region"))


class TestKeySelector:
    def test_count_mismatch(self) -> None:
        with pytest.raises(KeyColumnCountMismatchError) as exc_info:
            KeySelector(local_keys=("code", "region"), foreign_keys=("warehouse_code",))

        assert exc_info.value.local_keys == ("code", "region")
        assert exc_info.value.foreign_keys == ("warehouse_code",)

    def test_empty_keys(self) -> None:
        with pytest.raises(KeyColumnCountMismatchError):
            KeySelector(local_keys=(), foreign_keys=())

    def test_local_and_foreign_key(self) -> None:
        selector = KeySelector(
            local_keys=("code", "region"),
            foreign_keys=("warehouse_code", "warehouse_region"),
        )
        parent = SimpleNamespace(id=1, code=5, region="a")
        child = {"id": 10, "warehouse_code": 5, "warehouse_region": "a"}

        assert selector.local_key(parent) == selector.foreign_key(child) == (5, "a")

    def test_membership_identity_column(self) -> None:
        selector = KeySelector(local_keys=("id",), foreign_keys=("author_id",))
        assert selector.membership_methods(User) == (MembershipMethod.RAW_INTEGER,)

    def test_membership_non_identity_columns(self) -> None:
        selector = KeySelector(
            local_keys=("code", "region"),
            foreign_keys=("warehouse_code", "warehouse_region"),
        )
        assert selector.membership_methods(Warehouse) == (
            MembershipMethod.GENERIC,
            MembershipMethod.GENERIC,
        )

    def test_membership_composite_primary_key(self) -> None:
        selector = KeySelector(
            local_keys=("tenant_id", "number"),
            foreign_keys=("tenant_id", "ledger_number"),
        )
        assert selector.membership_methods(Ledger) == (
            MembershipMethod.GENERIC,
            MembershipMethod.GENERIC,
        )

    def test_membership_unknown_column(self) -> None:
        selector = KeySelector(local_keys=("nope",), foreign_keys=("author_id",))
        with pytest.raises(MissingColumnError):
            selector.membership_methods(User)
