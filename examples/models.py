"""Minimal models for sqla-composite examples."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm

from sqla_composite import HasManyComposite


class Base(orm.DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))

    invoices = HasManyComposite("Invoice", foreign_keys="tenant_id")


class Invoice(Base):
    __tablename__ = "invoices"

    tenant_id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    number: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    total: orm.Mapped[int] = orm.mapped_column(default=0)

    # (tenant_id, number) is the local key, paired with the line's two columns
    lines = HasManyComposite(
        "InvoiceLine",
        foreign_keys=("tenant_id", "invoice_number"),
        order_by=("position",),
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    tenant_id: orm.Mapped[int] = orm.mapped_column()
    invoice_number: orm.Mapped[int] = orm.mapped_column()
    position: orm.Mapped[int] = orm.mapped_column(default=0)
    amount: orm.Mapped[int] = orm.mapped_column(default=0)
    void: orm.Mapped[bool] = orm.mapped_column(default=False)
