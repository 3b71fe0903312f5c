"""Basic sqla-composite usage examples.

Demonstrates startup registration, batch eager loading, loading by name,
single-parent fetches and inspecting the generated query.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from sqla_composite import (
    HasManyComposite,
    add_conditions,
    composite_load_async,
    get_relations,
    init_registry,
    unique_scalars,
)

from .models import Base, Invoice, InvoiceLine, Tenant


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Resolves related models and checks every key column exists
    init_registry(get_relations(Base))


# ── 2. Batch eager loading ───────────────────────────────────────────


async def get_invoices_with_lines(session: AsyncSession) -> list[Invoice]:
    invoices = list(unique_scalars(await session.execute(sa.select(Invoice))))
    # one query: invoice_lines.tenant_id IN (...) AND invoice_lines.invoice_number IN (...)
    await Invoice.lines.eager_load_async(session, invoices)
    return invoices


# ── 3. Loading by name ───────────────────────────────────────────────


async def get_tenants_with_invoices(session: AsyncSession) -> list[Tenant]:
    tenants = list(unique_scalars(await session.execute(sa.select(Tenant))))
    await composite_load_async(session, tenants, "invoices")
    return tenants


# ── 4. A single parent ───────────────────────────────────────────────


async def get_lines(session: AsyncSession, invoice: Invoice) -> list[InvoiceLine]:
    return await Invoice.lines.get_results_async(session, invoice)


# ── 5. Conditions and row-value predicates ───────────────────────────

# Declared outside the class body for the example; bind() names the slot.
billable_lines = HasManyComposite(
    InvoiceLine,
    foreign_keys=("tenant_id", "invoice_number"),
    conditions=add_conditions(InvoiceLine.void.is_(False)),
    predicate="tuple",
).bind(Invoice, "billable_lines")


async def get_billable(session: AsyncSession) -> list[Invoice]:
    invoices = list(unique_scalars(await session.execute(sa.select(Invoice))))
    await billable_lines.eager_load_async(session, invoices)
    return invoices


# ── 6. Inspecting the batch query ────────────────────────────────────


def show_query(invoices: list[Invoice]) -> str:
    return str(Invoice.lines.select(invoices).compile(compile_kwargs={"literal_binds": True}))
