"""Dependency-ordered chunk writer.

Writes one resolved chunk inside the caller's transaction, parents before
children: users, clients, sales, invoices, then both status histories. Bulk
inserts do not hand back generated ids, so clients and sales are re-queried
by natural key inside the same transaction before their dependents are built.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from .materializer import (
    UnresolvedClientError,
    bind_sale_ids,
    build_client_rows,
    build_sale_row,
    build_sale_status_rows,
    build_user_rows,
    collect_invoices,
    resolve_client_ids,
)
from .resolver import ChunkStaging
from .results import ChunkCounters
from .state import CachedClient, ExistingState

logger = logging.getLogger(__name__)


class ChunkWriteError(Exception):
    """Raised when a chunk cannot be written consistently; the chunk is rolled back."""
    pass


class StoreUnavailableError(Exception):
    """Raised when the store connection is lost and the run cannot continue."""
    pass


@dataclass
class ChunkOutcome:
    """What a committed chunk created, to be folded into the run cache."""
    counters: ChunkCounters
    users: dict[str, str] = field(default_factory=dict)
    clients: dict[int, CachedClient] = field(default_factory=dict)
    sales: set[int] = field(default_factory=set)
    invoices: set[str] = field(default_factory=set)


async def _bulk_insert(session: AsyncSession, model: type[models.Base], rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    await session.execute(insert(model), rows)
    return len(rows)


async def _ids_by_key(session: AsyncSession, key_column, id_column, keys: Iterable[Any]) -> dict[Any, int]:
    keys = list(keys)
    if not keys:
        return {}
    result = await session.execute(select(key_column, id_column).where(key_column.in_(keys)))
    return {key: internal_id for key, internal_id in result}


async def write_chunk(session: AsyncSession, staging: ChunkStaging, state: ExistingState) -> ChunkOutcome:
    """Persist one chunk in dependency order.

    Must run inside an open transaction; the caller commits or rolls back.
    ``state`` is only read here, see ``apply_outcome``.

    Raises:
        ChunkWriteError: A staged client could not be resolved after insert
        SQLAlchemyError: Any storage failure
    """
    counters = ChunkCounters(errors=staging.errors)
    outcome = ChunkOutcome(counters=counters)

    # 1. Users
    user_rows = build_user_rows(staging, state)
    counters.users_created = await _bulk_insert(session, models.User, user_rows)
    outcome.users = {row["email"]: row["display_name"] for row in user_rows}

    # 2. Clients, then learn their ids
    client_rows = build_client_rows(staging)
    counters.clients_created = await _bulk_insert(session, models.Client, client_rows)
    assigned_client_ids = await _ids_by_key(
        session,
        models.Client.external_id,
        models.Client.id,
        staging.clients,
    )
    outcome.clients = {
        external_id: CachedClient(internal_id=assigned_client_ids[external_id], name=name)
        for external_id, name in staging.clients.items()
        if external_id in assigned_client_ids
    }
    try:
        client_ids = resolve_client_ids(staging.sales, assigned_client_ids)
    except UnresolvedClientError as e:
        raise ChunkWriteError(str(e)) from e

    # 3-4. Sales not yet persisted, then learn their ids
    sale_rows = []
    status_rows = []
    for external_sale_id, staged in staging.sales.items():
        if external_sale_id in state.sales:
            continue
        sale_rows.append(
            build_sale_row(staged.record, client_ids[external_sale_id], staged.client_external_id)
        )
        status_rows.extend(build_sale_status_rows(staged.record))
    counters.sales_created = await _bulk_insert(session, models.Sale, sale_rows)
    sale_ids = await _ids_by_key(
        session,
        models.Sale.external_sale_id,
        models.Sale.id,
        (row["external_sale_id"] for row in sale_rows),
    )
    outcome.sales = set(sale_ids)

    # 5. Point status history at internal sale ids
    status_rows = bind_sale_ids(status_rows, sale_ids)

    # 6. Invoices with their status history
    invoice_batch = collect_invoices(staging.sales, state.invoices)
    counters.invoices_created = await _bulk_insert(session, models.Invoice, invoice_batch.invoices)
    outcome.invoices = invoice_batch.numbers

    # 7. Status histories
    counters.sale_status_events_created = await _bulk_insert(session, models.SaleStatusEvent, status_rows)
    counters.invoice_status_events_created = await _bulk_insert(
        session,
        models.InvoiceStatusEvent,
        invoice_batch.status_events,
    )

    return outcome


def apply_outcome(state: ExistingState, outcome: ChunkOutcome) -> None:
    """Fold a committed chunk's creations into the run cache for later chunks."""
    state.users.update(outcome.users)
    state.clients.update(outcome.clients)
    state.sales.update(outcome.sales)
    state.invoices.update(outcome.invoices)
