"""Turn staged entities into bulk-insert parameter sets.

Nothing here touches the database: every function maps staged records plus
ids learned by the writer into plain row dictionaries for ``insert()``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterator, Mapping, Sequence, TypeVar

from ..records import InvoiceRecord, SaleRecord, SaleStatusRecord
from .normalization import as_number, is_paid, normalize_date, parse_iso_date
from .resolver import ChunkStaging, ClientRef, Pending, Resolved, StagedSale
from .state import ExistingState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SALE_STATUS = 0
DEFAULT_INVOICE_STATUS = 1


class UnresolvedClientError(Exception):
    """Raised when a pending client has no id after the client insert."""
    pass


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def derive_current_status(events: Sequence[SaleStatusRecord]) -> int:
    """Status code of the latest-dated event.

    Ties keep the first event seen; undated events lose against dated ones;
    no events yields the default status 0.
    """
    if not events:
        return DEFAULT_SALE_STATUS

    latest = events[0]
    latest_date = normalize_date(latest.date)
    for event in events[1:]:
        event_date = normalize_date(event.date)
        if event_date is not None and (latest_date is None or event_date > latest_date):
            latest, latest_date = event, event_date

    return latest.status_code if latest.status_code is not None else DEFAULT_SALE_STATUS


def _decimal(value: Any) -> Decimal:
    number = as_number(value)
    return number if number is not None else Decimal(0)


def build_user_rows(staging: ChunkStaging, state: ExistingState) -> list[dict[str, Any]]:
    return [
        {"email": email, "display_name": display_name}
        for email, display_name in staging.users.items()
        if email not in state.users
    ]


def build_client_rows(staging: ChunkStaging) -> list[dict[str, Any]]:
    return [
        {"external_id": external_id, "name": name}
        for external_id, name in staging.clients.items()
    ]


def resolve_client_ids(
    staged_sales: Mapping[int, StagedSale],
    assigned_ids: Mapping[int, int],
) -> dict[int, int]:
    """Map each staged sale to its client's internal id in one pass.

    Raises:
        UnresolvedClientError: A ``Pending`` ref whose client was not found
            after insert
    """
    client_ids: dict[int, int] = {}
    for external_sale_id, staged in staged_sales.items():
        client_ids[external_sale_id] = _client_internal_id(staged.client, assigned_ids)
    return client_ids


def _client_internal_id(ref: ClientRef, assigned_ids: Mapping[int, int]) -> int:
    if isinstance(ref, Resolved):
        return ref.internal_id
    if isinstance(ref, Pending):
        try:
            return assigned_ids[ref.external_id]
        except KeyError:
            raise UnresolvedClientError(
                f"client {ref.external_id} has no internal id after insert"
            ) from None
    raise TypeError(f"unexpected client reference {ref!r}")


def build_sale_row(record: SaleRecord, client_id: int, client_external_id: int) -> dict[str, Any]:
    """Build the ``sales`` row for a record once its client id is known."""
    return {
        "external_sale_id": record.external_sale_id,
        "quote_code": record.quote_code.strip(),
        "start_date": parse_iso_date(normalize_date(record.start_date)),
        "client_id": client_id,
        "client_external_id": client_external_id,
        "client_name": record.client_name or "",
        "creator_email": record.creator_email,
        "total_value": _decimal(record.total_value),
        "quote_value": _decimal(record.quote_value),
        "state_count": record.state_count or 0,
        "current_status_code": derive_current_status(record.status_events),
    }


def build_sale_status_rows(record: SaleRecord) -> list[dict[str, Any]]:
    """Status history rows keyed by the sale's natural key until ids are bound."""
    return [
        {
            "sale_external_id": record.external_sale_id,
            "status_code": event.status_code if event.status_code is not None else DEFAULT_SALE_STATUS,
            "event_date": parse_iso_date(normalize_date(event.date)),
        }
        for event in record.status_events
    ]


def bind_sale_ids(rows: list[dict[str, Any]], sale_ids: Mapping[int, int]) -> list[dict[str, Any]]:
    """Rewrite status rows from the sale natural key to its internal id.

    Rows whose sale has no id are dropped so no event is persisted orphaned.
    """
    bound = []
    for row in rows:
        sale_id = sale_ids.get(row["sale_external_id"])
        if sale_id is None:
            logger.warning(f"Dropping status event for unknown sale {row['sale_external_id']}")
            continue
        bound.append({**row, "sale_id": sale_id})
    return bound


def build_invoice_rows(
    invoice: InvoiceRecord,
    external_sale_id: int,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Build one invoice row and the rows of its status history."""
    invoice_row = {
        "number": invoice.number,
        "billing_date": parse_iso_date(normalize_date(invoice.billing_date)),
        "status_event_count": invoice.status_event_count or 0,
        "sale_external_id": external_sale_id,
    }
    status_rows = [
        {
            "invoice_number": invoice.number,
            "status_code": event.status_code if event.status_code is not None else DEFAULT_INVOICE_STATUS,
            "event_date": parse_iso_date(normalize_date(event.date)),
            "paid": is_paid(event.paid_amount),
            "observation": event.observation,
            "actor_email": event.actor_email,
            "sale_external_id": external_sale_id,
        }
        for event in invoice.status_events
    ]
    return invoice_row, status_rows


@dataclass
class InvoiceBatch:
    invoices: list[dict[str, Any]] = field(default_factory=list)
    status_events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def numbers(self) -> set[str]:
        return {row["number"] for row in self.invoices}


def collect_invoices(staged_sales: Mapping[int, StagedSale], known_numbers: set[str]) -> InvoiceBatch:
    """Gather invoices not yet persisted nor already taken earlier in this batch."""
    batch = InvoiceBatch()
    seen = set(known_numbers)
    for external_sale_id, staged in staged_sales.items():
        for invoice in staged.record.invoices:
            if not invoice.number or invoice.number in seen:
                continue
            seen.add(invoice.number)
            invoice_row, status_rows = build_invoice_rows(invoice, external_sale_id)
            batch.invoices.append(invoice_row)
            batch.status_events.extend(status_rows)
    return batch
