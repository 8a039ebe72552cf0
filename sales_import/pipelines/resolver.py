"""Entity resolution for one chunk of valid sale records.

For each record the resolver decides which referenced users and clients are
new and stages them for creation. Clients are referenced through a tagged
``ClientRef``: ``Resolved`` when the internal id is already known, ``Pending``
when the client is staged in this chunk and only gets its id after the
client insert.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

from pydantic import ValidationError

from ..records import SaleRecord, record_key
from .normalization import display_name_from_email
from .state import ImportContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolved:
    internal_id: int


@dataclass(frozen=True)
class Pending:
    external_id: int


ClientRef = Union[Resolved, Pending]


class InvalidRecordError(Exception):
    """Raised when a single sale record cannot be imported."""
    pass


@dataclass
class StagedSale:
    record: SaleRecord
    client: ClientRef

    @property
    def client_external_id(self) -> int:
        # Validated positive before a sale is staged
        return self.record.client_external_id  # type: ignore[return-value]


@dataclass
class ChunkStaging:
    """Creations staged by the resolver for one chunk, in first-seen order."""
    records: int = 0
    errors: int = 0
    users: dict[str, str] = field(default_factory=dict)
    clients: dict[int, str] = field(default_factory=dict)
    sales: dict[int, StagedSale] = field(default_factory=dict)


def _stage_user(email: str | None, staging: ChunkStaging, context: ImportContext) -> None:
    if not email or email in context.state.users or email in staging.users:
        return
    staging.users[email] = display_name_from_email(email, context.settings.default_display_name)


def resolve_client(record: SaleRecord, staging: ChunkStaging, context: ImportContext) -> ClientRef:
    """Resolve the record's client against the cache and this chunk's staging.

    Raises:
        InvalidRecordError: Missing or non-numeric client id, or a new client
            without a name
    """
    external_id = record.client_external_id
    if external_id is None:
        raise InvalidRecordError("client id is missing or not a positive integer")

    cached = context.state.clients.get(external_id)
    if cached is not None:
        return Resolved(cached.internal_id)

    if external_id not in staging.clients:
        if not record.client_name:
            raise InvalidRecordError(f"new client {external_id} has no name")
        staging.clients[external_id] = record.client_name
    return Pending(external_id)


def resolve_record(raw: Any, staging: ChunkStaging, context: ImportContext) -> None:
    """Stage everything one raw sale record needs.

    Raises:
        ValidationError: Structurally invalid record
        InvalidRecordError: Record rejected by a resolution rule
    """
    record = SaleRecord.model_validate(raw)

    _stage_user(record.creator_email, staging, context)

    client = resolve_client(record, staging, context)

    for email in record.actor_emails():
        _stage_user(email, staging, context)

    if record.external_sale_id in staging.sales:
        logger.debug(f"Sale {record.external_sale_id} repeated within chunk, keeping first occurrence")
        return
    staging.sales[record.external_sale_id] = StagedSale(record=record, client=client)


def resolve_chunk(raw_records: Iterable[Any], context: ImportContext) -> ChunkStaging:
    """Resolve every record of a chunk; a failing record never aborts the chunk."""
    staging = ChunkStaging()
    for raw in raw_records:
        staging.records += 1
        try:
            resolve_record(raw, staging, context)
        except InvalidRecordError as e:
            staging.errors += 1
            logger.warning(f"Skipping sale {record_key(raw)}: {e}")
        except ValidationError as e:
            staging.errors += 1
            logger.warning(f"Skipping sale {record_key(raw)}: {e.error_count()} invalid fields")
        except Exception as e:
            staging.errors += 1
            logger.error(f"Error processing sale {record_key(raw)}: {e}", exc_info=True)

    logger.debug(
        f"Chunk resolved: records={staging.records} errors={staging.errors} "
        f"new_users={len(staging.users)} new_clients={len(staging.clients)} sales={len(staging.sales)}"
    )
    return staging
