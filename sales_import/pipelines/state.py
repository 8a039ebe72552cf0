"""Run-scoped import context and the existing-state preload.

Every natural key already in the store is loaded once per run into hash
indices so the resolver never queries per record. The context is built at run
start, passed by reference to the resolver and writer, and dropped when the
run ends.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .. import models
from ..config import ImportSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedClient:
    internal_id: int
    name: str


@dataclass
class ExistingState:
    """Natural-key indices of rows already persisted."""
    clients: dict[int, CachedClient] = field(default_factory=dict)
    users: dict[str, str] = field(default_factory=dict)
    sales: set[int] = field(default_factory=set)
    invoices: set[str] = field(default_factory=set)

    def summary(self) -> dict[str, int]:
        return {
            "clients": len(self.clients),
            "users": len(self.users),
            "sales": len(self.sales),
            "invoices": len(self.invoices),
        }


@dataclass
class ImportContext:
    """Everything a single import run shares between its chunks."""
    state: ExistingState
    settings: ImportSettings
    should_stop: Callable[[], bool] | None = None

    @property
    def chunk_size(self) -> int:
        return self.settings.chunk_size

    def stop_requested(self) -> bool:
        return bool(self.should_stop and self.should_stop())


def is_connectivity_error(error: BaseException) -> bool:
    """True when the store connection itself is gone, as opposed to a bad statement."""
    if isinstance(error, DisconnectionError):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, (ConnectionError, TimeoutError))


async def load_existing_state(session: AsyncSession) -> ExistingState:
    """Load the four natural-key indices in one read-only pass."""
    state = ExistingState()

    clients = await session.execute(
        select(models.Client.external_id, models.Client.id, models.Client.name)
    )
    for external_id, internal_id, name in clients:
        state.clients[external_id] = CachedClient(internal_id=internal_id, name=name)

    users = await session.execute(select(models.User.email, models.User.display_name))
    state.users = {email: display_name for email, display_name in users}

    sales = await session.execute(select(models.Sale.external_sale_id))
    state.sales = set(sales.scalars())

    invoices = await session.execute(select(models.Invoice.number))
    state.invoices = set(invoices.scalars())

    return state


async def preload_existing_state(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    attempts: int = 3,
) -> ExistingState:
    """Preload existing state, retrying transient connectivity failures.

    Raises:
        The last connectivity error once ``attempts`` are exhausted; any other
        database error immediately.
    """
    start = time.perf_counter()
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception(is_connectivity_error),
        reraise=True,
    ):
        with attempt:
            async with session_factory() as session:
                state = await load_existing_state(session)

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"Preloaded existing state in {elapsed_ms:.1f}ms",
        extra=state.summary(),
    )
    return state
