"""Import runs: sales with their nested entities, and users on their own.

A sales run preloads existing state once, then handles files one by one and
each file chunk by chunk. Every chunk commits in its own transaction, so a run
is never atomic as a whole: record and chunk failures are counted and the run
moves on, and only a lost store connection stops it early, still reporting
what was already committed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import models
from ..config import ImportSettings, settings
from ..parsers import MalformedInputError, SourceFile, decode_source
from ..rules import QuoteCodeRule
from .materializer import chunked
from .normalization import display_name_from_email, is_valid_email, normalize_email
from .resolver import resolve_chunk
from .results import ChunkCounters, FileResult, ImportRunResult, UserImportResult
from .state import ImportContext, is_connectivity_error, preload_existing_state
from .writer import ChunkWriteError, StoreUnavailableError, apply_outcome, write_chunk

logger = logging.getLogger(__name__)


class SalesImportRun:
    """One sales import run over a sequence of files."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        context: ImportContext,
    ) -> None:
        self._session_factory = session_factory
        self._context = context
        self._rule = QuoteCodeRule(context.settings.excluded_quote_prefixes)
        self.result = ImportRunResult()

    async def run(self, sources: Sequence[SourceFile]) -> ImportRunResult:
        for index, source in enumerate(sources):
            if self._context.stop_requested():
                self._mark_cancelled(f"before file #{index}")
                break
            logger.info(f"Processing file #{index}: {source.name} ({source.size / 1024 / 1024:.2f}MB)")
            try:
                await self._import_file(source)
            except StoreUnavailableError as e:
                self.result.aborted = True
                self.result.abort_reason = str(e)
                logger.error(f"Import aborted, store unavailable: {e}")
                break
            if self.result.cancelled:
                break
        return self.result

    def _mark_cancelled(self, where: str) -> None:
        self.result.cancelled = True
        logger.info(f"Import cancelled {where}")

    async def _import_file(self, source: SourceFile) -> None:
        file_result = FileResult(name=source.name, size_bytes=source.size)
        self.result.add_file(file_result)
        start = time.perf_counter()
        try:
            try:
                records = decode_source(source, self._context.settings)
            except MalformedInputError as e:
                file_result.error = str(e)
                file_result.file_errors = 1
                logger.error(f"File {source.name} rejected: {e}")
                return

            outcome = self._rule.apply(records)
            file_result.records_total = outcome.processed
            file_result.records_valid = outcome.valid_count
            file_result.sales_filtered = outcome.filtered

            for chunk_index, chunk in enumerate(chunked(outcome.valid, self._context.chunk_size)):
                if self._context.stop_requested():
                    self._mark_cancelled(f"in {source.name} before chunk #{chunk_index}")
                    return
                logger.info(f"Processing chunk #{chunk_index} of {source.name} ({len(chunk)} sales)")
                try:
                    counters = await self._import_chunk(chunk)
                except StoreUnavailableError:
                    file_result.chunks.append(ChunkCounters.failed(len(chunk)))
                    raise
                file_result.chunks.append(counters)
        finally:
            file_result.elapsed_seconds = time.perf_counter() - start
            logger.info(
                f"File {source.name} done in {file_result.elapsed_seconds:.2f}s",
                extra=file_result.totals().as_dict(),
            )

    async def _import_chunk(self, chunk: Sequence[Any]) -> ChunkCounters:
        staging = resolve_chunk(chunk, self._context)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    outcome = await write_chunk(session, staging, self._context.state)
        except (SQLAlchemyError, ChunkWriteError, OSError) as e:
            if is_connectivity_error(e):
                raise StoreUnavailableError(str(e)) from e
            logger.error(f"Chunk rolled back, {len(chunk)} sales counted as errors: {e}")
            return ChunkCounters.failed(len(chunk))

        apply_outcome(self._context.state, outcome)
        return outcome.counters


async def import_sales(
    sources: Sequence[SourceFile],
    session_factory: async_sessionmaker[AsyncSession],
    *,
    import_settings: ImportSettings | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> ImportRunResult:
    """Import sale files into the store.

    Args:
        sources: Files to import, processed in order
        session_factory: Factory for the per-chunk transactional sessions
        import_settings: Chunk size, filter prefixes and limits
        should_stop: Polled before each chunk; returning True ends the run
            after the last committed chunk

    Returns:
        ImportRunResult with chunk, file and run counters

    Raises:
        StoreUnavailableError: Existing state could not be preloaded
    """
    import_settings = import_settings or settings.imports
    start = time.perf_counter()
    logger.info(f"Starting sales import of {len(sources)} files")

    try:
        state = await preload_existing_state(session_factory, attempts=import_settings.preload_attempts)
    except SQLAlchemyError as e:
        raise StoreUnavailableError(f"could not preload existing state: {e}") from e
    except (ConnectionError, TimeoutError) as e:
        raise StoreUnavailableError(f"could not preload existing state: {e}") from e

    context = ImportContext(state=state, settings=import_settings, should_stop=should_stop)
    result = await SalesImportRun(session_factory, context).run(sources)

    logger.info(
        f"Sales import finished in {time.perf_counter() - start:.2f}s",
        extra={"files_processed": result.files_processed, **result.totals().as_dict()},
    )
    return result


def extract_creator_emails(records: Sequence[Any]) -> tuple[list[str], int]:
    """Unique, normalized creator emails in first-seen order plus the invalid count."""
    emails: dict[str, None] = {}
    invalid = 0
    for record in records:
        if not isinstance(record, dict):
            continue
        email = normalize_email(record.get("CorreoCreador"))
        if email is None:
            continue
        if not is_valid_email(email):
            invalid += 1
            continue
        emails.setdefault(email)
    return list(emails), invalid


async def import_users(
    sources: Sequence[SourceFile],
    session_factory: async_sessionmaker[AsyncSession],
    *,
    import_settings: ImportSettings | None = None,
) -> UserImportResult:
    """Create users for every creator email found in sale files.

    Existing users are skipped, never updated.

    Raises:
        StoreUnavailableError: Store connection lost
    """
    import_settings = import_settings or settings.imports
    result = UserImportResult()

    try:
        async with session_factory() as session:
            known = set((await session.execute(select(models.User.email))).scalars())
    except SQLAlchemyError as e:
        raise StoreUnavailableError(f"could not preload users: {e}") from e

    for source in sources:
        result.files_processed += 1
        detail: dict[str, Any] = {"name": source.name, "sizeBytes": source.size}
        result.file_details.append(detail)
        try:
            records = decode_source(source, import_settings)
        except MalformedInputError as e:
            result.errors += 1
            detail["error"] = str(e)
            logger.error(f"File {source.name} rejected: {e}")
            continue

        emails, invalid = extract_creator_emails(records)
        new_emails = [email for email in emails if email not in known]
        result.invalid_emails += invalid
        result.users_skipped += len(emails) - len(new_emails)
        detail.update({"recordsTotal": len(records), "uniqueEmails": len(emails), "usersCreated": 0})

        for chunk in chunked(new_emails, import_settings.chunk_size):
            rows = [
                {"email": email, "display_name": display_name_from_email(email, import_settings.default_display_name)}
                for email in chunk
            ]
            try:
                async with session_factory() as session:
                    async with session.begin():
                        await session.execute(insert(models.User), rows)
            except SQLAlchemyError as e:
                if is_connectivity_error(e):
                    raise StoreUnavailableError(str(e)) from e
                logger.error(f"User chunk rolled back, {len(rows)} users counted as errors: {e}")
                result.errors += len(rows)
                continue
            known.update(chunk)
            result.users_created += len(rows)
            detail["usersCreated"] += len(rows)

    logger.info(
        f"User import finished: created={result.users_created} skipped={result.users_skipped} "
        f"invalid={result.invalid_emails} errors={result.errors}"
    )
    return result
