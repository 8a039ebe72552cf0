"""Counters for chunks, files and whole import runs.

Run totals are always derived by summing file results, and file totals by
summing chunk counters, so the three levels cannot drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any


@dataclass
class ChunkCounters:
    sales_created: int = 0
    # Reserved: the import is create-or-skip, nothing updates sales yet
    sales_updated: int = 0
    sales_filtered: int = 0
    clients_created: int = 0
    users_created: int = 0
    invoices_created: int = 0
    sale_status_events_created: int = 0
    invoice_status_events_created: int = 0
    errors: int = 0

    def add(self, other: ChunkCounters) -> None:
        for counter in fields(self):
            setattr(self, counter.name, getattr(self, counter.name) + getattr(other, counter.name))

    @classmethod
    def failed(cls, records: int) -> ChunkCounters:
        """Counters of a rolled-back chunk: every record is an error."""
        return cls(errors=records)

    def as_dict(self) -> dict[str, int]:
        return {
            "salesCreated": self.sales_created,
            "salesUpdated": self.sales_updated,
            "salesFiltered": self.sales_filtered,
            "clientsCreated": self.clients_created,
            "usersCreated": self.users_created,
            "invoicesCreated": self.invoices_created,
            "saleStatusEventsCreated": self.sale_status_events_created,
            "invoiceStatusEventsCreated": self.invoice_status_events_created,
            "errors": self.errors,
        }


@dataclass
class FileResult:
    """Outcome of importing one file."""
    name: str
    size_bytes: int
    records_total: int = 0
    records_valid: int = 0
    chunks: list[ChunkCounters] = field(default_factory=list)
    sales_filtered: int = 0
    file_errors: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None

    @property
    def decoded(self) -> bool:
        return self.error is None

    def totals(self) -> ChunkCounters:
        totals = ChunkCounters(sales_filtered=self.sales_filtered, errors=self.file_errors)
        for chunk in self.chunks:
            totals.add(chunk)
        return totals

    @property
    def records_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return round(self.records_valid / self.elapsed_seconds, 1)

    def detail(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "sizeBytes": self.size_bytes,
            "recordsTotal": self.records_total,
            "recordsValid": self.records_valid,
            "chunks": len(self.chunks),
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "recordsPerSecond": self.records_per_second,
            "error": self.error,
            **self.totals().as_dict(),
        }


@dataclass
class ImportRunResult:
    """Run-level result handed back to callers."""
    files: list[FileResult] = field(default_factory=list)
    cancelled: bool = False
    aborted: bool = False
    abort_reason: str | None = None

    def add_file(self, file_result: FileResult) -> None:
        self.files.append(file_result)

    @property
    def files_processed(self) -> int:
        return len(self.files)

    @property
    def success(self) -> bool:
        """False only when not a single file could be decoded."""
        return any(file_result.decoded for file_result in self.files)

    def totals(self) -> ChunkCounters:
        totals = ChunkCounters()
        for file_result in self.files:
            totals.add(file_result.totals())
        return totals

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "filesProcessed": self.files_processed,
            **self.totals().as_dict(),
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            "abortReason": self.abort_reason,
            "perFileDetail": [file_result.detail() for file_result in self.files],
        }


@dataclass
class UserImportResult:
    files_processed: int = 0
    users_created: int = 0
    users_skipped: int = 0
    invalid_emails: int = 0
    errors: int = 0
    file_details: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "filesProcessed": self.files_processed,
            "usersCreated": self.users_created,
            "usersSkipped": self.users_skipped,
            "invalidEmails": self.invalid_emails,
            "errors": self.errors,
            "perFileDetail": self.file_details,
        }
