"""Business rules deciding which sale records are imported at all.

A sale is imported only when it carries a quote code that does not start with
one of the excluded prefixes (additional charges, other services and
SPD quotes are not sales). No other exclusion basis exists.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .config import settings

logger = logging.getLogger(__name__)


@dataclass
class FilterOutcome:
    """Records that passed the quote-code rule plus the counts behind them."""
    valid: list[dict[str, Any]] = field(default_factory=list)
    processed: int = 0
    filtered: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.valid)


class QuoteCodeRule:
    """Excludes records whose quote code is missing, empty, or has an excluded prefix."""

    def __init__(self, excluded_prefixes: Iterable[str] | None = None):
        if excluded_prefixes is None:
            excluded_prefixes = settings.imports.excluded_quote_prefixes
        self.excluded_prefixes = tuple(p.strip().upper() for p in excluded_prefixes if p.strip())

    def accepts(self, record: Any) -> bool:
        if not isinstance(record, Mapping):
            return False
        quote_code = record.get("CodigoCotizacion")
        if quote_code is None:
            return False
        code = str(quote_code).strip().upper()
        if not code:
            return False
        return not code.startswith(self.excluded_prefixes)

    def apply(self, records: Iterable[Any]) -> FilterOutcome:
        """Split records into valid ones and a filtered count.

        Total over any input: records that are not objects count as filtered.
        """
        outcome = FilterOutcome()
        for record in records:
            outcome.processed += 1
            if self.accepts(record):
                outcome.valid.append(record)
            else:
                outcome.filtered += 1

        logger.info(
            f"Quote code filter: processed={outcome.processed} "
            f"valid={outcome.valid_count} filtered={outcome.filtered}"
        )
        return outcome


def filter_sales(
    records: Iterable[Any],
    excluded_prefixes: Iterable[str] | None = None,
) -> FilterOutcome:
    return QuoteCodeRule(excluded_prefixes).apply(records)
