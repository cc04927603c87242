"""Enrichment run state: worklist, batch bounds, counters and abort reason."""
import time
import logging
from typing import Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentJobState:
    """State of one enrichment run."""

    batch_size: int
    max_items: int = 0

    worklist: list[str] = field(default_factory=list)
    cursor: int = 0
    batch_number: int = 0
    batch_start: int = 0
    batch_end: int = 0
    attempted: set[str] = field(default_factory=set)

    enriched: int = 0
    skipped_not_found: int = 0
    errored: int = 0
    unresolved: int = 0

    aborted: bool = False
    abort_reason: Optional[str] = None

    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def processed(self) -> int:
        return len(self.attempted)

    def remaining_budget(self) -> Optional[int]:
        """Items still allowed by max_items, or None when uncapped."""
        if not self.max_items:
            return None
        return max(self.max_items - self.processed, 0)

    def start_batch(self, ids: list[str]) -> None:
        self.batch_number += 1
        self.worklist.extend(ids)
        self.batch_start = self.cursor
        self.batch_end = self.cursor + len(ids)

    def advance(self, external_id: str) -> None:
        self.attempted.add(external_id)
        self.cursor += 1

    def record_enriched(self) -> None:
        self.enriched += 1

    def record_unresolved(self) -> None:
        self.unresolved += 1

    def record_not_found(self) -> None:
        self.skipped_not_found += 1

    def record_error(self) -> None:
        self.errored += 1

    def abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason
        logger.error(f"Enrichment aborted: {reason}")

    def finish(self) -> None:
        self.end_time = time.time()

    def get_summary(self) -> dict:
        """Get summary statistics."""
        elapsed = (self.end_time or time.time()) - self.start_time
        return {
            "elapsed_seconds": round(elapsed, 2),
            "batches": self.batch_number,
            "processed": self.processed,
            "enriched": self.enriched,
            "skipped_not_found": self.skipped_not_found,
            "errored": self.errored,
            "unresolved": self.unresolved,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }
