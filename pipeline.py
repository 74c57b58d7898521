"""Record pipeline: segment, decode, extract, embed and batch-index MARC records."""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Callable, Iterator

import pydantic

from biblio import BibliographicRecord, extract_record
from marc21 import IncompleteRecordError, MarcError, iter_records, parse_record

LOGGER = logging.getLogger(__name__)

EmbedFn = Callable[[str], list[float] | None]
IndexBatchFn = Callable[[list[BibliographicRecord]], None]


class OutcomeStatus(str, enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    ERROR = "error"


class RecordOutcome(pydantic.BaseModel):
    """Result of decoding one bounded record from the stream."""

    position: int
    status: OutcomeStatus
    record: BibliographicRecord | None = None
    reason: str = ""
    warnings: int = 0


class RunStats(pydantic.BaseModel):
    total: int = 0
    processed: int = 0
    errors: int = 0
    rejected: int = 0
    batches: int = 0
    incomplete: bool = False


def decode_record(position: int, data: bytes) -> RecordOutcome:
    """Decode one record slice into an outcome; never raises for bad MARC."""
    try:
        decoded = parse_record(data)
    except MarcError as exc:
        return RecordOutcome(position=position, status=OutcomeStatus.ERROR, reason=str(exc))

    record = extract_record(decoded.fields)
    warnings = len(decoded.diagnostics)
    if not record.title:
        return RecordOutcome(position=position, status=OutcomeStatus.SKIPPED, reason="empty title", warnings=warnings)
    return RecordOutcome(position=position, status=OutcomeStatus.OK, record=record, warnings=warnings)


def iter_outcomes(buffer: bytes, stats: RunStats | None = None) -> Iterator[RecordOutcome]:
    """Lazily decode ``buffer`` one record per pull, in buffer order.

    When ``stats`` is given, an incomplete trailing record sets
    ``stats.incomplete`` instead of propagating.
    """
    try:
        for position, data in iter_records(buffer):
            yield decode_record(position, data)
    except IncompleteRecordError as exc:
        LOGGER.warning("Stopping at incomplete record: %s", exc)
        if stats is None:
            raise
        stats.incomplete = True


def run(
    buffer: bytes,
    embed: EmbedFn | None = None,
    index_batch: IndexBatchFn | None = None,
    batch_size: int = 100,
) -> RunStats:
    """Process every record in ``buffer`` and return the run counters.

    Embedding failures only drop the vector for that record. Failures raised
    by ``index_batch`` propagate to the caller.
    """
    stats = RunStats()
    pending: list[BibliographicRecord] = []

    for outcome in iter_outcomes(buffer, stats):
        stats.total += 1
        if outcome.status is OutcomeStatus.ERROR:
            stats.errors += 1
            LOGGER.warning("Error parsing record %s at position %s: %s", stats.total, outcome.position, outcome.reason)
            continue
        if outcome.status is OutcomeStatus.SKIPPED:
            stats.rejected += 1
            LOGGER.debug("Dropping record %s at position %s: %s", stats.total, outcome.position, outcome.reason)
            continue

        record = outcome.record
        if embed is not None and record.searchable_text:
            try:
                record = record.with_embedding(embed(record.searchable_text))
            except Exception as exc:
                LOGGER.warning("Failed to generate embedding for record %s: %s", stats.total, exc)

        pending.append(record.stamped())
        stats.processed += 1

        if len(pending) >= batch_size:
            _flush(pending, index_batch, stats)

    if pending:
        _flush(pending, index_batch, stats)

    LOGGER.info(
        "Run complete. total=%s processed=%s errors=%s rejected=%s incomplete=%s",
        stats.total,
        stats.processed,
        stats.errors,
        stats.rejected,
        stats.incomplete,
    )
    return stats


def _flush(pending: list[BibliographicRecord], index_batch: IndexBatchFn | None, stats: RunStats) -> None:
    if index_batch is not None:
        index_batch(list(pending))
    stats.batches += 1
    LOGGER.info("Flushed batch of %s records (total processed: %s)", len(pending), stats.processed)
    pending.clear()


def process_file(
    path: str | Path,
    embed: EmbedFn | None = None,
    index_batch: IndexBatchFn | None = None,
    batch_size: int = 100,
) -> RunStats:
    data = Path(path).read_bytes()
    LOGGER.info("Processing MARC file: %s (%s bytes)", path, len(data))
    return run(data, embed=embed, index_batch=index_batch, batch_size=batch_size)
