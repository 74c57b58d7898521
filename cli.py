"""CLI entrypoint for the MARC21 ingestion pipeline."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

import marc21
from embedding_client import generate_embedding
from indexer import Indexer
from pipeline import process_file


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags, falling back to environment defaults."""
    parser = argparse.ArgumentParser(description="Decode a MARC21 file and index it into Elasticsearch")
    parser.add_argument("--file", default=os.getenv("MARC_FILE", "../marc.mrc"), help="Path to the .mrc file")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.getenv("BATCH_SIZE", "100")),
        help="Number of records per bulk request",
    )
    parser.add_argument("--index", default=None, help="Target index name (default: ELASTICSEARCH_INDEX)")
    parser.add_argument("--dry-run", action="store_true", help="Decode and count records without any HTTP calls")
    parser.add_argument("--no-embeddings", action="store_true", help="Index records without embedding vectors")
    parser.add_argument(
        "--scan",
        type=int,
        metavar="N",
        default=None,
        help="Only list the leaders of the first N plausible record boundaries",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def scan(path: str, limit: int) -> int:
    data = Path(path).read_bytes()
    logging.info("Read %s bytes from %s", len(data), path)
    found = 0
    for position, leader in marc21.scan_records(data, limit):
        found += 1
        logging.info("Potential record %s at position %s, leader: %r", found, position, leader)
    logging.info("Found %s potential MARC records", found)
    return found


def main(argv: list[str] | None = None) -> None:
    """Load configuration and run the pipeline."""
    load_dotenv()
    args = parse_args(argv)
    level = logging.DEBUG if args.verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    if args.scan is not None:
        scan(args.file, args.scan)
        return

    if args.dry_run:
        stats = process_file(args.file, batch_size=args.batch_size)
        logging.info("[dry-run] %s", stats.model_dump())
        return

    indexer = Indexer(index_name=args.index)
    indexer.ping()
    indexer.ensure_index()

    embed = None if args.no_embeddings else generate_embedding
    stats = process_file(args.file, embed=embed, index_batch=indexer.index_batch, batch_size=args.batch_size)
    logging.info(
        "Processing complete: total=%s processed=%s errors=%s",
        stats.total,
        stats.processed,
        stats.errors,
    )


if __name__ == "__main__":
    main()
