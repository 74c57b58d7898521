"""Elasticsearch bulk indexer for bibliographic records."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

import requests

from biblio import EMBEDDING_DIMS, BibliographicRecord

ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
ELASTICSEARCH_USERNAME = os.getenv("ELASTICSEARCH_USERNAME", "elastic")
ELASTICSEARCH_PASSWORD = os.getenv("ELASTICSEARCH_PASSWORD", "")
ELASTICSEARCH_INDEX = os.getenv("ELASTICSEARCH_INDEX", "marc-records")
REQUEST_TIMEOUT_SECONDS = 30

LOGGER = logging.getLogger(__name__)

_ENGLISH_TEXT = {"type": "text", "analyzer": "english"}
_ENGLISH_TEXT_WITH_KEYWORD = {**_ENGLISH_TEXT, "fields": {"keyword": {"type": "keyword"}}}

INDEX_MAPPING: dict[str, Any] = {
    "mappings": {
        "properties": {
            "controlNumber": {"type": "keyword"},
            "title": _ENGLISH_TEXT_WITH_KEYWORD,
            "author": _ENGLISH_TEXT_WITH_KEYWORD,
            "publisher": _ENGLISH_TEXT_WITH_KEYWORD,
            "publicationYear": {"type": "integer"},
            "isbn": {"type": "keyword"},
            "subjects": _ENGLISH_TEXT,
            "description": _ENGLISH_TEXT,
            "language": {"type": "keyword"},
            "format": {"type": "keyword"},
            "searchableText": _ENGLISH_TEXT,
            "embedding": {"type": "dense_vector", "dims": EMBEDDING_DIMS},
            "indexed_at": {"type": "date"},
        }
    },
    "settings": {"number_of_shards": 1, "number_of_replicas": 0},
}


class IndexingError(RuntimeError):
    pass


class Indexer:
    """Thin client over the Elasticsearch REST API.

    Every failure surfaces as IndexingError; a failed bulk batch is never
    partially retried here.
    """

    def __init__(
        self,
        url: str | None = None,
        index_name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.url = (url or ELASTICSEARCH_URL).rstrip("/")
        self.index_name = index_name or ELASTICSEARCH_INDEX
        self.session = session or requests.Session()
        username = username if username is not None else ELASTICSEARCH_USERNAME
        password = password if password is not None else ELASTICSEARCH_PASSWORD
        if username:
            self.session.auth = (username, password)
        self.run_stamp = int(datetime.now(UTC).timestamp())
        self._sequence = 0

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, f"{self.url}{path}", timeout=REQUEST_TIMEOUT_SECONDS, **kwargs)
        except requests.RequestException as exc:
            raise IndexingError(f"{method} {path} failed: {exc}") from exc

    def ping(self) -> None:
        response = self._request("GET", "/")
        if not response.ok:
            raise IndexingError(f"Elasticsearch returned status {response.status_code}")
        LOGGER.info("Connected to Elasticsearch at %s", self.url)

    def ensure_index(self) -> bool:
        """Create the index with the record mapping. Returns False if it already existed."""
        response = self._request("HEAD", f"/{self.index_name}")
        if response.status_code == 200:
            LOGGER.info("Index %s already exists", self.index_name)
            return False

        response = self._request("PUT", f"/{self.index_name}", json=INDEX_MAPPING)
        if not response.ok:
            raise IndexingError(f"Error creating index {self.index_name}: {response.text}")
        LOGGER.info("Created index: %s", self.index_name)
        return True

    def next_document_id(self, record: BibliographicRecord) -> str:
        self._sequence += 1
        if record.control_number:
            return record.control_number
        return f"marc_{self.run_stamp}_{self._sequence}"

    def build_bulk_body(self, records: list[BibliographicRecord]) -> str:
        lines = []
        for record in records:
            meta = {"index": {"_index": self.index_name, "_id": self.next_document_id(record)}}
            lines.append(json.dumps(meta))
            lines.append(json.dumps(record.to_document(), ensure_ascii=False))
        return "\n".join(lines) + "\n"

    def index_batch(self, records: list[BibliographicRecord]) -> None:
        if not records:
            return

        body = self.build_bulk_body(records)
        response = self._request(
            "POST",
            "/_bulk",
            params={"refresh": "false"},
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        if not response.ok:
            raise IndexingError(f"Bulk indexing failed ({response.status_code}): {response.text}")

        try:
            result = response.json()
        except ValueError as exc:
            raise IndexingError(f"Bulk indexing returned invalid JSON: {exc}") from exc

        if result.get("errors"):
            failed = [
                action
                for item in result.get("items", [])
                for action in item.values()
                if isinstance(action, dict) and action.get("error")
            ]
            raise IndexingError(f"Bulk indexing reported {len(failed)} failed documents: {failed[:3]}")

        LOGGER.info("Indexed batch of %s records into %s", len(records), self.index_name)
