"""
Catalog stores: the bulk "fetch all" / "replace all" contract.

There is no per-record CRUD. A run reads the whole catalog once and, if it
commits, writes the whole catalog back in a single call.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import requests

from catalog_import.context import RunContext, ensure_context
from catalog_import.errors import ConfigError, PersistenceError

logger = logging.getLogger(__name__)

StoreRecord = dict[str, Any]


def _object_items(payload: list[Any], source: Any) -> list[StoreRecord]:
    records = [item for item in payload if isinstance(item, dict)]
    dropped = len(payload) - len(records)
    if dropped:
        logger.warning("Ignoring %d non-object item(s) from %s", dropped, source)
    return records


class CatalogStore(Protocol):
    def fetch_all(self, context: Optional[RunContext] = None) -> list[StoreRecord]:
        ...

    def replace_all(self, records: list[StoreRecord], context: Optional[RunContext] = None) -> None:
        ...


class InMemoryCatalogStore:
    """Holds the catalog in a list. ``fail_on_replace`` simulates a failed commit."""

    def __init__(self, records: Optional[list[StoreRecord]] = None, *, fail_on_replace: bool = False) -> None:
        self.records: list[StoreRecord] = copy.deepcopy(records or [])
        self.fail_on_replace = fail_on_replace
        self.replace_calls = 0

    def fetch_all(self, context: Optional[RunContext] = None) -> list[StoreRecord]:
        ensure_context(context).checkpoint("fetching existing records")
        return copy.deepcopy(self.records)

    def replace_all(self, records: list[StoreRecord], context: Optional[RunContext] = None) -> None:
        ensure_context(context).checkpoint("saving records")
        self.replace_calls += 1
        if self.fail_on_replace:
            raise PersistenceError("Failed to save subjects: store rejected the write")
        self.records = copy.deepcopy(records)


class JsonFileCatalogStore:
    """
    The catalog as a JSON array file.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a failed write leaves the previous file intact.
    A missing file reads as an empty catalog.
    """

    def __init__(self, path: "str | Path") -> None:
        self.path = Path(path)

    def fetch_all(self, context: Optional[RunContext] = None) -> list[StoreRecord]:
        ensure_context(context).checkpoint("fetching existing records")
        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to fetch existing subjects: {exc}") from exc
        if not isinstance(payload, list):
            logger.warning("%s does not hold a JSON array; treating it as empty", self.path)
            return []
        return _object_items(payload, self.path)

    def replace_all(self, records: list[StoreRecord], context: Optional[RunContext] = None) -> None:
        ensure_context(context).checkpoint("saving records")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to save subjects: {exc}") from exc
        logger.info("Wrote %d records to %s", len(records), self.path)


class HttpCatalogStore:
    """GET returns the full array; POST replaces it. Both on the same URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _timeout(self, context: RunContext) -> Optional[float]:
        remaining = context.remaining()
        if remaining is None:
            return self.timeout
        if self.timeout is None:
            return remaining
        return min(remaining, self.timeout)

    def fetch_all(self, context: Optional[RunContext] = None) -> list[StoreRecord]:
        context = ensure_context(context)
        context.checkpoint("fetching existing records")
        try:
            response = self.session.get(
                self.url,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout(context),
            )
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to fetch existing subjects: {exc}") from exc

        if not response.ok:
            raise PersistenceError(
                f"Failed to fetch existing subjects: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PersistenceError(f"Failed to fetch existing subjects: invalid JSON ({exc})") from exc
        if not isinstance(payload, list):
            logger.warning("%s did not return a JSON array; treating it as empty", self.url)
            return []
        return _object_items(payload, self.url)

    def replace_all(self, records: list[StoreRecord], context: Optional[RunContext] = None) -> None:
        context = ensure_context(context)
        context.checkpoint("saving records")
        try:
            response = self.session.post(self.url, json=records, timeout=self._timeout(context))
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to save subjects: {exc}") from exc

        if not response.ok:
            raise PersistenceError(
                f"Failed to save subjects ({response.status_code}): {response.text or 'Unknown error'}",
                status_code=response.status_code,
            )
        logger.info("Posted %d records to %s", len(records), self.url)


def open_store(
    *,
    url: Optional[str] = None,
    path: "str | Path | None" = None,
    timeout: Optional[float] = None,
) -> Optional[CatalogStore]:
    """Pick a store from CLI/config settings; None when nothing is configured."""
    if url and path:
        raise ConfigError("Choose either a store URL or a store file, not both")
    if url:
        return HttpCatalogStore(url, timeout=timeout)
    if path:
        return JsonFileCatalogStore(path)
    return None
