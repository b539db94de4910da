"""Disk-backed storage for memos and the watchlist."""

import dataclasses
import logging
import os
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

import diskcache

from buffett_mcp.killchain.errors import StorageUnavailable, WatchlistConflictError
from buffett_mcp.killchain.models import Memo

logger = logging.getLogger(__name__)

# Raised by diskcache reads and writes on a locked, full or broken store
STORAGE_ERRORS: tuple[type[Exception], ...] = (diskcache.Timeout, sqlite3.Error, OSError)


class ResearchStore:
    """
    Memo and watchlist storage on top of diskcache.

    The store is configured by a directory (``BUFFETT_STORE_DIR`` by default).
    Without one, every call raises StorageUnavailable; callers treat that as a
    non-fatal condition.
    """

    def __init__(self, directory: str | None = None):
        if directory is None:
            directory = os.environ.get("BUFFETT_STORE_DIR")
        self.directory = directory or None
        self._caches: dict[str, diskcache.Cache] = {}

    @property
    def is_configured(self) -> bool:
        return self.directory is not None

    def _cache(self, name: str) -> diskcache.Cache:
        if not self.is_configured:
            raise StorageUnavailable(
                "Storage is not configured. Set BUFFETT_STORE_DIR to a writable directory."
            )
        cache = self._caches.get(name)
        if cache is None:
            try:
                cache = diskcache.Cache(os.path.join(self.directory, name))
            except STORAGE_ERRORS as e:
                logger.error(f"ResearchStore: cannot open {name} store in {self.directory}: {e}")
                raise StorageUnavailable(f"Cannot open {name} store: {e}") from e
            self._caches[name] = cache
        return cache

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except STORAGE_ERRORS as e:
            logger.error(f"ResearchStore: {action} failed: {e}")
            raise StorageUnavailable(f"Storage error while trying to {action}: {e}") from e

    # ------------------------------------------------------------------
    # Memos
    # ------------------------------------------------------------------

    def save_memo(self, memo: Memo) -> str:
        """
        Persist a memo.

        Returns:
            The new memo id

        Raises:
            StorageUnavailable: If the store is unconfigured or the write fails
        """
        memo_id = uuid.uuid4().hex
        cache = self._cache("memos")
        with self._guard("save memo"):
            cache.set(memo_id, dataclasses.replace(memo, memo_id=memo_id))
        logger.info(f"ResearchStore: saved memo {memo_id} for {memo.ticker} ({memo.overall_verdict})")
        return memo_id

    def get_memo(self, memo_id: str) -> Memo | None:
        cache = self._cache("memos")
        with self._guard("read memo"):
            return cache.get(memo_id)

    def list_memos(self) -> list[Memo]:
        """All memos, most recent first."""
        cache = self._cache("memos")
        with self._guard("list memos"):
            memos = [memo for key in cache if (memo := cache.get(key)) is not None]
        return sorted(memos, key=lambda m: m.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Watchlist
    # ------------------------------------------------------------------

    def add_to_watchlist(self, ticker: str, company_name: str) -> dict[str, Any]:
        """
        Add a ticker to the watchlist.

        Raises:
            ValueError: If ticker or company name is missing
            WatchlistConflictError: If the ticker is already listed
            StorageUnavailable: If the store is unconfigured or the write fails
        """
        normalized = (ticker or "").upper().strip()
        if not normalized or not (company_name or "").strip():
            raise ValueError("ticker and company_name are required")

        entry = {
            "id": uuid.uuid4().hex,
            "ticker": normalized,
            "company_name": company_name.strip(),
            "added_at": datetime.now(timezone.utc).isoformat(),
        }
        cache = self._cache("watchlist")
        # add() only writes if the key is absent, so duplicates are rejected atomically
        with self._guard("add to watchlist"):
            added = cache.add(normalized, entry)
        if not added:
            raise WatchlistConflictError(normalized)
        return entry

    def list_watchlist(self) -> list[dict[str, Any]]:
        """Watchlist entries, most recently added first."""
        cache = self._cache("watchlist")
        with self._guard("list watchlist"):
            entries = [entry for key in cache if (entry := cache.get(key)) is not None]
        return sorted(entries, key=lambda e: e["added_at"], reverse=True)

    def remove_from_watchlist(self, entry_id: str) -> bool:
        """Remove an entry by id. Returns False if no entry had that id."""
        cache = self._cache("watchlist")
        with self._guard("remove from watchlist"):
            for key in list(cache):
                entry = cache.get(key)
                if entry is not None and entry["id"] == entry_id:
                    cache.delete(key)
                    return True
        return False

    def close(self) -> None:
        for cache in self._caches.values():
            cache.close()
        self._caches.clear()
