"""
Disk cache for downloaded market data.

Downloads (benchmark index prices) are stored by a hash of their query
parameters so that repeated pipeline runs over the same date range do not
hit the network again.
"""

import hashlib
import json
import logging
import pickle
from pathlib import Path
from typing import Any, Optional
from stockclusters.errors import CacheError

logger = logging.getLogger(__name__)


class DataCache:
    """
    A disk-based cache keyed by query parameters.

    Entries live in per-namespace subdirectories of cache_dir, one pickle
    file per query.

    Representation Invariants:
        - cache_dir exists and is a directory
        - entry files are named by the hash of their query parameters
    """

    def __init__(self, cache_dir: str = ".cache", namespace: str = "prices"):
        """
        Initialize the cache.

        Postconditions:
            - cache_dir / namespace exists as a directory
        """
        if not namespace:
            raise ValueError("namespace cannot be empty")
        self.cache_dir = Path(cache_dir) / namespace
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def key(query_params: dict) -> str:
        """Return the stable hash of a query (key order does not matter)."""
        payload = json.dumps(query_params, sort_keys=True, default=str)
        return hashlib.md5(payload.encode()).hexdigest()

    def _path(self, query_params: dict) -> Path:
        return self.cache_dir / f"{self.key(query_params)}.pkl"

    def get(self, query_params: dict) -> Optional[Any]:
        """
        Retrieve cached data for a query.

        Returns:
            The cached object, or None on a cache miss

        Raises:
            CacheError: If the entry exists but cannot be read
        """
        path = self._path(query_params)
        if not path.exists():
            logger.debug("cache miss for %s", query_params)
            return None

        try:
            with open(path, "rb") as f:
                return pickle.load(f)
        except Exception as e:
            raise CacheError(f"Failed to read cache file {path.name}: {e}") from e

    def set(self, query_params: dict, data: Any) -> None:
        """Store data for a query, replacing any previous entry."""
        path = self._path(query_params)
        try:
            with open(path, "wb") as f:
                pickle.dump(data, f)
        except Exception as e:
            raise CacheError(f"Failed to write cache file {path.name}: {e}") from e

    def exists(self, query_params: dict) -> bool:
        return self._path(query_params).exists()

    def clear(self) -> int:
        """Remove every entry in this namespace and return how many were removed."""
        removed = 0
        for path in self.cache_dir.glob("*.pkl"):
            path.unlink()
            removed += 1
        return removed
