"""File-based cache for fetched price histories."""

import hashlib
import time
from pathlib import Path

import pandas as pd

from folio.config import Paths, section


class DataCache:
    """Parquet-backed DataFrame cache with TTL support.

    Instances are passed explicitly to the clients that use them; nothing
    here is module-level state.
    """

    def __init__(self, category: str = "price_historical", cache_dir: Path | None = None):
        self.cache_dir = (cache_dir or Paths.DATA_CACHE) / category
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        ttl_config = section("cache").get("ttl_hours", {})
        self.ttl_seconds = ttl_config.get(category, 24) * 3600

    def _key_path(self, key: str, ext: str = "parquet") -> Path:
        hashed = hashlib.md5(key.encode()).hexdigest()
        return self.cache_dir / f"{hashed}.{ext}"

    def get_df(self, key: str) -> pd.DataFrame | None:
        """Retrieve cached DataFrame if not expired."""
        path = self._key_path(key)
        if not path.exists():
            return None
        if time.time() - path.stat().st_mtime > self.ttl_seconds:
            path.unlink()
            return None
        return pd.read_parquet(path)

    def set_df(self, key: str, df: pd.DataFrame) -> None:
        """Store DataFrame as parquet."""
        df.to_parquet(self._key_path(key))
