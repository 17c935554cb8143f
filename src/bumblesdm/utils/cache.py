"""
On-disk cache for parsed boundaries and layer stacks.

Entries are pickles named after a digest of the cache key and the
fingerprints of the files they were parsed from. Replacing a downloaded
file changes the digest, so stale entries are never served.
"""

import hashlib
import pickle
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

CACHE_VERSION = "v1"
_SUFFIX = ".pkl"


def file_fingerprint(path: Path) -> str:
    """Short digest of a file's path, mtime and size ("missing" if absent)."""
    if not path.exists():
        return "missing"
    stat = path.stat()
    content = f"{path}:{stat.st_mtime_ns}:{stat.st_size}"
    return hashlib.md5(content.encode()).hexdigest()[:8]


class CacheManager:
    """
    Pickle store for expensive parse results.

    Keys name the parse, e.g. ``"gadm:USA:1"`` or
    ``"layers:WorldClimLayerSource:USA:bio:10m"``. The part before the
    first colon prefixes the file name so entries can be told apart on disk.
    """

    def __init__(self, cache_dir: Path, version: str = CACHE_VERSION) -> None:
        self.cache_dir = cache_dir
        self.version = version
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str, source_files: Sequence[Path] | None = None) -> Path:
        """
        Cache file for a key and its source files.

        Args:
            key: Operation key.
            source_files: Files the value was parsed from.

        Returns:
            Path of the pickle (which may not exist yet).
        """
        parts = [key, *(file_fingerprint(p) for p in source_files or ())]
        digest = hashlib.md5("|".join(parts).encode()).hexdigest()[:16]
        prefix = key.split(":", 1)[0]
        return self.cache_dir / f"{prefix}-{digest}-{self.version}{_SUFFIX}"

    def get(self, key: str, source_files: Sequence[Path] | None = None) -> Any | None:
        """Return the cached value, or None on a miss or an unreadable entry."""
        path = self.path_for(key, source_files)
        if not path.exists():
            log.debug("Cache miss", key=key)
            return None

        try:
            with path.open("rb") as f:
                value = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError) as e:
            log.warning("Discarding unreadable cache entry", key=key, path=str(path), error=str(e))
            path.unlink(missing_ok=True)
            return None

        log.debug("Cache hit", key=key)
        return value

    def set(self, key: str, value: Any, source_files: Sequence[Path] | None = None) -> Path:
        """
        Store a value.

        The pickle is written next to its final name and moved into place,
        so a reader never sees a partial entry. Write failures are logged
        and leave the cache without the entry.

        Returns:
            Path of the cache file.
        """
        path = self.path_for(key, source_files)
        partial = path.with_suffix(".part")
        try:
            with partial.open("wb") as f:
                pickle.dump(value, f, protocol=pickle.HIGHEST_PROTOCOL)
            partial.replace(path)
        except OSError as e:
            log.warning("Cache write failed", key=key, error=str(e))
            partial.unlink(missing_ok=True)
            return path

        log.debug("Cached", key=key, path=str(path))
        return path
