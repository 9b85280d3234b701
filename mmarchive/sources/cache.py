"""Write-once file cache backing the mirror.

A local name is fetched from the remote service at most once. After a
successful fetch the body is stored under the mirror root and every later
lookup is served from disk. Entries are never rewritten or deleted.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional, Tuple

from mmarchive.errors import LocalIOError
from mmarchive.metrics.metrics import CACHE_HITS, CACHE_MISSES
from mmarchive.sources.fetcher import ResourceFetcher

logger = logging.getLogger(__name__)


class DurableCache:
    """Map (resource, local name) pairs to files under a mirror root.

    Files are written through a temporary file that is hard-linked into
    place, so a reader never sees a partially written entry and an entry
    created concurrently makes the write fail instead of being overwritten.

    Parameters:
        root: Mirror root directory.
        fetcher: Fetcher used on cache misses. Optional for read-only use.
    """

    def __init__(self, root: Path, fetcher: Optional[ResourceFetcher] = None):
        """Initialize the cache."""
        self.root = Path(root)
        self.fetcher = fetcher

    def path(self, local_name: str) -> Path:
        """Absolute path of a local name."""
        return self.root / local_name

    def exists(self, local_name: str) -> bool:
        """Return True if the entry is already cached."""
        try:
            os.stat(self.path(local_name))
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LocalIOError(f"stat {self.path(local_name)}: {e}") from e
        return True

    def read(self, local_name: str) -> bytes:
        """Return the bytes of a cached entry."""
        try:
            return self.path(local_name).read_bytes()
        except OSError as e:
            raise LocalIOError(f"read {self.path(local_name)}: {e}") from e

    def ensure(
        self,
        resource: str,
        local_name: str,
        ignore_not_found: bool = False,
        validate: Optional[Callable[[bytes], object]] = None,
    ) -> Tuple[bool, Optional[bytes]]:
        """Make sure `local_name` holds the body of `resource`.

        Args:
            resource: Remote resource, relative to the fetcher endpoint.
            local_name: Relative path under the mirror root.
            ignore_not_found: Tolerate a remote 404; nothing is written in that case.
            validate: Called on a freshly fetched body before it is stored. If it
                raises, nothing is written and the exception propagates.

        Returns:
            (newly_fetched, body). body is None only for a tolerated 404, so a
            later run will try the fetch again.

        Raises:
            RemoteError: The fetch failed.
            LocalIOError: The entry could not be read or written.
        """
        if self.exists(local_name):
            CACHE_HITS.inc()
            logger.debug(f"cache HIT {local_name}")
            return False, self.read(local_name)

        CACHE_MISSES.inc()
        logger.debug(f"cache MISS {local_name}")
        if self.fetcher is None:
            raise LocalIOError(f"{self.path(local_name)} is not cached and no fetcher is configured")

        body = self.fetcher.fetch(resource, ignore_not_found=ignore_not_found)
        if body is None:
            return False, None

        if validate is not None:
            validate(body)
        self._write_exclusive(local_name, body)
        return True, body

    def get(self, resource: str, local_name: str, validate: Optional[Callable[[bytes], object]] = None) -> bytes:
        """Return the body of `resource`, fetching it only if not cached."""
        _, body = self.ensure(resource, local_name, validate=validate)
        if body is None:
            raise LocalIOError(f"{self.path(local_name)} was not stored")
        return body

    def _write_exclusive(self, local_name: str, body: bytes) -> None:
        dest = self.path(local_name)
        dir_name = dest.parent
        try:
            dir_name.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=dir_name)
        except OSError as e:
            raise LocalIOError(f"create {dest}: {e}") from e
        try:
            with os.fdopen(fd, "wb") as tmpf:
                tmpf.write(body)
                tmpf.flush()
                os.fsync(tmpf.fileno())
            # link() refuses an existing destination
            os.link(tmp_path, dest)
        except FileExistsError as e:
            raise LocalIOError(f"create {dest}: appeared concurrently") from e
        except OSError as e:
            raise LocalIOError(f"write {dest}: {e}") from e
        finally:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
