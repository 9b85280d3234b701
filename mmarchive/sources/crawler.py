"""Mattermost crawler: mirrors a workspace into the local cache.

The crawler walks each channel's posts endpoint from the newest page
backwards, storing every page and every attachment it references. Pages
are keyed by the `before` cursor used to fetch them, so a run that was
interrupted picks up where it stopped: cached pages are read back from disk
and only unseen pages hit the network.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from functools import partial
from typing import Any, Callable, List, Optional, Set

from pydantic import TypeAdapter, ValidationError

from mmarchive.errors import ArchiveCorruptError, LocalIOError, RemoteError
from mmarchive.metrics.metrics import OP_ITEMS, OP_LATENCY
from mmarchive.models.config import ArchiveConfig
from mmarchive.models.mattermost import Channel, PostsEnvelope
from mmarchive.sources import layout
from mmarchive.sources.cache import DurableCache
from mmarchive.sources.fetcher import ResourceFetcher

logger = logging.getLogger(__name__)

_CHANNEL_LIST = TypeAdapter(List[Channel])


@dataclass
class CrawlStats:
    """Counters for one crawl run."""

    pages: int = 0
    pages_fetched: int = 0
    attachments_fetched: int = 0
    attachments_missing: int = 0

    def add(self, other: "CrawlStats") -> None:
        """Accumulate another run's counters into this one."""
        self.pages += other.pages
        self.pages_fetched += other.pages_fetched
        self.attachments_fetched += other.attachments_fetched
        self.attachments_missing += other.attachments_missing


class MattermostCrawler:
    """Mirror channels, posts and attachments of a Mattermost workspace.

    Parameters:
        cache: Cache rooted at the mirror directory, with a fetcher attached.
        per_page: Posts requested per page.
    """

    @classmethod
    def create(cls, config: ArchiveConfig) -> "MattermostCrawler":
        """Create a crawler from configuration."""
        config.require("endpoint", "cookie", "dir")
        fetcher = ResourceFetcher(
            endpoint=config.endpoint or "",
            cookie=config.cookie or "",
            timeout=config.request_timeout,
        )
        cache = DurableCache(config.mirror_root, fetcher)
        return cls(cache=cache, per_page=config.per_page)

    def __init__(self, cache: DurableCache, per_page: int = 1000):
        """Initialize the crawler."""
        self.cache = cache
        self.per_page = per_page

    def close(self) -> None:
        """Release the fetcher's HTTP session, if any."""
        if self.cache.fetcher is not None:
            self.cache.fetcher.close()

    @property
    def root(self) -> Path:
        """Mirror root directory."""
        return self.cache.root

    def prepare(self) -> None:
        """Create the fixed mirror subdirectories."""
        for subdir in layout.SUBDIRS:
            try:
                (self.root / subdir).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalIOError(f"mkdir {self.root / subdir}: {e}") from e

    def dump(self, channel_id: Optional[str] = None) -> CrawlStats:
        """Mirror the workspace, or a single channel of it.

        Args:
            channel_id: If set, only this channel's data is crawled. The
                workspace-level snapshots are stored regardless.

        Returns:
            CrawlStats: Totals over all crawled channels.
        """
        op_start = perf_counter()
        self.prepare()

        for resource, local_name in (layout.PREFERENCES, layout.USERS, layout.TEAMS):
            self.cache.ensure(resource, local_name)

        body = self.cache.get(*layout.CHANNELS, validate=self._parse_channels)
        channels = self._load(_CHANNEL_LIST.validate_json, layout.CHANNELS[1], body)
        logger.info(f"Found {len(channels)} channels")

        totals = CrawlStats()
        crawled = 0
        for c in channels:
            if channel_id and c.id != channel_id:
                continue
            totals.add(self.dump_channel(c.id))
            crawled += 1

        if channel_id and crawled == 0:
            logger.warning(f"Channel {channel_id} is not in the channel list")

        op_elapsed = perf_counter() - op_start
        logger.info(
            f"dump: done channels={crawled} pages={totals.pages} fetched={totals.pages_fetched} "
            f"attachments={totals.attachments_fetched} elapsed={op_elapsed:.3f}s"
        )
        OP_LATENCY.labels(operation="dump").observe(op_elapsed)
        OP_ITEMS.labels(operation="dump").observe(crawled)
        return totals

    def dump_channel(self, channel_id: str) -> CrawlStats:
        """Store the channel snapshot and member list, then crawl its posts."""
        self.cache.ensure(*layout.channel(channel_id))
        self.cache.ensure(*layout.channel_members(channel_id))
        return self.crawl_channel(channel_id)

    def crawl_channel(self, channel_id: str) -> CrawlStats:
        """Walk a channel's posts from newest to oldest page.

        The first request uses an empty cursor (most recent page). Each next
        cursor is the oldest post ID of the current page. The walk ends on a
        page with an empty `order`, which is stored like any other page. A
        fetched page is only stored once it parses, and a cursor met twice
        aborts the walk.

        Args:
            channel_id: Channel to crawl.

        Returns:
            CrawlStats: Pages and attachments visited in this run.
        """
        op_start = perf_counter()
        stats = CrawlStats()
        seen: Set[str] = set()
        before = ""
        while True:
            resource, local_name = layout.posts_page(channel_id, before, self.per_page)
            if before in seen:
                raise RemoteError(resource, reason=f"cursor {before!r} visited twice")
            seen.add(before)

            fetched, body = self.cache.ensure(resource, local_name, validate=partial(self._parse_page, resource))
            stats.pages += 1
            if fetched:
                stats.pages_fetched += 1

            page = self._load(PostsEnvelope.model_validate_json, local_name, body or b"")
            logger.debug(f"crawl_channel: page channel={channel_id} before={before!r} posts={len(page.order)}")

            self._ensure_attachments(page, stats)

            if page.is_terminal:
                break

            before = page.oldest_post_id

        op_elapsed = perf_counter() - op_start
        logger.info(
            f"crawl_channel: done channel={channel_id} pages={stats.pages} fetched={stats.pages_fetched} "
            f"elapsed={op_elapsed:.3f}s"
        )
        OP_LATENCY.labels(operation="crawl_channel").observe(op_elapsed)
        OP_ITEMS.labels(operation="crawl_channel").observe(stats.pages)
        return stats

    def _ensure_attachments(self, page: PostsEnvelope, stats: CrawlStats) -> None:
        # Attachments can be purged remotely while the post survives.
        for post in page.posts.values():
            for f in post.metadata.files:
                fetched, body = self.cache.ensure(*layout.attachment(f.id, f.extension), ignore_not_found=True)
                if body is None:
                    stats.attachments_missing += 1
                elif fetched:
                    stats.attachments_fetched += 1

    @staticmethod
    def _load(parse: Callable[[bytes], Any], local_name: str, body: bytes) -> Any:
        # only reached with bodies already on disk
        try:
            return parse(body)
        except ValidationError as e:
            raise ArchiveCorruptError(f"{local_name}: {e}") from e

    @staticmethod
    def _parse_page(resource: str, body: bytes) -> PostsEnvelope:
        try:
            return PostsEnvelope.model_validate_json(body)
        except ValidationError as e:
            raise RemoteError(resource, reason=f"malformed posts page: {e}") from e

    @staticmethod
    def _parse_channels(body: bytes) -> List[Channel]:
        try:
            return _CHANNEL_LIST.validate_json(body)
        except ValidationError as e:
            raise RemoteError(layout.CHANNELS[0], reason=f"malformed channel list: {e}") from e

