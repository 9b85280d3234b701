"""Offline replay of the mirror.

The reader never touches the network. It rebuilds a channel's history from
the cached pages by following the `before` cursors from the newest page down
to the terminal one, then emitting posts oldest first.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List

from pydantic import TypeAdapter, ValidationError

from mmarchive.errors import ArchiveCorruptError, LocalIOError
from mmarchive.models.mattermost import ArchivedPost, ArchiveDocument, Channel, PostsEnvelope, User
from mmarchive.sources import layout

logger = logging.getLogger(__name__)

_CHANNEL_LIST = TypeAdapter(List[Channel])
_USER_LIST = TypeAdapter(List[User])


class ArchiveReader:
    """Read channels, users and posts back from a mirror directory.

    Parameters:
        root: Mirror root directory.
    """

    def __init__(self, root: Path):
        """Initialize the reader."""
        self.root = Path(root)

    def _read(self, local_name: str) -> bytes:
        path = self.root / local_name
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ArchiveCorruptError(f"{path} is missing from the mirror") from e
        except OSError as e:
            raise LocalIOError(f"read {path}: {e}") from e

    def load_channels(self) -> List[Channel]:
        """Return the cached channel list."""
        body = self._read(layout.CHANNELS[1])
        try:
            return _CHANNEL_LIST.validate_json(body)
        except ValidationError as e:
            raise ArchiveCorruptError(f"{layout.CHANNELS[1]}: {e}") from e

    def load_users(self) -> List[User]:
        """Return the cached user snapshot."""
        body = self._read(layout.USERS[1])
        try:
            return _USER_LIST.validate_json(body)
        except ValidationError as e:
            raise ArchiveCorruptError(f"{layout.USERS[1]}: {e}") from e

    def user_map(self) -> Dict[str, str]:
        """Map user IDs to usernames."""
        return {u.id: u.username for u in self.load_users()}

    def load_page(self, channel_id: str, before: str) -> PostsEnvelope:
        """Load the page fetched for `channel_id` with cursor `before`."""
        local_name = layout.posts_page_name(channel_id, before)
        body = self._read(local_name)
        try:
            return PostsEnvelope.model_validate_json(body)
        except ValidationError as e:
            raise ArchiveCorruptError(f"{local_name}: {e}") from e

    def page_chain(self, channel_id: str) -> List[PostsEnvelope]:
        """Return the channel's pages newest first, excluding the terminal page.

        Raises:
            ArchiveCorruptError: A page is missing or malformed, or the cursors loop.
        """
        pages: List[PostsEnvelope] = []
        seen = set()
        before = ""
        while True:
            if before in seen:
                raise ArchiveCorruptError(f"channel {channel_id}: cursor {before!r} visited twice")
            seen.add(before)
            page = self.load_page(channel_id, before)
            if page.is_terminal:
                return pages
            pages.append(page)
            before = page.oldest_post_id

    def replay(self, channel_id: str) -> List[ArchivedPost]:
        """Reconstruct a channel's posts in chronological order (oldest first).

        Reverse the result for newest-first display.
        """
        posts: List[ArchivedPost] = []
        for page in reversed(self.page_chain(channel_id)):
            for post_id in reversed(page.order):
                post = page.posts.get(post_id)
                if post is None:
                    raise ArchiveCorruptError(f"channel {channel_id}: post {post_id} listed but not present")
                posts.append(ArchivedPost(post_id=post_id, post=post))
        logger.debug(f"replay: channel={channel_id} posts={len(posts)}")
        return posts

    def iter_documents(self, channel_id: str, users: Dict[str, str]) -> Iterator[ArchiveDocument]:
        """Yield one indexable document per post, oldest first.

        Authors missing from `users` are indexed with an empty username.
        """
        for archived in self.replay(channel_id):
            yield ArchiveDocument(
                post_id=archived.post_id,
                author_username=users.get(archived.post.user_id, ""),
                body=archived.post.message,
            )
