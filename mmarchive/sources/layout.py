"""Remote resource paths and their local names in the mirror.

Every function here is pure: the same inputs always give the same resource
and local name, which is what lets the cache answer without contacting the
remote service.
"""

from typing import Final, Tuple

SUBDIRS: Final[Tuple[str, ...]] = ("channels", "files", "posts")

PREFERENCES: Final = ("users/me/preferences", "preferences.json")
USERS: Final = ("users?per_page=1000", "users.json")
TEAMS: Final = ("teams", "teams.json")
CHANNELS: Final = (
    "users/me/channels?include_total_count=true&per_page=1000&include_deleted=true",
    "channels.json",
)

INDEX_DIR: Final[str] = "index.fts"


def channel(channel_id: str) -> Tuple[str, str]:
    """Channel snapshot resource and local name."""
    return f"channels/{channel_id}", f"channels/{channel_id}.json"


def channel_members(channel_id: str) -> Tuple[str, str]:
    """Channel member list resource and local name."""
    return f"channels/{channel_id}/members", f"channels/{channel_id}.members.json"


def posts_page(channel_id: str, before: str, per_page: int = 1000) -> Tuple[str, str]:
    """Posts page resource and local name, keyed by the cursor used to fetch it."""
    return (
        f"channels/{channel_id}/posts?before={before}&per_page={per_page}",
        posts_page_name(channel_id, before),
    )


def posts_page_name(channel_id: str, before: str) -> str:
    """Local name of the page fetched with `before`; "" is the newest page."""
    return f"posts/{channel_id}_{before}.json"


def attachment(file_id: str, extension: str = "") -> Tuple[str, str]:
    """Attachment resource and local name; the extension is omitted if unknown."""
    ext = f".{extension}" if extension else ""
    return f"files/{file_id}", f"files/{file_id}{ext}"
