"""Models for the Mattermost API payloads kept in the mirror.

Only the fields the archiver reads are declared; everything else in the raw
responses is ignored on parse and preserved byte-for-byte on disk.
"""

from dataclasses import dataclass
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MattermostModel(BaseModel):
    """Base model ignoring unknown fields from the API."""

    model_config = ConfigDict(extra="ignore")


class User(MattermostModel):
    """Workspace user."""

    id: str
    username: str = ""
    first_name: str = ""
    last_name: str = ""


class FileInfo(MattermostModel):
    """Attachment reference found in a post's metadata."""

    id: str
    extension: str = ""


class PostMetadata(MattermostModel):
    """Post metadata block; only attachments are used."""

    files: List[FileInfo] = Field(default_factory=list)

    @field_validator("files", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return [] if value is None else value


class Post(MattermostModel):
    """A single channel post."""

    create_at: int = 0
    user_id: str = ""
    message: str = ""
    metadata: PostMetadata = Field(default_factory=PostMetadata)

    @property
    def attachment_ids(self) -> List[str]:
        """IDs of the files attached to this post."""
        return [f.id for f in self.metadata.files]


class PostsEnvelope(MattermostModel):
    """One page of the posts endpoint.

    `order` lists post IDs newest first. An empty `order` marks the oldest
    (terminal) page of a channel's history.
    """

    order: List[str] = Field(default_factory=list)
    posts: Dict[str, Post] = Field(default_factory=dict)
    prev_post_id: str = ""

    @field_validator("order", mode="before")
    @classmethod
    def _order_none_as_empty(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("posts", mode="before")
    @classmethod
    def _posts_none_as_empty(cls, value: object) -> object:
        return {} if value is None else value

    @property
    def is_terminal(self) -> bool:
        """True if this page ends the channel's history."""
        return len(self.order) == 0

    @property
    def oldest_post_id(self) -> str:
        """Oldest post on the page, used as the next `before` cursor."""
        return self.order[-1]


class Channel(MattermostModel):
    """Channel snapshot."""

    id: str
    name: str = ""
    display_name: str = ""


@dataclass
class ArchivedPost:
    """A post replayed from the mirror together with its stable ID."""

    post_id: str
    post: Post


@dataclass
class ArchiveDocument:
    """Indexable projection of a post."""

    post_id: str
    author_username: str
    body: str
