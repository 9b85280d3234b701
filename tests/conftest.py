import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

from mmarchive.errors import RemoteError
from mmarchive.sources.cache import DurableCache
from mmarchive.sources.crawler import MattermostCrawler


class FakeFetcher:
    """In-memory stand-in for ResourceFetcher.

    `responses` maps a resource to its body, or to an HTTP status for errors.
    Resources not listed answer 404.
    """

    def __init__(self, responses: Dict[str, Union[bytes, int]], fail_on: Optional[str] = None):
        self.responses = responses
        self.fail_on = fail_on
        self.calls: List[str] = []
        self.closed = False

    def fetch(self, resource: str, ignore_not_found: bool = False) -> Optional[bytes]:
        self.calls.append(resource)
        if resource == self.fail_on:
            raise RemoteError(resource, reason="connection reset")
        value = self.responses.get(resource, 404)
        if isinstance(value, int):
            if value == 404 and ignore_not_found:
                return None
            raise RemoteError(resource, status=value)
        return value

    def close(self) -> None:
        self.closed = True


def _j(obj: object) -> bytes:
    return json.dumps(obj).encode("utf-8")


def _post(create_at: int, user_id: str, message: str, files: Optional[list] = None) -> dict:
    return {
        "create_at": create_at,
        "user_id": user_id,
        "message": message,
        "metadata": {"files": files} if files else {},
    }


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def workspace_responses() -> Dict[str, Union[bytes, int]]:
    """A workspace with a two-page channel C1 and an empty channel C2."""
    return {
        "users/me/preferences": _j([{"category": "display_settings", "name": "use_military_time", "value": "true"}]),
        "users?per_page=1000": _j(
            [
                {"id": "u1", "username": "alice", "first_name": "Alice", "last_name": "A"},
                {"id": "u2", "username": "bob", "first_name": "Bob", "last_name": "B"},
            ]
        ),
        "teams": _j([{"id": "t1", "name": "team"}]),
        "users/me/channels?include_total_count=true&per_page=1000&include_deleted=true": _j(
            [
                {"id": "C1", "name": "town-square", "display_name": "Town Square"},
                {"id": "C2", "name": "quiet", "display_name": "Quiet"},
            ]
        ),
        "channels/C1": _j({"id": "C1", "name": "town-square", "display_name": "Town Square"}),
        "channels/C1/members": _j([{"user_id": "u1"}, {"user_id": "u2"}]),
        "channels/C2": _j({"id": "C2", "name": "quiet", "display_name": "Quiet"}),
        "channels/C2/members": _j([{"user_id": "u1"}]),
        "channels/C1/posts?before=&per_page=1000": _j(
            {
                "order": ["p4", "p3"],
                "posts": {
                    "p4": _post(4000, "u2", "deploy finished", files=[{"id": "f2", "extension": ""}]),
                    "p3": _post(3000, "u1", "starting the deploy now", files=[{"id": "f1", "extension": "png"}]),
                },
                "prev_post_id": "p2",
            }
        ),
        "channels/C1/posts?before=p3&per_page=1000": _j(
            {
                "order": ["p2", "p1"],
                "posts": {
                    "p2": _post(2000, "u9", "lunch anyone?"),
                    "p1": _post(1000, "u1", "hello world"),
                },
                "prev_post_id": "",
            }
        ),
        "channels/C1/posts?before=p1&per_page=1000": _j({"order": [], "posts": {}, "prev_post_id": ""}),
        "channels/C2/posts?before=&per_page=1000": _j({"order": [], "posts": {}, "prev_post_id": ""}),
        "files/f1": b"\x89PNG\r\n\x1a\nfake-image",
        # f2 was purged remotely: 404
    }


@pytest.fixture
def fake_fetcher(workspace_responses: Dict[str, Union[bytes, int]]) -> FakeFetcher:
    return FakeFetcher(workspace_responses)


@pytest.fixture
def make_fetcher(workspace_responses: Dict[str, Union[bytes, int]]):
    def _make(
        responses: Optional[Dict[str, Union[bytes, int]]] = None, fail_on: Optional[str] = None
    ) -> FakeFetcher:
        return FakeFetcher(workspace_responses if responses is None else responses, fail_on=fail_on)

    return _make


@pytest.fixture
def mirror_dir(tmp_path: Path, fake_fetcher: FakeFetcher) -> Path:
    """A mirror fully crawled from the fake workspace."""
    root = tmp_path / "mirror"
    MattermostCrawler(DurableCache(root, fake_fetcher)).dump()
    return root


@pytest.fixture
def write_json():
    def _write(root: Path, local_name: str, obj: object) -> Path:
        path = Path(root) / local_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_j(obj))
        return path

    return _write
