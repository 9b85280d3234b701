"""Tests for the pagination crawler and workspace dump."""

import json
from pathlib import Path
from typing import Dict

import pytest

from mmarchive.errors import ArchiveCorruptError, RemoteError
from mmarchive.sources import layout
from mmarchive.sources.cache import DurableCache
from mmarchive.sources.crawler import MattermostCrawler

C1_PAGES = [
    "channels/C1/posts?before=&per_page=1000",
    "channels/C1/posts?before=p3&per_page=1000",
    "channels/C1/posts?before=p1&per_page=1000",
]


def _snapshot(root: Path) -> Dict[str, bytes]:
    return {str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def test_dump_writes_mirror_layout(mirror_dir: Path) -> None:
    files = set(_snapshot(mirror_dir))

    assert files == {
        "preferences.json",
        "users.json",
        "teams.json",
        "channels.json",
        "channels/C1.json",
        "channels/C1.members.json",
        "channels/C2.json",
        "channels/C2.members.json",
        "posts/C1_.json",
        "posts/C1_p3.json",
        "posts/C1_p1.json",
        "posts/C2_.json",
        "files/f1.png",
    }
    assert (mirror_dir / "files").is_dir()


def test_page_bodies_are_stored_verbatim(mirror_dir: Path, workspace_responses) -> None:
    assert (mirror_dir / "posts" / "C1_p3.json").read_bytes() == workspace_responses[C1_PAGES[1]]
    assert (mirror_dir / "files" / "f1.png").read_bytes() == workspace_responses["files/f1"]


def test_crawl_channel_walks_pages_oldest_ward(temp_dir: Path, fake_fetcher) -> None:
    crawler = MattermostCrawler(DurableCache(temp_dir, fake_fetcher))

    stats = crawler.crawl_channel("C1")

    assert [c for c in fake_fetcher.calls if c.startswith("channels/C1/posts")] == C1_PAGES
    assert stats.pages == 3
    assert stats.pages_fetched == 3
    assert stats.attachments_fetched == 1
    assert stats.attachments_missing == 1


def test_missing_attachment_does_not_abort_crawl(temp_dir: Path, fake_fetcher) -> None:
    crawler = MattermostCrawler(DurableCache(temp_dir, fake_fetcher))

    crawler.crawl_channel("C1")

    assert "files/f2" in fake_fetcher.calls
    assert not (temp_dir / "files" / "f2").exists()
    assert (temp_dir / "posts" / "C1_p1.json").exists()


def test_empty_channel_creates_single_page(temp_dir: Path, fake_fetcher) -> None:
    crawler = MattermostCrawler(DurableCache(temp_dir, fake_fetcher))

    stats = crawler.crawl_channel("C2")

    assert stats.pages == 1
    assert fake_fetcher.calls == ["channels/C2/posts?before=&per_page=1000"]
    assert json.loads((temp_dir / "posts" / "C2_.json").read_bytes())["order"] == []


def test_rerun_fetches_no_cached_pages(mirror_dir: Path, make_fetcher) -> None:
    before = _snapshot(mirror_dir)
    fetcher = make_fetcher()

    stats = MattermostCrawler(DurableCache(mirror_dir, fetcher)).dump()

    # only the purged attachment is retried
    assert fetcher.calls == ["files/f2"]
    assert stats.pages_fetched == 0
    assert _snapshot(mirror_dir) == before


def test_interrupted_crawl_resumes(temp_dir: Path, make_fetcher) -> None:
    interrupted = temp_dir / "interrupted"
    failing = make_fetcher(fail_on=C1_PAGES[2])

    with pytest.raises(RemoteError):
        MattermostCrawler(DurableCache(interrupted, failing)).dump()
    assert (interrupted / "posts" / "C1_p3.json").exists()
    assert not (interrupted / "posts" / "C1_p1.json").exists()

    resumed = make_fetcher()
    MattermostCrawler(DurableCache(interrupted, resumed)).dump()

    assert C1_PAGES[0] not in resumed.calls
    assert C1_PAGES[1] not in resumed.calls
    assert C1_PAGES[2] in resumed.calls

    uninterrupted = temp_dir / "uninterrupted"
    MattermostCrawler(DurableCache(uninterrupted, make_fetcher())).dump()
    assert _snapshot(interrupted) == _snapshot(uninterrupted)


def test_dump_single_channel(temp_dir: Path, fake_fetcher) -> None:
    MattermostCrawler(DurableCache(temp_dir, fake_fetcher)).dump(channel_id="C2")

    assert (temp_dir / "posts" / "C2_.json").exists()
    assert not list((temp_dir / "posts").glob("C1_*"))
    assert (temp_dir / "channels.json").exists()
    assert (temp_dir / "users.json").exists()


def test_remote_failure_aborts_dump(temp_dir: Path, workspace_responses, make_fetcher) -> None:
    responses = dict(workspace_responses)
    responses["channels/C1/members"] = 403
    fetcher = make_fetcher(responses)

    with pytest.raises(RemoteError) as exc_info:
        MattermostCrawler(DurableCache(temp_dir, fetcher)).dump()

    assert exc_info.value.status == 403
    assert not any(c.startswith("channels/C2") for c in fetcher.calls)


def test_cursor_that_does_not_advance_is_an_error(temp_dir: Path, make_fetcher) -> None:
    page = json.dumps({"order": ["x"], "posts": {"x": {"create_at": 1, "message": "m"}}}).encode()
    fetcher = make_fetcher(
        {
            "channels/C3/posts?before=&per_page=1000": page,
            "channels/C3/posts?before=x&per_page=1000": page,
        }
    )

    with pytest.raises(RemoteError):
        MattermostCrawler(DurableCache(temp_dir, fetcher)).crawl_channel("C3")


def test_per_page_is_part_of_resource_not_local_name(temp_dir: Path, make_fetcher) -> None:
    empty = json.dumps({"order": [], "posts": {}}).encode()
    fetcher = make_fetcher({"channels/C4/posts?before=&per_page=200": empty})

    MattermostCrawler(DurableCache(temp_dir, fetcher), per_page=200).crawl_channel("C4")

    assert (temp_dir / "posts" / "C4_.json").exists()


def test_cursor_cycle_across_pages_is_an_error(temp_dir: Path, make_fetcher) -> None:
    def _page(post_id: str) -> bytes:
        return json.dumps({"order": [post_id], "posts": {post_id: {"create_at": 1, "message": "m"}}}).encode()

    fetcher = make_fetcher(
        {
            "channels/C3/posts?before=&per_page=1000": _page("a"),
            "channels/C3/posts?before=a&per_page=1000": _page("b"),
            "channels/C3/posts?before=b&per_page=1000": _page("a"),
        }
    )
    crawler = MattermostCrawler(DurableCache(temp_dir, fetcher))

    with pytest.raises(RemoteError, match="visited twice"):
        crawler.crawl_channel("C3")
    assert len(fetcher.calls) == 3

    # the cached pages still form a cycle; no network calls the second time
    with pytest.raises(RemoteError, match="visited twice"):
        crawler.crawl_channel("C3")
    assert len(fetcher.calls) == 3


def test_malformed_page_is_not_cached_and_resume_refetches(temp_dir: Path, make_fetcher) -> None:
    resource = "channels/C5/posts?before=&per_page=1000"
    broken = make_fetcher({resource: b"<html>maintenance</html>"})

    with pytest.raises(RemoteError, match="malformed posts page"):
        MattermostCrawler(DurableCache(temp_dir, broken)).crawl_channel("C5")
    assert not (temp_dir / "posts" / "C5_.json").exists()

    fixed = make_fetcher({resource: json.dumps({"order": [], "posts": {}}).encode()})
    stats = MattermostCrawler(DurableCache(temp_dir, fixed)).crawl_channel("C5")

    assert fixed.calls == [resource]
    assert stats.pages_fetched == 1
    assert (temp_dir / "posts" / "C5_.json").exists()


def test_malformed_channel_list_is_not_cached(temp_dir: Path, workspace_responses, make_fetcher) -> None:
    responses = dict(workspace_responses)
    responses[layout.CHANNELS[0]] = b"not json"

    with pytest.raises(RemoteError, match="malformed channel list"):
        MattermostCrawler(DurableCache(temp_dir, make_fetcher(responses))).dump()
    assert not (temp_dir / "channels.json").exists()


def test_corrupt_cached_page_is_reported_as_archive_damage(temp_dir: Path, make_fetcher) -> None:
    (temp_dir / "posts").mkdir()
    (temp_dir / "posts" / "C6_.json").write_bytes(b"{truncated")
    fetcher = make_fetcher({})

    with pytest.raises(ArchiveCorruptError):
        MattermostCrawler(DurableCache(temp_dir, fetcher)).crawl_channel("C6")
    assert fetcher.calls == []


def test_close_releases_fetcher(temp_dir: Path, fake_fetcher) -> None:
    MattermostCrawler(DurableCache(temp_dir, fake_fetcher)).close()

    assert fake_fetcher.closed
