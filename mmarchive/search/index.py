"""Full-text index over archived posts, backed by SQLite FTS5.

The index lives in its own directory under the mirror root. It is built once
from the mirror and then only opened read-only; an existing index directory
is reused as-is, so refreshing it means deleting the directory first.
"""

import logging
import os
import re
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from typing import Final, Iterable, List, Optional, Tuple

from mmarchive.archive.reader import ArchiveReader
from mmarchive.errors import LocalIOError
from mmarchive.metrics.metrics import OP_ITEMS, OP_LATENCY
from mmarchive.models.mattermost import ArchiveDocument
from mmarchive.sources import layout

logger = logging.getLogger(__name__)

DB_NAME: Final[str] = "posts.db"
BODY_COLUMN: Final[int] = 2
ANSI_HIGHLIGHT: Final[Tuple[str, str]] = ("\x1b[43m", "\x1b[0m")
DEFAULT_LIMIT: Final[int] = 10

_SCHEMA = (
    "CREATE TABLE documents (id INTEGER PRIMARY KEY, post_id TEXT NOT NULL UNIQUE, author TEXT, body TEXT)",
    "CREATE VIRTUAL TABLE posts USING fts5("
    "post_id UNINDEXED, author, body, content='documents', content_rowid='id')",
)
_WORD_RE = re.compile(r"\w+", re.UNICODE)


@dataclass
class SearchHit:
    """One ranked match."""

    post_id: str
    score: float
    fragments: List[str] = field(default_factory=list)


@dataclass
class SearchResult:
    """Hits for a query plus the total number of matching posts."""

    query: str
    total: int
    hits: List[SearchHit]
    took_seconds: float = 0.0

    def summary(self) -> str:
        """Human-readable one-line summary."""
        if not self.hits:
            return f"No matches, took {self.took_seconds:.6f}s"
        return f"{self.total} matches, showing 1 through {len(self.hits)}, took {self.took_seconds:.6f}s"


def build_match_expression(query: str) -> str:
    """Turn free text into an FTS5 expression matching any word in the body.

    Every word is quoted, so operators or column filters typed by the user are
    searched for literally instead of being interpreted.
    """
    terms = _WORD_RE.findall(query or "")
    return " OR ".join(f'body : "{t}"' for t in terms)


class SearchIndex:
    """Handle on an index directory.

    Use `create` to start a new index and `open` for read-only querying.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection, writable: bool):
        """Wrap an open connection; prefer the `create`/`open` constructors."""
        self.path = Path(path)
        self.conn = conn
        self.writable = writable

    @classmethod
    def create(cls, path: Path) -> "SearchIndex":
        """Create an empty index in directory `path`."""
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path / DB_NAME))
            with conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        except (OSError, sqlite3.Error) as e:
            raise LocalIOError(f"create index {path}: {e}") from e
        return cls(path, conn, writable=True)

    @classmethod
    def open(cls, path: Path) -> "SearchIndex":
        """Open an existing index read-only."""
        db_path = Path(path) / DB_NAME
        if not db_path.exists():
            raise LocalIOError(f"open index {path}: {DB_NAME} not found")
        try:
            conn = sqlite3.connect(db_path.resolve().as_uri() + "?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise LocalIOError(f"open index {path}: {e}") from e
        return cls(path, conn, writable=False)

    def close(self) -> None:
        """Close the underlying connection."""
        self.conn.close()

    def __enter__(self) -> "SearchIndex":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add_documents(self, documents: Iterable[ArchiveDocument]) -> int:
        """Index a batch of documents in a single transaction.

        A post ID that is already indexed has its document replaced.

        Returns:
            int: Number of documents written.
        """
        if not self.writable:
            raise LocalIOError(f"index {self.path} is open read-only")
        count = 0
        try:
            with self.conn:
                for doc in documents:
                    self._put(doc)
                    count += 1
        except sqlite3.Error as e:
            raise LocalIOError(f"write index {self.path}: {e}") from e
        return count

    def _put(self, doc: ArchiveDocument) -> None:
        old = self.conn.execute(
            "SELECT id, post_id, author, body FROM documents WHERE post_id = ?", (doc.post_id,)
        ).fetchone()
        if old is not None:
            self.conn.execute(
                "INSERT INTO posts(posts, rowid, post_id, author, body) VALUES('delete', ?, ?, ?, ?)", old
            )
            self.conn.execute("DELETE FROM documents WHERE id = ?", (old[0],))
        cur = self.conn.execute(
            "INSERT INTO documents(post_id, author, body) VALUES (?, ?, ?)",
            (doc.post_id, doc.author_username, doc.body),
        )
        self.conn.execute(
            "INSERT INTO posts(rowid, post_id, author, body) VALUES (?, ?, ?, ?)",
            (cur.lastrowid, doc.post_id, doc.author_username, doc.body),
        )

    def count(self) -> int:
        """Number of indexed documents."""
        return int(self.conn.execute("SELECT count(*) FROM documents").fetchone()[0])

    def search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        highlight: Tuple[str, str] = ANSI_HIGHLIGHT,
    ) -> SearchResult:
        """Run a free-text match query against post bodies.

        Hits are ranked by BM25, ties broken by post ID so the same query on
        the same index always returns the same list.

        Args:
            query: Free text; no query language is interpreted.
            limit: Maximum number of hits returned.
            highlight: (start, end) markers wrapped around matched terms.

        Returns:
            SearchResult: Ranked hits with highlighted fragments.
        """
        start = perf_counter()
        expression = build_match_expression(query)
        if not expression:
            return SearchResult(query=query, total=0, hits=[], took_seconds=perf_counter() - start)

        try:
            total = int(self.conn.execute("SELECT count(*) FROM posts WHERE posts MATCH ?", (expression,)).fetchone()[0])
            rows = self.conn.execute(
                "SELECT post_id, bm25(posts) AS score, snippet(posts, ?, ?, ?, '…', 32) "
                "FROM posts WHERE posts MATCH ? ORDER BY score, post_id LIMIT ?",
                (BODY_COLUMN, highlight[0], highlight[1], expression, int(limit)),
            ).fetchall()
        except sqlite3.Error as e:
            raise LocalIOError(f"query index {self.path}: {e}") from e

        hits = [SearchHit(post_id=r[0], score=float(r[1]), fragments=[r[2]] if r[2] else []) for r in rows]
        return SearchResult(query=query, total=total, hits=hits, took_seconds=perf_counter() - start)


class IndexBuilder:
    """Build the index for a mirror exactly once.

    Parameters:
        root: Mirror root directory.
        reader: Optional reader over the same mirror.
    """

    def __init__(self, root: Path, reader: Optional[ArchiveReader] = None):
        """Initialize the builder."""
        self.root = Path(root)
        self.reader = reader or ArchiveReader(self.root)
        self.documents_indexed = 0

    @property
    def index_path(self) -> Path:
        """Directory holding the index."""
        return self.root / layout.INDEX_DIR

    def build(self) -> SearchIndex:
        """Return the mirror's index, building it first if it does not exist.

        The index is written in a temporary sibling directory and renamed
        into place when complete, so an existing directory is always a
        finished index.
        """
        if self.index_path.exists():
            logger.info(f"Found index {self.index_path}")
            return SearchIndex.open(self.index_path)

        logger.info(f"Creating index {self.index_path}")
        op_start = perf_counter()
        try:
            tmp_dir = Path(tempfile.mkdtemp(prefix=f".{layout.INDEX_DIR}.", dir=self.root))
        except OSError as e:
            raise LocalIOError(f"create index {self.index_path}: {e}") from e

        try:
            index = SearchIndex.create(tmp_dir)
            try:
                self._index_channels(index)
            finally:
                index.close()
            os.rename(tmp_dir, self.index_path)
        except OSError as e:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise LocalIOError(f"create index {self.index_path}: {e}") from e
        except BaseException:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise

        op_elapsed = perf_counter() - op_start
        logger.info(f"build_index: done documents={self.documents_indexed} elapsed={op_elapsed:.3f}s")
        OP_LATENCY.labels(operation="build_index").observe(op_elapsed)
        OP_ITEMS.labels(operation="build_index").observe(self.documents_indexed)
        return SearchIndex.open(self.index_path)

    def _index_channels(self, index: SearchIndex) -> None:
        users = self.reader.user_map()
        for c in self.reader.load_channels():
            logger.info(f"Indexing {c.id} {c.display_name}")
            self.documents_indexed += index.add_documents(self.reader.iter_documents(c.id, users))


def build_index(root: Path) -> SearchIndex:
    """Build (or reuse) the index under `root` and open it for querying."""
    return IndexBuilder(root).build()
