import hashlib
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .types import UrlRecord


logger = logging.getLogger(__name__)

TABLE_NAME = "url_index"


class ContentStore:
    """Writes fetched bodies under a flat directory, one file per URL named by its md5."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def name_for(url: str) -> str:
        return hashlib.md5(url.encode("utf-8")).hexdigest()

    def path_for(self, url: str) -> str:
        return str(self.base_dir / self.name_for(url))

    def save(self, url: str, body: bytes) -> str:
        path = self.path_for(url)
        Path(path).write_bytes(body)
        logger.debug("Saved %d bytes of %s to %s", len(body), url, path)
        return path


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning("Unreadable visited timestamp %r", value)
        return None


class UrlIndex:
    """Durable record of every discovered URL, its visit time and stored content path.

    Every statement is parameterized; writers share one connection behind a lock.
    Read errors are logged and reported as "not found".
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._conn:
            # visited defaults to now, but inserts pass NULL explicitly
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {TABLE_NAME} ("
                " url TEXT UNIQUE NOT NULL,"
                " visited DATETIME DEFAULT CURRENT_TIMESTAMP,"
                " path TEXT DEFAULT NULL)"
            )
            self._conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_visited ON {TABLE_NAME}(visited)")

    def _touch(self, url: str) -> None:
        self._conn.execute(f"UPDATE {TABLE_NAME} SET visited = CURRENT_TIMESTAMP WHERE url = ?", (url,))

    def _set_path(self, url: str, content_path: str) -> None:
        self._conn.execute(f"UPDATE {TABLE_NAME} SET path = ? WHERE url = ?", (content_path, url))

    def record_discovered(self, url: str) -> None:
        """Insert ``url`` as unvisited; if it is already known, stamp it visited instead."""
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(f"INSERT INTO {TABLE_NAME}(url, visited, path) VALUES (?, NULL, NULL)", (url,))
                return
            except sqlite3.IntegrityError:
                pass
            except sqlite3.Error as exc:
                logger.warning("Could not record %s: %s", url, exc)
                return
            try:
                with self._conn:
                    self._touch(url)
            except sqlite3.Error as exc:
                logger.warning("Could not touch %s: %s", url, exc)

    def add_if_absent(self, url: str) -> bool:
        """Insert ``url`` as unvisited. Returns True only when this call created the record."""
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        f"INSERT OR IGNORE INTO {TABLE_NAME}(url, visited, path) VALUES (?, NULL, NULL)", (url,)
                    )
                    return cur.rowcount > 0
            except sqlite3.Error as exc:
                logger.warning("Could not record %s: %s", url, exc)
                return False

    def record_fetched(self, url: str, content_path: str) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._set_path(url, content_path)
            except sqlite3.Error as exc:
                logger.warning("Could not store path for %s: %s", url, exc)

    def mark_visited(self, url: str, content_path: str) -> None:
        """Set the content path and the visited timestamp of ``url`` in one transaction."""
        with self._lock:
            try:
                with self._conn:
                    self._set_path(url, content_path)
                    self._touch(url)
            except sqlite3.Error as exc:
                logger.warning("Could not mark %s visited: %s", url, exc)

    def _fetch_row(self, url: str) -> Optional[tuple]:
        with self._lock:
            try:
                cur = self._conn.execute(f"SELECT url, visited, path FROM {TABLE_NAME} WHERE url = ? LIMIT 1", (url,))
                return cur.fetchone()
            except sqlite3.Error as exc:
                logger.warning("Index lookup for %s failed: %s", url, exc)
                return None

    def exists(self, url: str) -> bool:
        return self._fetch_row(url) is not None

    def is_visited(self, url: str) -> bool:
        row = self._fetch_row(url)
        return row is not None and row[1] is not None

    def get(self, url: str) -> Optional[UrlRecord]:
        row = self._fetch_row(url)
        if row is None:
            return None
        return UrlRecord(url=row[0], visited_at=_parse_timestamp(row[1]), content_path=row[2])

    def unvisited_urls(self) -> Iterator[str]:
        """Snapshot of every URL not yet visited, taken when this is called."""
        with self._lock:
            try:
                cur = self._conn.execute(f"SELECT url FROM {TABLE_NAME} WHERE visited IS NULL ORDER BY rowid")
                urls = [row[0] for row in cur.fetchall()]
            except sqlite3.Error as exc:
                logger.warning("Could not list unvisited urls: %s", exc)
                urls = []
        return iter(urls)

    def iter_urls(self, batch_size: int = 10000) -> Iterator[str]:
        """Yield every known URL in batches. The lock is only held while a batch is read."""
        last_rowid = 0
        while True:
            with self._lock:
                try:
                    cur = self._conn.execute(
                        f"SELECT rowid, url FROM {TABLE_NAME} WHERE rowid > ? ORDER BY rowid LIMIT ?",
                        (last_rowid, batch_size),
                    )
                    rows = cur.fetchall()
                except sqlite3.Error as exc:
                    logger.warning("Could not list known urls: %s", exc)
                    return
            if not rows:
                return
            last_rowid = rows[-1][0]
            for _rowid, url in rows:
                yield url

    def counts(self) -> Tuple[int, int]:
        """Return (known urls, visited urls)."""
        with self._lock:
            try:
                cur = self._conn.execute(f"SELECT COUNT(*), COUNT(visited) FROM {TABLE_NAME}")
                total, visited = cur.fetchone()
                return int(total), int(visited)
            except sqlite3.Error as exc:
                logger.warning("Could not count urls: %s", exc)
                return 0, 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()
