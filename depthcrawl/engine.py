import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .bloom_filter import BloomFilter, create_bloom_filter
from .config import CrawlConfig
from .metrics import Metrics, StatsLogger
from .net import HttpClient, fetch_body
from .parsing import Extractor
from .rate import RateLimiter
from .storage import ContentStore, UrlIndex
from .types import FrontierEntry, HttpClientProtocol


@dataclass
class _Frame:
    url: str
    depth: int
    links: Iterator[str]


class Crawler:
    def __init__(
        self,
        config: CrawlConfig,
        http_client: HttpClientProtocol | None = None,
        index: UrlIndex | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.config = config
        self.content = ContentStore(config.base_dir)
        self.http = http_client or HttpClient(config.user_agent, config.request_timeout, config.concurrency)
        self.index = index or UrlIndex(config.index_path)
        self.rate = rate_limiter or RateLimiter(config.delay_seconds)
        self.metrics = Metrics()
        self.stats_thread: Optional[StatsLogger] = None
        self.frontier: "queue.Queue[FrontierEntry]" = queue.Queue()
        # urls admitted by this process, whether or not the fetch succeeded
        self.visited: Dict[str, bool] = {}
        self.visited_lock = threading.Lock()
        self.pages_crawled = 0
        self.pages_lock = threading.Lock()
        self._pending = 0
        self._pending_lock = threading.Lock()
        self._seen: Optional[BloomFilter] = None

        if config.use_bloom:
            self._seen = create_bloom_filter(expected_urls=config.expected_urls)
            self._seen.update(self.index.iter_urls())

        resumed = 0
        for url in self.index.unvisited_urls():
            self._submit(FrontierEntry(url, 0))
            resumed += 1
        if resumed:
            logging.info("Resuming %d unvisited urls from %s", resumed, config.index_path)
        self._submit(FrontierEntry(config.seed_url, 0))

    def _submit(self, entry: FrontierEntry) -> None:
        with self._pending_lock:
            self._pending += 1
        self.frontier.put(entry)

    def _entry_done(self) -> None:
        with self._pending_lock:
            self._pending -= 1

    def _drained(self) -> bool:
        with self._pending_lock:
            return self._pending <= 0

    def _known(self, url: str) -> bool:
        if self._seen is not None and url not in self._seen:
            return False
        return self.index.exists(url)

    def _discover(self, url: str) -> bool:
        """Record ``url`` in the index; True only if this call created its record."""
        created = self.index.add_if_absent(url)
        if self._seen is not None:
            self._seen.add(url)
        if created:
            self.metrics.record_discovered()
        return created

    def _admit(self, url: str, depth: int) -> bool:
        with self.visited_lock:
            if self.visited.get(url) or self.index.is_visited(url):
                logging.debug("Already visited: %s", url)
                return False
            if depth > self.config.max_depth:
                logging.debug("Depth %d over limit for %s", depth, url)
                return False
            self.visited[url] = True
            return True

    def _increment_pages(self) -> int:
        with self.pages_lock:
            self.pages_crawled += 1
            return self.pages_crawled

    def visit(self, url: str, depth: int) -> Optional[List[str]]:
        """Fetch one url and store it. Returns the links found on it, or None when the branch ends here."""
        if not self._admit(url, depth):
            return None
        self._discover(url)
        self.rate.wait_turn()

        t0 = time.perf_counter()
        body = fetch_body(self.http, url)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        if body is None:
            self.metrics.record_fetch(False, 0, dt_ms)
            return None
        self.metrics.record_fetch(True, len(body), dt_ms)

        try:
            path = self.content.save(url, body)
        except OSError as exc:
            logging.error("Could not save %s: %s", url, exc)
            return None
        self.index.mark_visited(url, path)
        count = self._increment_pages()
        logging.info("Fetched %s (depth %d) -> %s", url, depth, path)
        if count % 10 == 0:
            logging.info("Crawled %d pages", count)

        return Extractor.extract_links(url, body, self.config.link_attributes, self.config.link_parser)

    def _crawl_depth_first(self, entry: FrontierEntry) -> None:
        links = self.visit(entry.url, entry.depth)
        if links is None:
            return
        stack: List[_Frame] = [_Frame(entry.url, entry.depth, iter(links))]
        while stack:
            frame = stack[-1]
            link = next(frame.links, None)
            if link is None:
                stack.pop()
                continue
            if self._known(link) or not self._discover(link):
                continue
            try:
                child_links = self.visit(link, frame.depth + 1)
            except Exception:
                logging.exception("Unexpected error while crawling %s", link)
                continue
            if child_links:
                stack.append(_Frame(link, frame.depth + 1, iter(child_links)))

    def _crawl_shared(self, entry: FrontierEntry) -> None:
        links = self.visit(entry.url, entry.depth)
        for link in links or ():
            if self._known(link) or not self._discover(link):
                continue
            self._submit(FrontierEntry(link, entry.depth + 1))

    def worker(self) -> None:
        process = self._crawl_depth_first if self.config.concurrency <= 1 else self._crawl_shared
        while True:
            try:
                entry = self.frontier.get(timeout=0.2)
            except queue.Empty:
                if self._drained():
                    return
                continue
            try:
                process(entry)
            except Exception:
                logging.exception("Unexpected error while crawling %s", entry.url)
            finally:
                self.frontier.task_done()
                self._entry_done()

    def run(self) -> None:
        logging.info(
            "Starting crawl of %s: max depth %d, delay %.3fs, %d worker(s), storing under %s",
            self.config.seed_url,
            self.config.max_depth,
            self.config.delay_seconds,
            self.config.concurrency,
            self.config.base_dir,
        )
        if self.config.metrics_interval and self.config.metrics_interval > 0:
            self.stats_thread = StatsLogger(self.metrics, self.config.metrics_interval, logging.info)
            self.stats_thread.start()
        workers = max(1, self.config.concurrency)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crawl") as executor:
            futures = [executor.submit(self.worker) for _ in range(workers)]
            for future in as_completed(futures):
                future.result()
        if self.stats_thread:
            self.stats_thread.stop()
        total, visited = self.index.counts()
        logging.info("Finished. Pages crawled: %d. Index holds %d urls, %d visited.", self.pages_crawled, total, visited)

    def close(self) -> None:
        self.index.close()
        close = getattr(self.http, "close", None)
        if close is not None:
            close()
