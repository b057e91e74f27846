import os
import re
import tempfile
from dataclasses import dataclass
from typing import Tuple


DEFAULT_USER_AGENT = "depthcrawl/1.0 (+https://example.com; contact: crawler@example.com)"
DEFAULT_BASE_DIR = os.path.join(tempfile.gettempdir(), "depthcrawl")
DEFAULT_DELAY = "1s"
INDEX_FILE_NAME = "sqlite.db"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(expr: str) -> float:
    """Parse a duration expression such as ``"5s"``, ``"250ms"`` or ``"1m30s"`` into seconds.

    A bare ``"0"`` is accepted; every other value needs a unit on each part.
    Raises ValueError for anything else.
    """
    text = (expr or "").strip()
    if not text:
        raise ValueError("empty duration")
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if not text:
        raise ValueError(f"invalid duration {expr!r}")
    if text == "0":
        return 0.0
    pos = 0
    total = 0.0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {expr!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


@dataclass(frozen=True)
class CrawlConfig:
    seed_url: str
    base_dir: str = DEFAULT_BASE_DIR
    max_depth: int = 3
    delay_seconds: float = 1.0
    request_timeout: float = 15.0
    concurrency: int = 1
    user_agent: str = DEFAULT_USER_AGENT
    link_attributes: Tuple[str, ...] = ("href", "src")
    link_parser: str = "scan"
    index_file: str = INDEX_FILE_NAME
    use_bloom: bool = True
    expected_urls: int = 100_000
    metrics_interval: float = 0.0

    @property
    def index_path(self) -> str:
        return os.path.join(self.base_dir, self.index_file)
