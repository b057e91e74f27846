from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class FetchResult:
    status: int
    content_type: str
    body: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class UrlRecord:
    url: str
    visited_at: Optional[datetime] = None
    content_path: Optional[str] = None

    @property
    def visited(self) -> bool:
        return self.visited_at is not None


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int = 0


class HttpClientProtocol(Protocol):
    def fetch(self, url: str) -> Optional[FetchResult]: ...
