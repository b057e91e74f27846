import logging
from typing import Optional
from urllib.parse import urlparse

import urllib3
from urllib3 import exceptions as urllib3_exc
from urllib3.util.retry import Retry

from .types import FetchResult, HttpClientProtocol


logger = logging.getLogger(__name__)

FETCHABLE_SCHEMES = ("http", "https")


class HttpClient:
    """Single-attempt GET client that does not verify TLS certificates."""

    def __init__(self, user_agent: str, request_timeout: float, concurrency: int = 1):
        self.user_agent = user_agent
        self.timeout = urllib3.Timeout(connect=min(5.0, request_timeout), read=request_timeout)
        urllib3.disable_warnings(urllib3_exc.InsecureRequestWarning)
        self.http = urllib3.PoolManager(
            num_pools=max(8, concurrency),
            maxsize=max(1, concurrency),
            cert_reqs="CERT_NONE",
            headers={
                "User-Agent": user_agent,
                "Accept": "*/*",
                "Accept-Encoding": "gzip, deflate",
            },
            # one attempt per url; redirects are followed, errors are not retried
            retries=Retry(total=None, connect=0, read=0, status=0, other=0, redirect=10, raise_on_redirect=False),
        )

    def fetch(self, url: str) -> Optional[FetchResult]:
        if urlparse(url).scheme.lower() not in FETCHABLE_SCHEMES:
            logger.debug("Skipping non-http url %s", url)
            return None
        try:
            response = self.http.request(
                "GET",
                url,
                timeout=self.timeout,
                preload_content=True,
            )
        except urllib3_exc.HTTPError as exc:
            logger.debug("GET %s failed: %s", url, exc)
            return None
        return FetchResult(
            status=response.status,
            content_type=response.headers.get("Content-Type", "") or "",
            body=response.data or b"",
        )

    def close(self) -> None:
        self.http.clear()


def fetch_body(client: HttpClientProtocol, url: str) -> Optional[bytes]:
    """Fetch ``url`` and return its body only for an HTTP 200 answer."""
    result = client.fetch(url)
    if result is None:
        logger.info("Fetch failed: %s", url)
        return None
    if result.status != 200:
        logger.info("Fetch of %s returned status %d", url, result.status)
        return None
    return result.body
