import re
from functools import lru_cache
from typing import Iterable, List, Optional
from urllib.parse import SplitResult, urljoin, urlsplit

from bs4 import BeautifulSoup


_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


class UrlTools:
    @staticmethod
    def parse(raw: str) -> Optional[SplitResult]:
        """Split ``raw`` into URL parts, or None when it is not a parseable URL."""
        if raw is None or _CONTROL.search(raw) or _BAD_ESCAPE.search(raw):
            return None
        if raw.startswith(":"):
            return None
        try:
            parts = urlsplit(raw)
            parts.port  # raises on a malformed port
        except ValueError:
            return None
        if not parts.scheme and not parts.netloc:
            first_segment = parts.path.split("/", 1)[0]
            if ":" in first_segment:
                return None
        return parts

    @staticmethod
    def resolve(reference: str, base_url: str) -> Optional[str]:
        """Resolve ``reference`` against ``base_url``.

        Returns None, never an empty string, when either side fails to parse.
        """
        if reference is None or base_url is None:
            return None
        reference = reference.strip(" \t\r\n\f")
        if UrlTools.parse(reference) is None or UrlTools.parse(base_url) is None:
            return None
        return urljoin(base_url, reference)


class Extractor:
    SCAN = "scan"
    HTML = "html"

    @staticmethod
    @lru_cache(maxsize=32)
    def _pattern(attr: str) -> "re.Pattern[str]":
        return re.compile(re.escape(attr) + r"\s*=\s*([\"'])(.*?)\1", re.DOTALL)

    @staticmethod
    def _decode(body: bytes | str) -> str:
        if isinstance(body, str):
            return body
        return body.decode("utf-8", errors="ignore")

    @staticmethod
    def attribute_values(body: bytes | str, attr: str) -> List[str]:
        """Return every quoted value written as ``attr="..."`` or ``attr='...'`` in ``body``.

        This is a plain text scan: it knows nothing about tags, comments or
        scripts, so it reports matches in any of them, and it misses unquoted
        values.
        """
        text = Extractor._decode(body)
        return [m.group(2) for m in Extractor._pattern(attr).finditer(text) if m.group(2)]

    @staticmethod
    def markup_values(body: bytes | str, attr: str) -> List[str]:
        soup = BeautifulSoup(Extractor._decode(body), "html.parser")
        values: List[str] = []
        for tag in soup.find_all(attrs={attr: True}):
            value = tag.get(attr)
            if isinstance(value, list):
                value = " ".join(value)
            if value:
                values.append(value)
        return values

    @staticmethod
    def extract_links(
        url: str,
        body: bytes | str,
        attributes: Iterable[str] = ("href", "src"),
        mode: str = SCAN,
    ) -> List[str]:
        if mode == Extractor.HTML:
            collect = Extractor.markup_values
        elif mode == Extractor.SCAN:
            collect = Extractor.attribute_values
        else:
            raise ValueError(f"unknown link parser {mode!r}")
        raw: List[str] = []
        for attr in attributes:
            raw.extend(collect(body, attr))
        links: List[str] = []
        for ref in raw:
            resolved = UrlTools.resolve(ref, url)
            if resolved:
                links.append(resolved)
        return links
