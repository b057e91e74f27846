import math
import threading
from typing import Iterable

import mmh3
import numpy as np

TARGET_FPR = 0.001
DEFAULT_EXPECTED_URLS = 100_000


def calculate_optimal_params(n: int, p: float) -> tuple[int, int]:
    """Return (bits, hash count) for ``n`` items at false positive rate ``p``."""
    if n <= 0 or p <= 0 or p >= 1:
        raise ValueError("Invalid parameters")
    m = -n * math.log(p) / (math.log(2) ** 2)
    k = (m / n) * math.log(2)
    return int(math.ceil(m)), int(math.ceil(k))


class BloomFilter:
    """Packed-bit Bloom filter over URL strings.

    Answers "definitely never added" or "maybe added". The crawler uses it to
    skip index lookups for URLs it has never recorded.
    """

    def __init__(self, expected_items: int = DEFAULT_EXPECTED_URLS, false_positive_rate: float = TARGET_FPR):
        self.m, self.k = calculate_optimal_params(expected_items, false_positive_rate)
        self.bits = np.zeros((self.m + 7) // 8, dtype=np.uint8)
        self.n_added = 0
        self._lock = threading.Lock()

    def _positions(self, url: str) -> np.ndarray:
        # double hashing: h1 + i * h2
        h1 = mmh3.hash(url, 0, signed=False)
        h2 = mmh3.hash(url, h1, signed=False)
        steps = np.arange(self.k, dtype=np.uint64)
        return (np.uint64(h1) + steps * np.uint64(h2)) % np.uint64(self.m)

    def add(self, url: str) -> None:
        positions = self._positions(url)
        masks = np.left_shift(1, positions % 8).astype(np.uint8)
        with self._lock:
            np.bitwise_or.at(self.bits, (positions // 8).astype(np.int64), masks)
            self.n_added += 1

    def update(self, urls: Iterable[str]) -> None:
        for url in urls:
            self.add(url)

    def __contains__(self, url: str) -> bool:
        positions = self._positions(url)
        masks = np.left_shift(1, positions % 8).astype(np.uint8)
        with self._lock:
            hits = self.bits[(positions // 8).astype(np.int64)] & masks
        return bool(np.all(hits))

    def __len__(self) -> int:
        return self.n_added

    def fill_ratio(self) -> float:
        with self._lock:
            return float(np.unpackbits(self.bits).sum()) / self.m


def create_bloom_filter(expected_urls: int = DEFAULT_EXPECTED_URLS, false_positive_rate: float = TARGET_FPR) -> BloomFilter:
    return BloomFilter(expected_items=max(1, expected_urls), false_positive_rate=false_positive_rate)
