import logging
import threading

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

from .metrics import Metrics


logger = logging.getLogger(__name__)


class PrometheusExporter:
    """Publishes crawl totals on an HTTP endpoint, refreshed from ``Metrics`` every few seconds."""

    def __init__(self, metrics: Metrics, port: int = 8000, registry: CollectorRegistry = REGISTRY, refresh_s: float = 5.0) -> None:
        self.metrics = metrics
        self.port = port
        self.registry = registry
        self.refresh_s = refresh_s
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

        self.fetches_total = Counter("depthcrawl_fetches_total", "Fetch attempts", registry=registry)
        self.errors_total = Counter("depthcrawl_fetch_errors_total", "Failed fetch attempts", registry=registry)
        self.bytes_total = Counter("depthcrawl_bytes_total", "Body bytes downloaded", registry=registry)
        self.discovered_total = Counter("depthcrawl_discovered_total", "URLs newly recorded in the index", registry=registry)
        self.fetches_per_second = Gauge("depthcrawl_fetches_per_second", "Average fetch rate", registry=registry)
        self.avg_fetch_seconds = Gauge("depthcrawl_avg_fetch_duration_seconds", "Average fetch duration", registry=registry)

        self._last = {"fetches": 0, "errors": 0, "bytes": 0, "discovered": 0}

    def start(self) -> None:
        start_http_server(self.port, registry=self.registry)
        logger.info("Prometheus metrics server started on port %d", self.port)
        self._thread = threading.Thread(target=self._update_loop, name="prometheus-updater", daemon=True)
        self._thread.start()

    def _update_loop(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            self._stop_event.wait(self.refresh_s)

    def update(self) -> None:
        totals, elapsed = self.metrics.snapshot()
        for name, counter in (
            ("fetches", self.fetches_total),
            ("errors", self.errors_total),
            ("bytes", self.bytes_total),
            ("discovered", self.discovered_total),
        ):
            value = getattr(totals, name)
            delta = value - self._last[name]
            if delta > 0:
                counter.inc(delta)
            self._last[name] = value
        self.fetches_per_second.set(totals.fetches / elapsed)
        if totals.fetches > 0:
            self.avg_fetch_seconds.set(totals.fetch_ms_sum / totals.fetches / 1000.0)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self.update()
