#!/usr/bin/env python3
import argparse
import logging
import sqlite3
import sys
from typing import List, Optional

from depthcrawl.config import DEFAULT_BASE_DIR, DEFAULT_DELAY, DEFAULT_USER_AGENT, CrawlConfig, parse_duration
from depthcrawl.engine import Crawler
from depthcrawl.prometheus_exporter import PrometheusExporter


def _duration(value: str) -> float:
    try:
        seconds = parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))
    if seconds < 0:
        raise argparse.ArgumentTypeError(f"negative delay {value!r}")
    return seconds


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Depth-bounded, resumable crawler that stores every fetched page under the md5 of its URL."
    )
    parser.add_argument("seed", help="Absolute URL to start from.")
    parser.add_argument(
        "delay",
        nargs="?",
        type=_duration,
        default=_duration(DEFAULT_DELAY),
        help="Pause before every request, e.g. 500ms, 5s, 1m30s (default: %s)." % DEFAULT_DELAY,
    )
    parser.add_argument("--basedir", dest="base_dir", default=DEFAULT_BASE_DIR, help="Directory for pages and the sqlite index.")
    parser.add_argument("--maxdepth", dest="max_depth", type=int, default=3, help="Maximum link depth from the seed.")
    parser.add_argument("--concurrency", type=int, default=1, help="Number of fetch workers (1 keeps depth-first order).")
    parser.add_argument("--timeout", type=float, default=15.0, help="HTTP read timeout in seconds.")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header to send.")
    parser.add_argument("--link-parser", choices=["scan", "html"], default="scan", help="How to find links in a page.")
    parser.add_argument("--metrics-interval", type=float, default=0.0, help="Seconds between perf logs (0 to disable).")
    parser.add_argument("--prometheus-port", type=int, default=0, help="Serve Prometheus metrics on this port (0 to disable).")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    log_level = logging.WARNING
    if args.verbose == 1:
        log_level = logging.INFO
    elif args.verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(threadName)s %(message)s",
    )

    config = CrawlConfig(
        seed_url=args.seed,
        base_dir=args.base_dir,
        max_depth=max(0, args.max_depth),
        delay_seconds=args.delay,
        request_timeout=max(1.0, args.timeout),
        concurrency=max(1, args.concurrency),
        user_agent=args.user_agent,
        link_parser=args.link_parser,
        metrics_interval=max(0.0, args.metrics_interval),
    )

    try:
        crawler = Crawler(config)
    except (sqlite3.Error, OSError) as exc:
        logging.error("Could not open index %s: %s", config.index_path, exc)
        return 1

    exporter = None
    if args.prometheus_port > 0:
        exporter = PrometheusExporter(crawler.metrics, port=args.prometheus_port)
        exporter.start()
        logging.info("Prometheus metrics available at http://0.0.0.0:%d/metrics", args.prometheus_port)

    try:
        crawler.run()
    finally:
        if exporter:
            exporter.stop()
        crawler.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
