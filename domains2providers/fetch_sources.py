#!/usr/bin/env python3
"""
fetch_sources.py

Asynchronous downloader for rule sources with retry logic.

Behavior:
 - Uses aiohttp for concurrent downloads.
 - Respects simple per-origin rate limiting (delay between requests to same origin).
 - Retries transient failures (network, 429, 5xx) with exponential backoff + jitter.
 - Each URL yields its complete line list or a FetchError; never partial content.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import random
import time
from typing import Iterable
from urllib.parse import urlparse

import aiohttp

logger = logging.getLogger(__name__)


# ----------------------------------------
# Constants
# ----------------------------------------
CHUNK_SIZE = 131072  # 128KB network chunks

# CI-safe defaults
DEFAULT_CONCURRENCY = 8
DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 3
DEFAULT_PER_HOST_DELAY = 0.2  # seconds

USER_AGENT = "Mozilla/5.0 (compatible; domains2providers/1.0)"


class FetchError(Exception):
    """Raised when a source cannot be downloaded completely."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"load {url}: {reason}")
        self.url = url
        self.reason = reason


# ----------------------------------------
# Helpers
# ----------------------------------------
def _get_origin(url: str) -> str:
    """Return canonical origin (scheme://host[:port]) for rate limiting."""
    p = urlparse(url)
    scheme = p.scheme or "https"
    host = p.hostname or ""
    port = f":{p.port}" if p.port else ""
    return f"{scheme}://{host}{port}"


async def _wait_for_host_slot(
    origin: str, host_last_times: dict[str, float], delay: float
) -> None:
    """
    Reserve the next request slot for `origin` and sleep until it opens.

    host_last_times holds the start time of the latest reserved slot per origin.
    Slots are reserved before sleeping, so concurrent callers queue up `delay`
    seconds apart instead of all reading the same previous timestamp.
    """
    now = time.monotonic()
    last = host_last_times.get(origin)
    slot = now if last is None else max(now, last + delay)
    # no await between the read above and this write
    host_last_times[origin] = slot
    wait = slot - now
    if wait > 0:
        await asyncio.sleep(wait)


def _should_retry_status(status: int) -> bool:
    """Return True if HTTP status is retryable."""
    return status == 429 or 500 <= status < 600


def _backoff_delay(attempt: int) -> float:
    base = 0.5 * (2 ** (attempt - 1))
    jitter = random.uniform(0, base * 0.1)
    return min(base + jitter, 10.0)


def decode_lines(content: bytes) -> list[str]:
    """Decode a downloaded body into lines (UTF-8, BOM tolerated)."""
    return content.decode("utf-8-sig", errors="replace").splitlines()


class _RetryableError(Exception):
    """Internal marker for failures worth another attempt."""


# ----------------------------------------
# Fetch single URL
# ----------------------------------------
async def fetch_lines(
    session: aiohttp.ClientSession,
    url: str,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    per_host_delay: float = DEFAULT_PER_HOST_DELAY,
    host_last_times: dict[str, float] | None = None,
) -> list[str]:
    """
    Fetch a single URL with retries and return its lines.

    Raises FetchError once retries are exhausted, on a non-retryable status,
    or when the URL itself cannot be parsed.
    """
    try:
        origin = _get_origin(url)
    except ValueError as ex:
        raise FetchError(url, f"Invalid URL - {ex}") from ex
    if host_last_times is None:
        host_last_times = {}

    attempt = 0
    last_reason = "unknown error"

    while attempt <= retries:
        attempt += 1
        try:
            # Respect per-origin delay
            await _wait_for_host_slot(origin, host_last_times, per_host_delay)

            timeout_obj = aiohttp.ClientTimeout(
                total=timeout,
                connect=10,  # 10s to establish connection
                sock_read=timeout,
            )
            async with session.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=timeout_obj,
                allow_redirects=True,
                max_redirects=10,
            ) as resp:
                if resp.status // 100 != 2:
                    reason = f"response HTTP {resp.status}"
                    if _should_retry_status(resp.status):
                        raise _RetryableError(reason)
                    raise FetchError(url, reason)

                chunks: list[bytes] = []
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    if chunk:
                        chunks.append(chunk)
                return decode_lines(b"".join(chunks))

        except FetchError:
            raise
        except _RetryableError as ex:
            last_reason = str(ex)
        except asyncio.TimeoutError:
            last_reason = "Timeout - server did not respond in time"
        except aiohttp.InvalidURL as ex:
            raise FetchError(url, f"Invalid URL - {ex}") from ex
        except aiohttp.ClientSSLError as ex:
            # SSL errors are usually not transient, don't retry
            raise FetchError(url, f"SSL certificate error - {ex}") from ex
        except aiohttp.ClientError as ex:
            last_reason = f"Connection error - {type(ex).__name__}"

        if attempt <= retries:
            delay = _backoff_delay(attempt)
            logger.debug("Retrying %s in %.2fs (%s)", url, delay, last_reason)
            await asyncio.sleep(delay)

    raise FetchError(url, last_reason)


# ----------------------------------------
# Fetch all URLs concurrently
# ----------------------------------------
async def _fetch_with_limit(
    session: aiohttp.ClientSession,
    sem: asyncio.Semaphore,
    url: str,
    timeout: int,
    retries: int,
    per_host_delay: float,
    host_last_times: dict[str, float],
) -> tuple[str, list[str] | FetchError]:
    """Run fetch_lines() under concurrency semaphore, capturing FetchError."""
    async with sem:
        try:
            lines = await fetch_lines(
                session, url, timeout, retries, per_host_delay, host_last_times
            )
        except FetchError as exc:
            return url, exc
        return url, lines


async def fetch_all(
    urls: Iterable[str],
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    per_host_delay: float = DEFAULT_PER_HOST_DELAY,
) -> dict[str, list[str] | FetchError]:
    """
    Fetch every distinct URL concurrently.

    Returns a mapping url -> lines, or url -> FetchError for failed sources.
    """
    unique_urls = list(dict.fromkeys(urls))
    results: dict[str, list[str] | FetchError] = {}
    if not unique_urls:
        return results

    connector = aiohttp.TCPConnector(
        limit=concurrency,
        limit_per_host=5,  # Max 5 concurrent connections per host
        ttl_dns_cache=300,
    )
    sem = asyncio.Semaphore(concurrency)
    host_last_times: dict[str, float] = {}

    async with aiohttp.ClientSession(connector=connector) as session:
        tasks = [
            asyncio.create_task(
                _fetch_with_limit(
                    session, sem, url, timeout, retries, per_host_delay, host_last_times
                )
            )
            for url in unique_urls
        ]
        for coro in asyncio.as_completed(tasks):
            url, outcome = await coro
            if isinstance(outcome, FetchError):
                logger.warning("Fetch failed: %s", outcome)
            else:
                logger.info("Fetched %s (%d lines)", url, len(outcome))
            results[url] = outcome

    return results


# ----------------------------------------
# CLI
# ----------------------------------------
def main() -> None:
    """CLI entrypoint: fetch URLs and print per-URL line counts."""
    parser = argparse.ArgumentParser(description="Fetch rule sources (async)")
    parser.add_argument("urls", nargs="+", help="Source URLs")
    parser.add_argument(
        "--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent fetches"
    )
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Retries per URL")
    parser.add_argument(
        "--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout (seconds)"
    )
    parser.add_argument(
        "--per-host-delay",
        type=float,
        default=DEFAULT_PER_HOST_DELAY,
        help="Delay between requests to same host (seconds)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    results = asyncio.run(
        fetch_all(args.urls, args.concurrency, args.timeout, args.retries, args.per_host_delay)
    )
    failed = [o for o in results.values() if isinstance(o, FetchError)]
    print("fetch_sources: finished")
    print(f"  processed: {len(results)}")
    print(f"    ok:      {len(results) - len(failed)}")
    print(f"    failed:  {len(failed)}")
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
