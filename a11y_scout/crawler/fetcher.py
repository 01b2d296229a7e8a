"""
Fetcher module: HTTP GET with timeout and retry/backoff on 429/5xx.

A failed load is not an exception here: the returned :class:`PageData`
carries the error so the page can still be recorded.
"""
from __future__ import annotations

import asyncio
import random
from typing import Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout

from a11y_scout.config import ScoutConfig
from a11y_scout.crawler.models import PageData
from a11y_scout.logger import get_logger

RETRY_STATUS: Sequence[int] = tuple(range(500, 600)) + (429,)

logger = get_logger("fetcher")


class RetryableStatus(ClientError):
    def __init__(self, status: int) -> None:
        super().__init__(f"retryable status {status}")
        self.status = status


class Fetcher:
    """Loads pages through a shared :class:`aiohttp.ClientSession`."""

    def __init__(
        self,
        session: ClientSession,
        config: ScoutConfig,
        retry_status: Sequence[int] = RETRY_STATUS,
        backoff_factor: float = 1.0,
    ) -> None:
        self.session = session
        self.config = config
        self._retry_status = retry_status
        self._backoff_factor = backoff_factor
        self._timeout = ClientTimeout(total=config.page_timeout)

    async def fetch(self, url: str) -> PageData:
        """
        GET *url*. HTML and JSON bodies are decoded, anything else is kept as bytes.

        Timeouts are not retried. Network errors and retryable statuses are
        retried ``retry_times`` times with exponential backoff (max 60 s).
        """
        attempts = 0
        last_status: int | None = None
        while True:
            try:
                async with self.session.get(url, timeout=self._timeout, allow_redirects=True) as resp:
                    last_status = resp.status
                    if resp.status in self._retry_status:
                        raise RetryableStatus(resp.status)
                    ctype = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
                    if "html" in ctype or "json" in ctype or ctype.startswith("text/"):
                        content: str | bytes = await resp.text(errors="replace")
                    else:
                        content = await resp.read()
                    error = f"HTTP {resp.status}" if resp.status >= 400 else None
                    return PageData(url, content, status=resp.status, content_type=ctype, error=error)
            except asyncio.TimeoutError:
                logger.warning("Navigation timeout for %s after %.1f s", url, self.config.page_timeout)
                return PageData(url, "", status=None, error=f"Timeout {self.config.page_timeout}s exceeded")
            except ClientError as exc:
                attempts += 1
                if attempts > self.config.retry_times:
                    logger.warning("Failed %s: %s", url, exc)
                    return PageData(url, "", status=last_status, error=str(exc) or exc.__class__.__name__)
                backoff = min(60.0, self._backoff_factor * (2**attempts + random.random()))
                logger.debug("Retry %d/%d for %s after %.2f s", attempts, self.config.retry_times, url, backoff)
                await asyncio.sleep(backoff)
