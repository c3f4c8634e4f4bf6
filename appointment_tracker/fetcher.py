"""Async page fetcher with retry and exponential backoff."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from .config import REQUEST_TIMEOUT_SECONDS, USER_AGENT
from .debug import save_debug_html
from .retry import RetryPolicy, SleepFunc, retry_async

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = "timeout"
FETCH_HTTP_STATUS = "http_status"
FETCH_NETWORK = "network"


class FetchError(Exception):
    """A page could not be fetched after all retries."""

    def __init__(
        self,
        kind: str,
        detail: str,
        url: str = "",
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.detail = detail
        self.url = url
        self.status_code = status_code
        super().__init__(f"{kind}: {detail}")


def build_headers(user_agent: str = USER_AGENT) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


class Fetcher:
    """
    Issues GET requests for appointment pages.

    Timeouts, transport errors and non-2xx responses are all retried with
    backoff. Once retries are exhausted the last failure is raised as a
    FetchError.
    """

    def __init__(
        self,
        policy: RetryPolicy = RetryPolicy(),
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        user_agent: str = USER_AGENT,
        debug_dir: Optional[Path] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.policy = policy
        self.timeout = timeout
        self.headers = build_headers(user_agent)
        self.debug_dir = debug_dir
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "Fetcher":
        return cls(
            policy=RetryPolicy.from_settings(settings),
            timeout=settings.request_timeout,
            user_agent=settings.user_agent,
            debug_dir=settings.debug_dir,
            **kwargs,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=5,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _attempt(self, url: str, target: str) -> str:
        logger.info(f"Checking {target} site: {url}")
        try:
            response = await self._get_client().get(
                url, headers=self.headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.text
        except httpx.TimeoutException as e:
            logger.error(f"Error checking {target} site: timed out after {self.timeout}s ({e!r})")
            raise FetchError(FETCH_TIMEOUT, str(e) or "request timed out", url) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Error checking {target} site: Status {status}")
            body = e.response.text
            if self.debug_dir is not None and "<html" in body.lower():
                save_debug_html(self.debug_dir, target, f"error-{status}", body)
            raise FetchError(FETCH_HTTP_STATUS, f"HTTP {status}", url, status) from e
        except httpx.RequestError as e:
            logger.error(f"Error checking {target} site: No response received ({e!r})")
            raise FetchError(FETCH_NETWORK, str(e) or type(e).__name__, url) from e

    async def fetch(self, url: str, target: str = "site") -> str:
        """
        Fetch url and return the response body.

        Raises:
            FetchError: After max_retries + 1 failed attempts
        """
        return await retry_async(
            lambda: self._attempt(url, target),
            self.policy,
            retry_on=(FetchError,),
            description=f"{target} site",
            sleep=self._sleep,
        )
