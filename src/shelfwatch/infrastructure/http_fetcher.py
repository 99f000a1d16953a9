"""
HTTP fetch collaborator for the retry controller.

Wraps an httpx.AsyncClient and reduces each request to a FetchResponse.
Transport failures and timeouts are raised as NetworkError; HTTP error
statuses are returned as ordinary responses for the classifier to judge.
"""
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from shelfwatch.constants import DEFAULT_ATTEMPT_TIMEOUT_SECONDS, MAX_REDIRECTS
from shelfwatch.exceptions import NetworkError

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """What the classifier needs from one fetch."""

    status_code: Optional[int]
    body: str
    elapsed_ms: float
    final_url: str
    redirect_count: int = 0
    headers: Optional[Dict[str, str]] = None


class HttpFetcher:
    """
    Async page fetcher with bounded redirects and timeout.

    Usage:
        async with HttpFetcher() as fetcher:
            response = await fetcher.issue(url, headers)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        max_redirects: int = MAX_REDIRECTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        proxy: Optional[str] = None,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport
        self._proxy = proxy
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs = {
                "timeout": httpx.Timeout(self.timeout),
                "follow_redirects": True,
                "max_redirects": self.max_redirects,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif self._proxy:
                kwargs["proxy"] = self._proxy
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def issue(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """Fetch a URL.

        Args:
            url: Page to fetch
            headers: Request headers

        Returns:
            FetchResponse for any HTTP status. A redirect chain longer than
            max_redirects comes back with status None and
            redirect_count = max_redirects + 1.

        Raises:
            NetworkError: on connection failures and timeouts
        """
        client = self._get_client()
        start = time.monotonic()

        try:
            response = await client.get(url, headers=headers)
        except httpx.TooManyRedirects:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(f"Redirect limit ({self.max_redirects}) exceeded for {url}")
            return FetchResponse(
                status_code=None,
                body="",
                elapsed_ms=elapsed_ms,
                final_url=url,
                redirect_count=self.max_redirects + 1,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout fetching {url} (>{self.timeout}s)", url=url, timeout=True) from e
        except httpx.HTTPError as e:
            error_msg = str(e) if str(e) else type(e).__name__
            raise NetworkError(f"Error fetching {url}: {error_msg}", url=url) from e

        elapsed_ms = (time.monotonic() - start) * 1000
        return FetchResponse(
            status_code=response.status_code,
            body=response.text,
            elapsed_ms=elapsed_ms,
            final_url=str(response.url),
            redirect_count=len(response.history),
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
