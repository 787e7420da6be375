"""JSON-over-HTTP client shared by the off-chain collectors."""
import asyncio
import logging
from typing import Any

import aiohttp

from rebalancer.core.errors import RequestTimeout, TransportError

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """Thin aiohttp wrapper returning decoded JSON.

    A single ClientSession is opened lazily and reused until close().
    All failures surface as TransportError (RequestTimeout on timeouts).
    """

    def __init__(self, timeout: float = 30.0, headers: dict[str, str] | None = None):
        self.timeout = timeout
        self.headers = headers or {}
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self._request("GET", url, params=params, headers=headers, timeout=timeout)

    async def post_json(
        self,
        url: str,
        payload: Any,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self._request("POST", url, json=payload, headers=headers, timeout=timeout)

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        session = await self._get_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        logger.debug(
            f"HTTP {method} {url}",
            extra={"extra_data": {"action": "http_request", "method": method, "url": url}},
        )

        try:
            async with session.request(method, url, timeout=client_timeout, **kwargs) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise TransportError(f"HTTP {response.status} from {url}: {body[:200]}")
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RequestTimeout(f"{method} {url} timed out after {client_timeout.total}s", e) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url} failed: {e}", e) from e
        except ValueError as e:
            # Body was not valid JSON
            raise TransportError(f"{method} {url} returned invalid JSON: {e}", e) from e
