# cartlock/services/http_client.py
from typing import Any

import httpx

from cartlock.domain.errors import NetworkError, error_for_status
from cartlock.utils.retry import http_retry
from cartlock.utils.settings import HTTP_TIMEOUT_SECONDS
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    for key in ("message", "detail"):
        if isinstance(body.get(key), str) and body[key]:
            return body[key]
    return fallback


class ServiceClient:
    """
    Async JSON client for the external storefront API.
    - bearer token forwarded on every call
    - {"success", "data", "message"} envelope unwrapped
    - http errors mapped onto the CartError hierarchy
    """

    name = "ServiceClient"

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._get_client().request(method, url, **kwargs)

    @http_retry()
    async def _send_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._send(method, url, **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        fallback: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        idempotent: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"{self.name} {method} {url}")

        send = self._send_with_retry if idempotent else self._send
        try:
            resp = await send(method, url, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"{self.name} {method} {url} timed out: {e}")
            raise NetworkError(f"{fallback}: request timed out") from e
        except httpx.TransportError as e:
            logger.error(f"{self.name} {method} {url} failed: {e}")
            raise NetworkError(f"{fallback}: {e}") from e

        if resp.status_code >= 400:
            message = _error_message(resp, fallback)
            logger.error(f"{self.name} {method} {url} -> {resp.status_code}: {message}")
            raise error_for_status(resp.status_code, message)

        if not resp.content:
            return None
        try:
            body = resp.json()
        except ValueError as e:
            logger.error(f"{self.name} {method} {url} returned non-JSON body")
            raise NetworkError(f"{fallback}: malformed response") from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body
