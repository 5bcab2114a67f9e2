"""FRESHROUTE — Meta Graph API Client.

Thin async transport for the Marketing API: token injection, bounded retries
with exponential backoff on 429 / 5xx / connection errors, and cursor paging.
Anything that still fails surfaces as MetaAPIError.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from freshroute.config import settings
from freshroute.core.logging import get_logger

logger = get_logger("meta.client")

META_BASE = f"{settings.meta_base_url}/{settings.meta_api_version}"
MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 2  # seconds
REQUEST_TIMEOUT = 30.0

# Graph API error codes
AUTH_ERROR_CODES = {102, 190}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613, 80004}


class MetaAPIError(Exception):
    """Graph API call failed after retries, or with a non-retryable error."""

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.error_code in AUTH_ERROR_CODES or self.status_code == 401

    @property
    def is_rate_limited(self) -> bool:
        return self.error_code in RATE_LIMIT_ERROR_CODES or self.status_code == 429


def _error_from_response(resp: httpx.Response) -> MetaAPIError:
    """Build a MetaAPIError from the Graph ``{"error": {...}}`` envelope when present."""
    error: Dict[str, Any] = {}
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
    message = error.get("message") or f"HTTP {resp.status_code} from {resp.request.url.path}"
    try:
        code = int(error.get("code", 0) or 0)
    except (TypeError, ValueError):
        code = 0
    return MetaAPIError(str(message), resp.status_code, code)


def _decode_body(resp: httpx.Response) -> Dict[str, Any]:
    """Parse a 2xx body; anything but a JSON object is an upstream fault."""
    try:
        body = resp.json()
    except ValueError as e:
        raise MetaAPIError(
            f"Malformed response body from {resp.request.url.path}: {e}",
            resp.status_code,
        ) from e
    if not isinstance(body, dict):
        raise MetaAPIError(
            f"Unexpected {type(body).__name__} body from {resp.request.url.path}",
            resp.status_code,
        )
    return body


class MetaClient:
    """Async client bound to one access token and ad account."""

    def __init__(
        self,
        access_token: str | None = None,
        ad_account_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ):
        self.access_token = access_token or settings.meta_access_token
        self.ad_account_id = ad_account_id or settings.meta_ad_account_id
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "MetaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _session(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT, transport=self._transport
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()

    # ── Requests ──

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.retry_base_delay * (2 ** (attempt - 1))
        logger.warning(f"{reason}; retry {attempt}/{MAX_ATTEMPTS - 1} in {delay}s")
        await asyncio.sleep(delay)

    async def get(self, url: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """GET with the access token attached. Raises MetaAPIError.

        Any query already on ``url`` (a ``paging.next`` cursor) is kept;
        ``params`` and the token are merged into it.
        """
        request_url = httpx.URL(url).copy_merge_params(
            {**(params or {}), "access_token": self.access_token}
        )
        failure: Optional[MetaAPIError] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            retries_left = attempt < MAX_ATTEMPTS
            try:
                resp = await self._session().get(request_url)
            except httpx.RequestError as e:
                failure = MetaAPIError(f"Connection failed: {e}")
                if retries_left:
                    await self._backoff(attempt, f"Request error ({e.__class__.__name__})")
                    continue
                raise failure from e

            if resp.is_success:
                return _decode_body(resp)

            failure = _error_from_response(resp)
            retryable = resp.status_code == 429 or resp.status_code >= 500
            if retryable and retries_left:
                await self._backoff(attempt, f"HTTP {resp.status_code}")
                continue
            raise failure

        raise failure or MetaAPIError("Retries exhausted")

    async def get_all_pages(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Follow ``paging.next`` cursors and concatenate every ``data`` array."""
        rows: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        page_params = params
        pages = 0

        while next_url and pages < max_pages:
            body = await self.get(next_url, page_params)
            rows.extend(body.get("data", []))
            # The next link already embeds the original query
            next_url = body.get("paging", {}).get("next")
            page_params = None
            pages += 1

        logger.info(f"Fetched {len(rows)} rows across {pages} page(s) from {url}")
        return rows

    # ── Token ──

    async def validate_token(self) -> Dict[str, Any]:
        """Inspect the access token via ``debug_token``."""
        body = await self.get(
            f"{META_BASE}/debug_token", {"input_token": self.access_token}
        )
        token = body.get("data", {})
        return {
            "valid": token.get("is_valid", False),
            "expires_at": token.get("expires_at", 0),
            "scopes": token.get("scopes", []),
            "app_id": token.get("app_id", ""),
        }
