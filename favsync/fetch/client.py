"""HTTP client that attaches the session and classifies every response."""
import logging
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_result, stop_after_attempt, wait_exponential

from favsync.auth.session import SessionManager
from favsync.auth.session_store import SessionStore
from favsync.config import config
from favsync.errors import UpstreamError
from favsync.fetch.outcomes import (
    AuthExpired,
    Fatal,
    NotFound,
    Outcome,
    RateLimited,
    Success,
    parse_retry_after,
)
from favsync.fetch.rate_limit import RateLimiter
from favsync.parse.redact import redact_string

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/json, text/plain, */*"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def create_http_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared httpx client; a transport override is used by tests."""
    limits = httpx.Limits(
        max_connections=10,
        max_keepalive_connections=5,
    )
    kwargs: dict[str, Any] = {
        "timeout": config.TIMEOUT,
        "follow_redirects": False,
        "limits": limits,
    }
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["http2"] = True
    return httpx.AsyncClient(**kwargs)


class UpstreamClient:
    """Sends authenticated requests and maps responses to Outcome values."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: SessionStore,
        session: Optional[SessionManager] = None,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        rate_per_second: Optional[float] = None,
        retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.http = http
        self.store = store
        self.session = session
        self.base_url = (base_url or config.BASE_URL).rstrip("/")
        self.user_agent = user_agent or config.USER_AGENT
        self.rate_limiter = RateLimiter(
            config.RATE_PER_SECOND if rate_per_second is None else rate_per_second
        )
        self.retries = config.RATE_LIMIT_RETRIES if retries is None else retries
        self.base_delay = config.RATE_LIMIT_BASE_DELAY if base_delay is None else base_delay

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.http.aclose()

    async def _build_headers(self, accept: str, referer: Optional[str]) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": accept,
            "Accept-Language": "fr-FR,fr;q=0.9,en-US;q=0.8,en;q=0.7",
            "Origin": self.base_url,
            "Referer": referer or f"{self.base_url}/",
        }
        cookie_header = await self.store.build_header()
        if cookie_header:
            headers["Cookie"] = cookie_header
        csrf_token = await self.store.get_csrf_token()
        if csrf_token:
            headers["X-Csrf-Token"] = csrf_token
        anon_id = await self.store.get_anon_id()
        if anon_id:
            headers["X-Anon-Id"] = anon_id
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        referer: Optional[str] = None,
        accept: str = JSON_ACCEPT,
    ) -> Outcome:
        """Send one request and classify the response.

        Raises UpstreamError on transport failures and timeouts.
        """
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        await self.rate_limiter.acquire(url)

        request_headers = await self._build_headers(accept, referer)
        if headers:
            request_headers.update(headers)

        try:
            response = await self.http.request(method, url, params=params, headers=request_headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout for {method} {url}: {e}")
            raise UpstreamError(f"Timeout for {url}") from e
        except httpx.TransportError as e:
            logger.warning(f"Network error for {method} {url}: {e}")
            raise UpstreamError(f"Network error for {url}: {e}") from e

        await self.store.ingest_response(response.headers.get_list("set-cookie"))
        return self._classify(url, response)

    def _classify(self, url: str, response: httpx.Response) -> Outcome:
        status = response.status_code
        if 200 <= status < 300:
            return Success(status=status, body=response.text, headers=dict(response.headers))
        if status == 404:
            logger.info(f"Not found: {url}")
            return NotFound()
        if status in (401, 403):
            logger.warning(f"Auth rejected ({status}) for {url}")
            if self.session is not None:
                self.session.schedule_recovery()
            return AuthExpired(status=status)
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            logger.warning(f"Rate limited for {url} (retry-after: {retry_after})")
            if retry_after:
                self.rate_limiter.penalize(url, retry_after)
            return RateLimited(retry_after=retry_after)

        body = response.text
        logger.error(f"Unexpected status {status} for {url}: {redact_string(body[:500])}")
        return Fatal(status=status, body=body)

    async def get(self, path: str, **kwargs) -> Outcome:
        return await self.request("GET", path, **kwargs)

    async def with_rate_limit_backoff(self, path: str, **kwargs) -> Outcome:
        """GET, retrying 429s with exponential backoff; returns the last outcome."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.base_delay),
            retry=retry_if_result(lambda outcome: isinstance(outcome, RateLimited)),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        return await retrying(self.get, path, **kwargs)

    async def get_json_with_retries(self, path: str, **kwargs) -> Outcome:
        """GET with 429 backoff and exactly one retry after an auth recovery."""
        outcome = await self.with_rate_limit_backoff(path, **kwargs)
        if not isinstance(outcome, AuthExpired) or self.session is None:
            return outcome

        logger.info(f"Auth expired for {path}, waiting for recovery before retrying once")
        if not await self.session.await_recovery():
            logger.warning("Auth recovery failed, not retrying")
            return outcome
        return await self.with_rate_limit_backoff(path, **kwargs)
