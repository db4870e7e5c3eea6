"""
Data adapters performing the outbound call to a backend api.

The proxy middleware only knows the `DataAdapter` interface: `request()` returns a
future resolving to `(backend_response, backend_body)`. `RequestsDataAdapter` is
the production implementation (connection pooling + retry on a requests session,
executed on a thread pool).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from http.cookiejar import DefaultCookiePolicy
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import MaxRetryError, ResponseError
from urllib3.util.retry import Retry

from api_proxy.models.api_config import ApiConfig

logger = logging.getLogger(__name__)

# Connection-level headers that only apply to a single hop
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
}


class BackendError(Exception):
    """The backend api call failed."""

    status_code = 502
    error = "Bad gateway"


class BackendUnavailableError(BackendError):
    status_code = 503
    error = "Backend unavailable"


class BackendTimeoutError(BackendError):
    status_code = 504
    error = "Backend timeout"


class BackendResponse:
    """Status and headers of a backend response. Header names are lower-case."""

    def __init__(self, status: int | None = None, headers: dict[str, Any] | None = None):
        self.status = status
        self.headers = headers if headers is not None else {}

    def __repr__(self) -> str:
        return f"BackendResponse(status={self.status!r}, headers={self.headers!r})"


class DataAdapter(ABC):
    """Capability to issue one backend call for one client request."""

    @abstractmethod
    def request(self, original_request, options: dict[str, Any]) -> Future:
        """
        Start the backend call described by `options`.

        `options` carries `headers`, `api`, `path`, `method`, `query` and `body`.
        The returned future resolves exactly once, to `(BackendResponse, body)` or
        to an exception.
        """

    def close(self) -> None:
        pass


def create_proxy_session(pool_maxsize: int = 20) -> requests.Session:
    """Create a requests session tuned for proxy traffic."""
    session = requests.Session()
    # Cookies belong to the calling client; the shared session must never keep any
    session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

    retry_strategy = Retry(
        total=1,
        backoff_factor=0.1,
        status_forcelist=[502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"],
        raise_on_status=False,
    )

    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=pool_maxsize, max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session


def build_cookie_header(cookies: list[str]) -> str:
    """Join forwarded cookies into one Cookie header (name=value parts only)."""
    pairs = []
    for cookie in cookies:
        pair = cookie.split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return "; ".join(pairs)


def read_set_cookie_headers(resp: requests.Response) -> list[str]:
    """All Set-Cookie values of a response; requests folds repeated headers."""
    try:
        if hasattr(resp.raw, "headers") and hasattr(resp.raw.headers, "getlist"):
            return list(resp.raw.headers.getlist("Set-Cookie"))
        if hasattr(resp.headers, "getlist"):
            return list(resp.headers.getlist("Set-Cookie"))
    except AttributeError as e:
        logger.warning(f"Error reading Set-Cookie headers: {e}")
    set_cookie = resp.headers.get("Set-Cookie")
    return [set_cookie] if set_cookie else []


def read_body(resp: requests.Response) -> Any:
    """Decode a backend body: JSON when declared as such, text otherwise."""
    if not resp.content:
        return None
    content_type = resp.headers.get("Content-Type", "").lower()
    if "json" in content_type:
        try:
            return resp.json()
        except ValueError:
            logger.warning(f"Backend declared {content_type} but sent invalid JSON, relaying as text")
    return resp.text


class RequestsDataAdapter(DataAdapter):
    """Data adapter sending backend calls with a pooled requests session."""

    def __init__(
        self,
        api_config: ApiConfig,
        session: requests.Session | None = None,
        max_workers: int = 16,
        timeout: tuple[float, float] = (10, 60),
    ):
        self.api_config = api_config
        self.session = session or create_proxy_session(pool_maxsize=max_workers)
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="api-proxy")

    def request(self, original_request, options: dict[str, Any]) -> Future:
        return self._executor.submit(self._perform, options)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.session.close()

    def _prepare_headers(self, headers: dict[str, Any]) -> dict[str, str]:
        prepared = {}
        for name, value in headers.items():
            name_lower = name.lower()
            if name_lower in HOP_BY_HOP_HEADERS:
                continue
            if name_lower == "cookie":
                value = build_cookie_header(value) if isinstance(value, list) else value
                if not value:
                    continue
            prepared[name_lower] = value
        return prepared

    def _perform(self, options: dict[str, Any]):
        api_name = options.get("api")
        url = self.api_config.build_url(api_name, options.get("path") or "/")
        method = (options.get("method") or "GET").upper()

        request_kwargs = {
            "method": method,
            "url": url,
            "headers": self._prepare_headers(options.get("headers") or {}),
            "allow_redirects": False,
            "timeout": self.timeout,
        }
        if options.get("query"):
            request_kwargs["params"] = options["query"]
        if options.get("body"):
            request_kwargs["data"] = options["body"]

        logger.debug(f"Backend request: {method} {url}")

        try:
            resp = self.session.request(**request_kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout calling {url}: {e}")
            raise BackendTimeoutError(f"Request to {url} timed out") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error calling {url}: {e}")
            raise BackendUnavailableError(f"Api at {url} is not responding") from e
        except (ResponseError, MaxRetryError, requests.exceptions.RetryError) as e:
            logger.error(f"Retry error calling {url}: {e}")
            raise BackendError(f"Api at {url} kept returning errors") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error calling {url}: {e}")
            raise BackendError(f"Error calling api: {e}") from e

        headers: dict[str, Any] = {name.lower(): value for name, value in resp.headers.items()}
        headers.pop("set-cookie", None)
        set_cookies = read_set_cookie_headers(resp)
        if set_cookies:
            headers["set-cookie"] = set_cookies

        logger.debug(f"Backend response: {method} {url} -> {resp.status_code}")
        return BackendResponse(status=resp.status_code, headers=headers), read_body(resp)
