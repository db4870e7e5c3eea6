"""
Api proxy middleware.

Forwards one client request to a backend api through a `DataAdapter` and relays
status, cookies, redirect location and body of the backend response to a response sink.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future

from .data_adapter import BackendError, DataAdapter
from .services.cookies import encode_set_cookies
from .services.headers import RELAYED_RESPONSE_HEADERS, build_outgoing_headers
from .services.paths import get_api_name, get_api_path, namespace_for

logger = logging.getLogger(__name__)


def error_payload(error: BaseException) -> tuple[int, dict]:
    """Status code and JSON body reported to the client for a failed backend call."""
    status_code = getattr(error, "status_code", BackendError.status_code)
    title = getattr(error, "error", BackendError.error)
    return status_code, {"error": title, "message": str(error)}


class ApiProxy:
    """
    Proxy middleware bound to a data adapter.

    `handle(request, response)` expects a request exposing `path`, `headers`,
    `remote_addr`, `method`, `query_string`, `body` and `get(name)`, and a response
    sink exposing `status(code)`, `json(body)` and `set_header(name, values)`.
    """

    def __init__(self, data_adapter: DataAdapter):
        self.data_adapter = data_adapter

    def build_options(self, request) -> dict:
        api_name = get_api_name(request.path)
        headers = build_outgoing_headers(
            request.headers,
            request.remote_addr,
            api_name,
            cookie_header=request.get("cookie"),
        )
        return {
            "api": api_name,
            "path": get_api_path(request.path),
            "method": getattr(request, "method", "GET"),
            "query": getattr(request, "query_string", None),
            "body": getattr(request, "body", None),
            "headers": headers,
        }

    def handle(self, request, response) -> Future:
        """
        Issue the backend call for `request` and write its result to `response`.

        Returns a future that completes once the response has been written.
        """
        options = self.build_options(request)
        api_name = options["api"]
        logger.debug(f"Proxying {options['method']} {request.path} to api '{namespace_for(api_name)}' path {options['path']}")

        done: Future = Future()
        try:
            backend_call = self.data_adapter.request(request, options)
        except Exception as e:
            # A raising adapter is reported like a failed call
            backend_call = Future()
            backend_call.set_exception(e)

        def on_complete(call: Future) -> None:
            try:
                error = call.exception()
                if error is not None:
                    self._write_error(api_name, error, response)
                else:
                    backend_response, body = call.result()
                    self._write_response(api_name, backend_response, body, response)
            except Exception as e:
                done.set_exception(e)
            else:
                done.set_result(None)

        backend_call.add_done_callback(on_complete)
        return done

    def _write_response(self, api_name, backend_response, body, response) -> None:
        status = getattr(backend_response, "status", None)
        if status is not None:
            response.status(status)

        headers = getattr(backend_response, "headers", None) or {}
        set_cookies = headers.get("set-cookie")
        if set_cookies:
            if isinstance(set_cookies, str):
                set_cookies = [set_cookies]
            response.set_header("set-cookie", encode_set_cookies(set_cookies, api_name))

        for name in RELAYED_RESPONSE_HEADERS:
            if headers.get(name):
                response.set_header(name, headers[name])

        if body is not None:
            response.json(body)

    def _write_error(self, api_name, error: BaseException, response) -> None:
        status_code, payload = error_payload(error)
        if hasattr(error, "status_code"):
            logger.error(f"Backend call for api '{namespace_for(api_name)}' failed ({status_code}): {error}")
        else:
            logger.error(
                f"Unexpected error calling api '{namespace_for(api_name)}': {error}",
                exc_info=(type(error), error, error.__traceback__),
            )
        response.status(status_code)
        response.json(payload)
