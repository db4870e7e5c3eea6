"""
Per-request tracing of the proxy's routing and cookie decisions.

Enabled by the client with ?__proxy_trace=1 or the cookie __proxy_trace=1. The
flag itself is never namespaced, so it is not forwarded to any api.
"""

from __future__ import annotations

import logging

from flask import request

from .cookies import decode_cookie_header
from .paths import get_api_name, get_api_path, namespace_for

logger = logging.getLogger(__name__)

TRACE_FLAG = "__proxy_trace"


def proxy_trace_enabled() -> bool:
    try:
        if request.args.get(TRACE_FLAG) == "1":
            return True
        if request.cookies.get(TRACE_FLAG) == "1":
            return True
    except RuntimeError:
        # Outside of a request context
        pass
    return False


def trace_enter(client_request) -> None:
    """Log where a request is routed and which of its cookies go along."""
    api_name = get_api_name(client_request.path)
    forwarded = decode_cookie_header(client_request.get("cookie") or "", api_name)
    logger.info(
        "[PROXY TRACE] proxy.enter input=%s api=%s api_path=%s cookie_namespace=%s cookies_forwarded=%s remote=%s",
        request.full_path,
        api_name,
        get_api_path(client_request.path),
        namespace_for(api_name),
        [cookie.split("=", 1)[0] for cookie in forwarded],
        client_request.remote_addr,
    )


def trace_exit(client_request, response) -> None:
    """Log what went back to the client, including the namespace given to new cookies."""
    set_cookies = response.headers.getlist("Set-Cookie")
    logger.info(
        "[PROXY TRACE] proxy.exit input=%s status=%s cookie_namespace=%s cookies_set=%s location=%s",
        request.full_path,
        response.status_code,
        namespace_for(get_api_name(client_request.path)),
        [cookie.split("=", 1)[0] for cookie in set_cookies],
        response.headers.get("Location"),
    )
