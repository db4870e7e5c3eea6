"""
Proxy routes forwarding requests below the mount path to the backend apis.
"""

from __future__ import annotations

import logging

from flask import current_app, request

from .blueprint import IS_PRODUCTION, bp
from .services.trace import proxy_trace_enabled, trace_enter, trace_exit
from .sink import ClientRequest, FlaskResponseSink

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]


def get_proxy():
    """The ApiProxy bound to the current application."""
    return current_app.extensions["api_proxy"]


@bp.route("/", defaults={"path": ""}, methods=PROXY_METHODS)
@bp.route("/<path:path>", methods=PROXY_METHODS)
def proxy_path(path: str):
    """
    Proxy a request to a backend api.

    URL structure: {mount_path}/{api_name}/-/{path}
    Proxies to: {api base url}/{path}
    """
    client_request = ClientRequest.from_flask(request, path, current_app.config["API_PROXY_MOUNT_PATH"])

    trace = proxy_trace_enabled()
    if trace:
        trace_enter(client_request)
    elif not IS_PRODUCTION:
        logger.debug(f"Proxy request: path={client_request.path}, method={request.method}")

    sink = FlaskResponseSink()
    get_proxy().handle(client_request, sink).result()
    response = sink.to_response()

    if trace:
        trace_exit(client_request, response)
    return response
