"""
Flask adapters for the proxy middleware's request and response contracts.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, unquote, urlsplit

from flask import Request, Response, current_app

# Characters left as they are when re-encoding a decoded path
_PATH_SAFE = "/:@!$&'()*+,;=~"


def raw_relative_path(request: Request, mount_path: str, path: str) -> str:
    """
    Path below the mount point, still percent-encoded as the client sent it.

    Uses the raw request URI when the server provides one (RAW_URI from gunicorn,
    REQUEST_URI from the Werkzeug server). Otherwise the decoded `path` routed by
    Flask is encoded again, which cannot tell `%2F` from `/`.
    """
    decoded = "/" + path
    raw_uri = request.environ.get("RAW_URI") or request.environ.get("REQUEST_URI")
    if raw_uri:
        raw_path = raw_uri.split("?", 1)[0] if raw_uri.startswith("/") else urlsplit(raw_uri).path
        prefix = request.script_root + mount_path.rstrip("/")
        if raw_path.startswith(prefix):
            relative = raw_path[len(prefix) :] or "/"
            if unquote(relative) == decoded:
                return relative
    return quote(decoded, safe=_PATH_SAFE)


class ClientRequest:
    """Client request as seen by the middleware, with the path relative to the mount point."""

    def __init__(
        self,
        path: str,
        headers=None,
        remote_addr: str | None = None,
        method: str = "GET",
        query_string: str = "",
        body: bytes | None = None,
    ):
        self.path = path if path.startswith("/") else "/" + path
        self.headers = headers if headers is not None else {}
        self.remote_addr = remote_addr
        self.method = method
        self.query_string = query_string
        self.body = body

    @classmethod
    def from_flask(cls, request: Request, path: str, mount_path: str = "") -> "ClientRequest":
        return cls(
            path=raw_relative_path(request, mount_path, path),
            headers=request.headers,
            remote_addr=request.remote_addr,
            method=request.method,
            query_string=request.query_string.decode("latin-1"),
            body=request.get_data(),
        )

    def get(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        name_lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name_lower:
                return value
        return None


class FlaskResponseSink:
    """Collects what the middleware writes and renders it as a Flask response."""

    def __init__(self):
        self.status_code: int | None = None
        self.body: Any = None
        self.has_body = False
        self.headers: list[tuple[str, str]] = []

    def status(self, code: int) -> None:
        self.status_code = int(code)

    def json(self, body: Any) -> None:
        self.body = body
        self.has_body = True

    def set_header(self, name: str, values) -> None:
        if isinstance(values, str):
            values = [values]
        # Replace any earlier value, like a server response's setHeader
        self.headers = [(key, value) for key, value in self.headers if key.lower() != name.lower()]
        for value in values:
            self.headers.append((name, value))

    def to_response(self) -> Response:
        status = self.status_code or 200
        if self.has_body:
            response = current_app.json.response(self.body)
            response.status_code = status
        else:
            response = Response(status=status)
        for name, value in self.headers:
            response.headers.add(name, value)
        return response
