"""
Outbound header construction for proxied requests.
"""

from __future__ import annotations

from typing import Any, Mapping

from .cookies import decode_cookie_header

# Headers that must never reach the backend api as sent by the client
EXCLUDED_REQUEST_HEADERS = {"host"}

# Backend response headers handed to the client unchanged, besides set-cookie
RELAYED_RESPONSE_HEADERS = ("location",)


def get_x_forwarded_for(headers: Mapping[str, str], remote_addr: str | None) -> str | None:
    """Append the client address to an existing X-Forwarded-For chain."""
    existing = headers.get("x-forwarded-for")
    if not remote_addr:
        return existing
    if existing:
        return f"{existing}, {remote_addr}"
    return remote_addr


def build_outgoing_headers(
    headers: Mapping[str, str],
    remote_addr: str | None,
    api_name: str | None,
    cookie_header: str | None = None,
) -> dict[str, Any]:
    """
    Copy the client headers for the backend call.

    Header names are lower-cased. `host` is dropped, `x-forwarded-for` is extended
    with the client address, and a namespaced `cookie` header is replaced by the
    list of original cookies belonging to `api_name`.
    """
    outgoing: dict[str, Any] = {}
    for name, value in headers.items():
        name_lower = name.lower()
        if name_lower in EXCLUDED_REQUEST_HEADERS:
            continue
        outgoing[name_lower] = value

    forwarded_for = get_x_forwarded_for(outgoing, remote_addr)
    if forwarded_for:
        outgoing["x-forwarded-for"] = forwarded_for

    if cookie_header is None:
        cookie_header = outgoing.get("cookie")
    if cookie_header is not None:
        outgoing["cookie"] = decode_cookie_header(cookie_header, api_name)

    return outgoing
