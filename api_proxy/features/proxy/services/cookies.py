"""
Cookie namespacing for the api proxy.

Every cookie set by a backend api is handed to the client as
`<api_name>/-/<cookie_name>=<encoded original cookie>`, so cookies of several
apis can live side by side in one browser cookie jar. On the way back only the
cookies of the api being called are decoded and forwarded.
"""

from __future__ import annotations

import logging
from urllib.parse import quote, unquote

from .paths import SEPARATOR, namespace_for

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone besides letters, digits and "-_.~"
_URI_COMPONENT_SAFE = "!*'()"


def encode_cookie_value(cookie: str) -> str:
    return quote(cookie, safe=_URI_COMPONENT_SAFE)


def decode_cookie_value(value: str) -> str:
    return unquote(value)


def cookie_name(cookie: str) -> str:
    """Name part of a `name=value; attr=...` cookie string."""
    return cookie.split("=", 1)[0].strip()


def encode_set_cookie(cookie: str, api_name: str | None) -> str:
    """Wrap a backend Set-Cookie value into the namespaced client form."""
    namespace = namespace_for(api_name)
    return f"{namespace}{SEPARATOR}{cookie_name(cookie)}={encode_cookie_value(cookie)}"


def encode_set_cookies(cookies: list[str], api_name: str | None) -> list[str]:
    return [encode_set_cookie(cookie, api_name) for cookie in cookies]


def decode_cookie_header(cookie_header: str, api_name: str | None) -> list[str]:
    """
    Extract the cookies belonging to one api from a client Cookie header.

    Pairs of other namespaces, pairs without a namespace and malformed pairs are
    skipped. The returned strings are the original backend cookies.
    """
    if not cookie_header:
        return []

    namespace = namespace_for(api_name)
    cookies: list[str] = []
    for cookie_pair in cookie_header.split(";"):
        cookie_pair = cookie_pair.strip()
        if "=" not in cookie_pair:
            continue

        name, value = cookie_pair.split("=", 1)
        name = name.strip()
        if SEPARATOR not in name:
            continue

        cookie_namespace = name.split(SEPARATOR, 1)[0]
        if cookie_namespace != namespace:
            continue

        cookies.append(decode_cookie_value(value.strip()))

    logger.debug(f"Forwarding {len(cookies)} cookie(s) to api '{namespace}'")
    return cookies
