"""
Path helpers for splitting a proxied path into api name and api path.

A proxied path looks like `/<api_name>/-/<path>`. Without the separator the whole
path belongs to the default api.
"""

from __future__ import annotations

SEPARATOR = "/-/"
DEFAULT_API_NAME = "default"


def get_api_path(path: str) -> str:
    """Return the path to forward to the backend api."""
    sep_index = path.find(SEPARATOR)
    if sep_index == -1:
        return path
    # Keep the trailing slash of the separator as the leading slash of the result
    return path[sep_index + len(SEPARATOR) - 1 :]


def get_api_name(path: str) -> str | None:
    """Return the api name encoded in front of the separator, or None."""
    sep_index = path.find(SEPARATOR)
    if sep_index == -1:
        return None

    prefix = path[:sep_index]
    if prefix.startswith("/"):
        prefix = prefix[1:]
    return prefix or None


def namespace_for(api_name: str | None) -> str:
    """Cookie namespace used for an api name."""
    return api_name or DEFAULT_API_NAME
