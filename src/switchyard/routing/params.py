"""Parameter scoping across mounts and prefix stripping."""

from collections.abc import Mapping


def is_positional(name: str) -> bool:
    """True for keys bound by unnamed wildcards or regex captures."""
    return name.isdigit()


def named_params(params: Mapping[str, str]) -> dict[str, str]:
    """Drop positional keys; only named params cross a mount boundary."""
    return {name: value for name, value in params.items() if not is_positional(name)}


def merge_params(parent: Mapping[str, str], own: Mapping[str, str]) -> dict[str, str]:
    """Combine inherited and local bindings. Local values win::

        merge_params({"userId": "1", "0": "x"}, {"orderId": "9"})
        # {"userId": "1", "orderId": "9"}
    """
    merged = named_params(parent)
    merged.update(own)
    return merged


def strip_prefix(path: str, matched: str) -> tuple[str, str]:
    """Split *path* at a matched mount prefix.

    Returns ``(base, remaining)``: the prefix without its trailing slash,
    and the rest of the path, which always starts with ``/``::

        strip_prefix("/api/users", "/api")  # ("/api", "/users")
        strip_prefix("/api/", "/api/")      # ("/api", "/")
    """
    remaining = path[len(matched) :]
    if not remaining.startswith("/"):
        remaining = "/" + remaining
    base = matched[:-1] if matched.endswith("/") else matched
    return base, remaining
