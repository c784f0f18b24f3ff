"""Small general-purpose helpers."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TypeVar

T = TypeVar("T")

DEFAULT_NAMESPACE = "lws-system"
SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


def sha1_hash(s: str) -> str:
    """Return the 40 character hex SHA-1 digest of ``s``."""
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


def non_zero_value(value: int) -> int:
    """Clamp negative values to zero."""
    return max(value, 0)


def sort_by_index(
    index_func: Callable[[T], int],
    items: Iterable[T],
    length: int,
    default: T | None = None,
) -> list[T | None]:
    """Place each item at the slot given by ``index_func``.

    The result always has ``length`` slots; unfilled slots hold ``default``.
    Items whose index cannot be determined (``index_func`` raises ValueError
    or LookupError) or whose index is out of range are skipped.
    """
    result: list[T | None] = [default] * length
    for item in items:
        try:
            index = index_func(item)
        except (ValueError, LookupError):
            continue
        if index >= length:
            continue
        if index < 0:
            raise IndexError(f"negative index {index}")
        result[index] = item
    return result


def get_operator_namespace(path: str | Path = SERVICE_ACCOUNT_NAMESPACE_FILE) -> str:
    """Return the namespace from the service account file, or the default one."""
    try:
        namespace = Path(path).read_text().strip()
    except OSError:
        return DEFAULT_NAMESPACE
    return namespace or DEFAULT_NAMESPACE