"""Helpers for StatefulSet objects and the pods they own."""

from __future__ import annotations

import re
from typing import Any

_STATEFUL_POD_RE = re.compile(r"(.*)-([0-9]+)\Z")
_INT32_MAX = 2**31 - 1


def get_parent_name_and_ordinal(name: str) -> tuple[str, int]:
    """Split a StatefulSet pod name into its parent name and ordinal.

    Returns ``("", -1)`` if the name does not look like a StatefulSet pod.
    The ordinal is -1 if it does not fit in a 32-bit integer.
    """
    match = _STATEFUL_POD_RE.search(name)
    if match is None:
        return "", -1
    parent, digits = match.groups()
    ordinal = int(digits)
    if ordinal > _INT32_MAX:
        ordinal = -1
    return parent, ordinal


def statefulset_ready(sts: dict[str, Any]) -> bool:
    """Return True if all replicas exist and the rollout has converged."""
    status = sts.get("status") or {}
    return (
        sts["spec"]["replicas"] == status.get("replicas", 0)
        and status.get("currentRevision", "") == status.get("updateRevision", "")
    )