"""TPU detection and TPU environment variable injection for pods.

Pods and pod specs are plain dictionaries in the Kubernetes JSON shape.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any

from lwskit import keys
from lwskit.statefulset import get_parent_name_and_ordinal

TPU_RESOURCE_NAME = "google.com/tpu"
TPU_WORKER_HOSTNAMES = "TPU_WORKER_HOSTNAMES"
TPU_WORKER_ID = "TPU_WORKER_ID"
TPU_NAME = "TPU_NAME"
LEADER_REQUESTS_TPUS_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/leader-requests-tpus"

_BINARY_SUFFIXES = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}
_DECIMAL_SUFFIXES = {
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}
_QUANTITY_RE = re.compile(
    r"(?P<number>[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+))"
    r"(?:(?P<exponent>[eE][+-]?[0-9]+)|(?P<suffix>[A-Za-z]*))"
)
_INT_RE = re.compile(r"[+-]?[0-9]+")


def _atoi(text: str) -> int:
    if not isinstance(text, str) or _INT_RE.fullmatch(text) is None:
        raise ValueError(f"parsing {text!r}: invalid syntax")
    return int(text)


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b >= 0) else -quotient


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


def parse_quantity(value: str | int | float) -> int:
    """Parse a resource quantity and round it away from zero to an integer."""
    if isinstance(value, bool):
        raise ValueError(f"invalid quantity {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        amount = Fraction(value)
    elif isinstance(value, str):
        match = _QUANTITY_RE.fullmatch(value)
        if match is None:
            raise ValueError(f"quantities must match the regular expression: {value!r}")
        try:
            amount = Fraction(Decimal(match["number"]))
        except InvalidOperation:
            raise ValueError(f"invalid quantity {value!r}") from None
        if match["exponent"]:
            amount *= Fraction(10) ** int(match["exponent"][1:])
        else:
            suffix = match["suffix"]
            if suffix in _BINARY_SUFFIXES:
                amount *= _BINARY_SUFFIXES[suffix]
            elif suffix in _DECIMAL_SUFFIXES:
                amount *= _DECIMAL_SUFFIXES[suffix]
            else:
                raise ValueError(f"unable to parse quantity's suffix: {value!r}")
    else:
        raise ValueError(f"invalid quantity {value!r}")
    magnitude = math.ceil(abs(amount))
    return magnitude if amount >= 0 else -magnitude


def num_tpus_requested(container: dict[str, Any]) -> int:
    """Return the number of TPUs a container asks for: limits first, then requests."""
    resources = container.get("resources") or {}
    for section in ("limits", "requests"):
        amounts = resources.get(section)
        if amounts is None:
            continue
        count = parse_quantity(amounts.get(TPU_RESOURCE_NAME, 0))
        if count != 0:
            return count
    return 0


def _containers_request_tpus(containers: list[dict[str, Any]]) -> bool:
    return any(num_tpus_requested(container) != 0 for container in containers)


def pod_requests_tpus(spec: dict[str, Any]) -> bool:
    """Return True if any container or init container of the spec requests TPUs."""
    return _containers_request_tpus(spec.get("containers") or []) or _containers_request_tpus(
        spec.get("initContainers") or []
    )


def get_container_requesting_tpus(spec: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first container (then init container) requesting TPUs, or None."""
    for container in [*(spec.get("containers") or []), *(spec.get("initContainers") or [])]:
        if num_tpus_requested(container) != 0:
            return container
    return None


def _already_injected(container: dict[str, Any]) -> bool:
    return any(
        env.get("name") in (TPU_WORKER_HOSTNAMES, TPU_WORKER_ID)
        for env in container.get("env") or []
    )


def _append_tpu_env(
    container: dict[str, Any], hostnames: list[str], worker_id: int, leader_name: str
) -> None:
    container.setdefault("env", []).extend(
        [
            {"name": TPU_WORKER_HOSTNAMES, "value": ",".join(hostnames)},
            {"name": TPU_WORKER_ID, "value": str(worker_id)},
            {"name": TPU_NAME, "value": leader_name},
        ]
    )


def add_tpu_variables_subgroup(pod: dict[str, Any]) -> None:
    """Inject TPU variables scoped to the pod's subgroup."""
    spec = pod.setdefault("spec", {})
    container = get_container_requesting_tpus(spec)
    if container is None or _already_injected(container):
        return

    metadata = pod.get("metadata") or {}
    labels = metadata.get("labels") or {}
    annotations = metadata.get("annotations") or {}
    pod_name = metadata.get("name", "")
    subdomain = spec.get("subdomain", "")
    leader_requests = annotations.get(LEADER_REQUESTS_TPUS_ANNOTATION_KEY) == "true"

    leader_name = pod_name
    sub_group_size = _atoi(annotations.get(keys.SUB_GROUP_SIZE_ANNOTATION_KEY, ""))
    sub_group_index = _atoi(labels.get(keys.SUB_GROUP_INDEX_LABEL_KEY, ""))
    worker_index = _atoi(labels.get(keys.WORKER_INDEX_LABEL_KEY, ""))

    if leader_requests:
        worker_id = _trunc_mod(worker_index, sub_group_size)
    else:
        worker_id = _trunc_mod(worker_index - 1, sub_group_size)

    start = sub_group_size * sub_group_index + 1
    end = sub_group_size * (sub_group_index + 1)
    hostnames: list[str] = []

    if labels.get(keys.WORKER_INDEX_LABEL_KEY) == "0":
        # The leader requests TPUs, so it is part of the hostnames.
        hostnames.append(f"{leader_name}.{subdomain}")
        end -= 1
    else:
        leader_name, _ = get_parent_name_and_ordinal(pod_name)
        if not leader_name:
            raise ValueError(f"parsing parent name from pod {pod_name}")
        if leader_requests and sub_group_index == 0:
            # Subgroup 0 holds the leader, so its hostnames shift left by one.
            end -= 1
            hostnames.append(f"{leader_name}.{subdomain}")
        elif leader_requests:
            # Every later subgroup shifts along with the first one.
            start -= 1
            end -= 1

    hostnames.extend(f"{leader_name}-{i}.{subdomain}" for i in range(start, end + 1))
    _append_tpu_env(container, hostnames, worker_id, leader_name)


def add_tpu_variables(pod: dict[str, Any], size: int) -> None:
    """Inject TPU_WORKER_HOSTNAMES, TPU_WORKER_ID and TPU_NAME into the TPU container."""
    metadata = pod.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    if keys.SUB_GROUP_SIZE_ANNOTATION_KEY in annotations:
        add_tpu_variables_subgroup(pod)
        return

    spec = pod.setdefault("spec", {})
    container = get_container_requesting_tpus(spec)
    if container is None or _already_injected(container):
        return

    labels = metadata.get("labels") or {}
    pod_name = metadata.get("name", "")
    subdomain = spec.get("subdomain", "")

    leader_name = pod_name
    worker_id = 0
    hostnames: list[str] = []
    if labels.get(keys.WORKER_INDEX_LABEL_KEY) == "0":
        # A leader carrying this spec requests TPUs and gets id 0.
        hostnames.append(f"{leader_name}.{subdomain}")
    else:
        leader_name, worker_id = get_parent_name_and_ordinal(pod_name)
        if not leader_name:
            raise ValueError(f"parsing parent name from pod {pod_name}")
        if annotations.get(LEADER_REQUESTS_TPUS_ANNOTATION_KEY) == "true":
            hostnames.append(f"{leader_name}.{subdomain}")
        else:
            # Only workers are TPU hosts, so their ids shift down by one.
            worker_id -= 1

    hostnames.extend(f"{leader_name}-{i}.{subdomain}" for i in range(1, size))
    _append_tpu_env(container, hostnames, worker_id, leader_name)


def add_tpu_annotations(leader_pod: dict[str, Any], annotations: dict[str, str]) -> None:
    """Mark ``annotations`` when the leader pod requests TPUs."""
    if pod_requests_tpus(leader_pod.get("spec") or {}):
        annotations[LEADER_REQUESTS_TPUS_ANNOTATION_KEY] = "true"