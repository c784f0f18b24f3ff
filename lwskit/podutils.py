"""Helpers for inspecting and mutating pod objects.

Pods are plain dictionaries in the Kubernetes JSON shape
(``metadata``, ``spec``, ``status``).
"""

from __future__ import annotations

from typing import Any

from lwskit import keys

Pod = dict[str, Any]


class MissingMetadataError(ValueError):
    """A pod lacks a label or annotation needed to derive its settings."""


def _metadata(pod: Pod) -> dict[str, Any]:
    return pod.get("metadata") or {}


def _labels(pod: Pod) -> dict[str, str]:
    return _metadata(pod).get("labels") or {}


def _annotations(pod: Pod) -> dict[str, str]:
    return _metadata(pod).get("annotations") or {}


def _object_ref(pod: Pod) -> str:
    meta = _metadata(pod)
    namespace = meta.get("namespace", "")
    name = meta.get("name", "")
    return f"{namespace}/{name}" if namespace else name


def container_restarted(pod: Pod) -> bool:
    """Return True if any container in a running or pending pod has restarted."""
    status = pod.get("status") or {}
    if status.get("phase") not in (keys.POD_RUNNING, keys.POD_PENDING):
        return False
    statuses = [
        *(status.get("initContainerStatuses") or []),
        *(status.get("containerStatuses") or []),
    ]
    return any(stat.get("restartCount", 0) > 0 for stat in statuses)


def pod_deleted(pod: Pod) -> bool:
    """Return True if the pod has been marked for deletion."""
    return _metadata(pod).get("deletionTimestamp") is not None


def is_leader_pod(pod: Pod) -> bool:
    """Return True if the pod is the leader of its group."""
    return _labels(pod).get(keys.WORKER_INDEX_LABEL_KEY) == "0"


def pod_running_and_ready(pod: Pod) -> bool:
    """Return True if the pod is running and its Ready condition is true."""
    status = pod.get("status") or {}
    return status.get("phase") == keys.POD_RUNNING and is_pod_ready_condition_true(status)


def _add_env_vars_if_not_exists(container: dict[str, Any], *env_vars: dict[str, str]) -> None:
    """Put ``env_vars`` first, followed by existing vars whose names are not among them."""
    new_names = {env["name"] for env in env_vars}
    existing = [env for env in container.get("env") or [] if env["name"] not in new_names]
    container["env"] = [*env_vars, *existing]


def add_lws_variables(pod: Pod) -> None:
    """Inject leader address, group size and worker index into every container."""
    labels = _labels(pod)
    annotations = _annotations(pod)
    ref = _object_ref(pod)
    prefix = "Failure constructing environment variables"

    try:
        lws_name = labels[keys.SET_NAME_LABEL_KEY]
    except KeyError:
        raise MissingMetadataError(f"{prefix}, no name label found for pod {ref}") from None
    try:
        group_index = labels[keys.GROUP_INDEX_LABEL_KEY]
    except KeyError:
        raise MissingMetadataError(
            f"{prefix}, no group index label found for pod {ref}"
        ) from None

    spec = pod.setdefault("spec", {})
    namespace = _metadata(pod).get("namespace", "")
    leader_address = {
        "name": keys.LWS_LEADER_ADDRESS,
        "value": f"{lws_name}-{group_index}.{spec.get('subdomain', '')}.{namespace}",
    }

    try:
        size = annotations[keys.SIZE_ANNOTATION_KEY]
    except KeyError:
        raise MissingMetadataError(
            f"{prefix}, no size annotation found for pod {ref}"
        ) from None
    group_size = {"name": keys.LWS_GROUP_SIZE, "value": size}

    try:
        worker_index = labels[keys.WORKER_INDEX_LABEL_KEY]
    except KeyError:
        raise MissingMetadataError(
            f"{prefix}, no worker index label found for pod {ref}"
        ) from None
    worker_index_var = {"name": keys.LWS_WORKER_INDEX, "value": worker_index}

    for container in [*(spec.get("containers") or []), *(spec.get("initContainers") or [])]:
        _add_env_vars_if_not_exists(container, leader_address, group_size, worker_index_var)


def is_pod_ready(pod: Pod) -> bool:
    """Return True if the pod's Ready condition is true."""
    return is_pod_ready_condition_true(pod.get("status") or {})


def is_pod_ready_condition_true(status: dict[str, Any]) -> bool:
    """Return True if the status holds a Ready condition set to True."""
    condition = get_pod_ready_condition(status)
    return condition is not None and condition.get("status") == keys.CONDITION_TRUE


def get_pod_ready_condition(status: dict[str, Any]) -> dict[str, Any] | None:
    """Return the Ready condition of a status, or None."""
    found = get_pod_condition(status, keys.POD_READY)
    return None if found is None else found[1]


def get_pod_condition(
    status: dict[str, Any] | None, condition_type: str
) -> tuple[int, dict[str, Any]] | None:
    """Return ``(index, condition)`` for the given type, or None if absent."""
    if status is None:
        return None
    return get_pod_condition_from_list(status.get("conditions"), condition_type)


def get_pod_condition_from_list(
    conditions: list[dict[str, Any]] | None, condition_type: str
) -> tuple[int, dict[str, Any]] | None:
    """Return ``(index, condition)`` of the first condition of that type, or None."""
    for index, condition in enumerate(conditions or []):
        if condition.get("type") == condition_type:
            return index, condition
    return None