"""Admission defaulting and validation for pods belonging to leader/worker sets."""

from __future__ import annotations

import logging
import re
from typing import Any

from lwskit import keys
from lwskit.podutils import MissingMetadataError, add_lws_variables, is_leader_pod
from lwskit.statefulset import get_parent_name_and_ordinal
from lwskit.tpu import add_tpu_variables, pod_requests_tpus
from lwskit.utils import sha1_hash

log = logging.getLogger(__name__)

Pod = dict[str, Any]

_INT_RE = re.compile(r"[+-]?[0-9]+")


def _atoi(text: str) -> int:
    if not isinstance(text, str) or _INT_RE.fullmatch(text) is None:
        raise ValueError(f"parsing {text!r}: invalid syntax")
    return int(text)


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b >= 0) else -quotient


def _require_pod(obj: Any) -> Pod:
    if not isinstance(obj, dict):
        raise TypeError(f"expected a Pod but got a {type(obj).__name__}")
    return obj


def gen_group_unique_key(namespace: str, pod_name: str) -> str:
    """Return the SHA-1 key identifying a group, derived from ``namespace/pod_name``."""
    return sha1_hash(f"{namespace}/{pod_name}")


def exclusive_affinity_applied(pod: Pod, topology_key: str) -> bool:
    """Return True if affinity and anti-affinity terms for ``topology_key`` are present."""
    affinity = (pod.get("spec") or {}).get("affinity")
    if not affinity:
        return False
    pod_affinity = affinity.get("podAffinity")
    anti_affinity = affinity.get("podAntiAffinity")
    if pod_affinity is None or anti_affinity is None:
        return False
    field = "requiredDuringSchedulingIgnoredDuringExecution"
    has_affinity = any(
        term.get("topologyKey") == topology_key for term in pod_affinity.get(field) or []
    )
    has_anti_affinity = any(
        term.get("topologyKey") == topology_key for term in anti_affinity.get(field) or []
    )
    return has_affinity and has_anti_affinity


def set_exclusive_affinities(
    pod: Pod, group_unique_key: str, topology_key: str, pod_affinity_key: str
) -> None:
    """Pin the pod's group to one topology domain and keep other groups out of it."""
    if exclusive_affinity_applied(pod, topology_key):
        return
    spec = pod.setdefault("spec", {})
    affinity = spec.get("affinity")
    if affinity is None:
        affinity = spec["affinity"] = {}
    if affinity.get("podAffinity") is None:
        affinity["podAffinity"] = {}
    if affinity.get("podAntiAffinity") is None:
        affinity["podAntiAffinity"] = {}
    field = "requiredDuringSchedulingIgnoredDuringExecution"

    affinity["podAffinity"].setdefault(field, []).append(
        {
            "labelSelector": {
                "matchExpressions": [
                    {"key": pod_affinity_key, "operator": "In", "values": [group_unique_key]}
                ]
            },
            "topologyKey": topology_key,
        }
    )
    affinity["podAntiAffinity"].setdefault(field, []).append(
        {
            "labelSelector": {
                "matchExpressions": [
                    {"key": pod_affinity_key, "operator": "Exists"},
                    {"key": pod_affinity_key, "operator": "NotIn", "values": [group_unique_key]},
                ]
            },
            "topologyKey": topology_key,
        }
    )


def get_sub_group_index(pod_count: int, sub_group_size: int, worker_index: int) -> str:
    """Return the subgroup index of a worker as a string."""
    if (pod_count - 1) % sub_group_size == 0:
        # The leader is an extra pod that belongs to the first subgroup.
        return str(_trunc_div(worker_index - 1, sub_group_size))
    return str(_trunc_div(worker_index, sub_group_size))


class PodWebhook:
    """Defaults labels, placement and environment of leader/worker set pods."""

    def validate_create(self, pod: Any) -> list[str]:
        """Admit a pod on creation; returns admission warnings."""
        _require_pod(pod)
        log.debug("Validating Pod")
        return []

    def validate_update(self, old_pod: Any, new_pod: Any) -> list[str]:
        """Admit any pod update; only the object types are checked."""
        _require_pod(old_pod)
        _require_pod(new_pod)
        return []

    def validate_delete(self, pod: Any) -> list[str]:
        """Admit any pod deletion; only the object type is checked."""
        _require_pod(pod)
        return []

    def default(self, pod: Any) -> None:
        """Fill in the labels, affinities and environment variables of a set's pod."""
        _require_pod(pod)
        log.debug("Defaulting Pod")
        metadata = pod.setdefault("metadata", {})
        labels = metadata.get("labels")
        if not labels or keys.SET_NAME_LABEL_KEY not in labels:
            return
        annotations = metadata.get("annotations") or {}
        name = metadata.get("name", "")
        spec = pod.setdefault("spec", {})

        try:
            size = annotations[keys.SIZE_ANNOTATION_KEY]
        except KeyError:
            raise MissingMetadataError(
                f"size annotation is unexpectedly missing for pod {name}"
            ) from None
        pod_count = _atoi(size)

        if is_leader_pod(pod):
            self._default_leader(pod, metadata, labels, annotations, spec, name)
        else:
            self._default_worker(pod, labels, annotations, name, pod_count)

        if pod_requests_tpus(spec):
            add_tpu_variables(pod, pod_count)
        add_lws_variables(pod)

    @staticmethod
    def _default_leader(
        pod: Pod,
        metadata: dict[str, Any],
        labels: dict[str, str],
        annotations: dict[str, str],
        spec: dict[str, Any],
        name: str,
    ) -> None:
        if keys.GROUP_INDEX_LABEL_KEY not in labels:
            _, group_index = get_parent_name_and_ordinal(name)
            if group_index == -1:
                raise ValueError(f"parsing pod ordinal for pod {name}")
            labels[keys.GROUP_INDEX_LABEL_KEY] = str(group_index)

        if annotations.get(keys.SUBDOMAIN_POLICY_ANNOTATION_KEY) == keys.SUBDOMAIN_UNIQUE_PER_REPLICA:
            spec["subdomain"] = name

        group_unique_key = labels.get(keys.GROUP_UNIQUE_HASH_LABEL_KEY)
        if group_unique_key is None:
            group_unique_key = gen_group_unique_key(metadata.get("namespace", ""), name)
            labels[keys.GROUP_UNIQUE_HASH_LABEL_KEY] = group_unique_key
        if keys.EXCLUSIVE_KEY_ANNOTATION_KEY in annotations:
            set_exclusive_affinities(
                pod,
                group_unique_key,
                annotations[keys.EXCLUSIVE_KEY_ANNOTATION_KEY],
                keys.GROUP_UNIQUE_HASH_LABEL_KEY,
            )

        if keys.SUB_GROUP_SIZE_ANNOTATION_KEY in annotations and not labels.get(
            keys.SUB_GROUP_INDEX_LABEL_KEY
        ):
            # The leader always lands in subgroup 0.
            labels[keys.SUB_GROUP_INDEX_LABEL_KEY] = "0"
            sub_group_key = gen_group_unique_key(name, "0")
            labels[keys.SUB_GROUP_UNIQUE_HASH_LABEL_KEY] = sub_group_key
            if keys.SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY in annotations:
                set_exclusive_affinities(
                    pod,
                    sub_group_key,
                    annotations[keys.SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY],
                    keys.SUB_GROUP_UNIQUE_HASH_LABEL_KEY,
                )

    @staticmethod
    def _default_worker(
        pod: Pod,
        labels: dict[str, str],
        annotations: dict[str, str],
        name: str,
        pod_count: int,
    ) -> None:
        _, worker_index = get_parent_name_and_ordinal(name)
        if worker_index == -1:
            raise ValueError(f"parsing pod ordinal for pod {name}")
        labels[keys.WORKER_INDEX_LABEL_KEY] = str(worker_index)

        if keys.SUB_GROUP_SIZE_ANNOTATION_KEY in annotations and not labels.get(
            keys.SUB_GROUP_INDEX_LABEL_KEY
        ):
            sub_group_size = _atoi(annotations[keys.SUB_GROUP_SIZE_ANNOTATION_KEY])
            leader_name = annotations.get(keys.LEADER_POD_NAME_ANNOTATION_KEY, "")
            sub_group_index = get_sub_group_index(pod_count, sub_group_size, worker_index)
            labels[keys.SUB_GROUP_INDEX_LABEL_KEY] = sub_group_index
            sub_group_key = gen_group_unique_key(leader_name, sub_group_index)
            labels[keys.SUB_GROUP_UNIQUE_HASH_LABEL_KEY] = sub_group_key
            if keys.SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY in annotations:
                set_exclusive_affinities(
                    pod,
                    sub_group_key,
                    annotations[keys.SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY],
                    keys.SUB_GROUP_UNIQUE_HASH_LABEL_KEY,
                )