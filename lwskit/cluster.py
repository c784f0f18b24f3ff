"""A small in-memory object store and helpers that create cluster objects in it.

Objects are plain dictionaries in the Kubernetes JSON shape, keyed by kind,
namespace and name.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Mapping
from typing import Any

log = logging.getLogger(__name__)

Obj = dict[str, Any]


class NotFoundError(LookupError):
    """The requested object does not exist."""


class AlreadyExistsError(ValueError):
    """An object with the same kind, namespace and name already exists."""


def _meta(obj: Obj) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _key(kind: str, obj: Obj) -> tuple[str, str, str]:
    meta = _meta(obj)
    name = meta.get("name") or ""
    if not name:
        raise ValueError(f"{kind} object has no name")
    return kind, meta.get("namespace") or "", name


class ObjectStore:
    """Keeps copies of objects, as an API server would."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], Obj] = {}

    def get(self, kind: str, namespace: str, name: str) -> Obj:
        """Return a copy of the object; raise NotFoundError if it is absent."""
        try:
            return copy.deepcopy(self._objects[(kind, namespace or "", name)])
        except KeyError:
            raise NotFoundError(f'{kind} "{name}" not found') from None

    def create(self, kind: str, obj: Obj) -> Obj:
        """Store a copy of ``obj``, giving it a uid if it has none."""
        key = _key(kind, obj)
        if key in self._objects:
            raise AlreadyExistsError(f'{kind} "{key[2]}" already exists')
        meta = obj.setdefault("metadata", {})
        if not meta.get("uid"):
            meta["uid"] = str(uuid.uuid4())
        self._objects[key] = copy.deepcopy(obj)
        return obj

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        match_labels: Mapping[str, str] | None = None,
    ) -> list[Obj]:
        """Return copies of the objects of ``kind`` in ``namespace`` carrying every label given.

        A namespace of None lists all namespaces. Results are ordered by namespace and name.
        """
        wanted = dict(match_labels or {})
        found = []
        for (obj_kind, obj_ns, _), obj in sorted(self._objects.items()):
            if obj_kind != kind or (namespace is not None and obj_ns != namespace):
                continue
            labels = _meta(obj).get("labels") or {}
            if all(labels.get(k) == v for k, v in wanted.items()):
                found.append(copy.deepcopy(obj))
        return found

    def delete(self, kind: str, obj: Obj) -> None:
        """Remove the object; raise NotFoundError if it is absent."""
        key = _key(kind, obj)
        try:
            del self._objects[key]
        except KeyError:
            raise NotFoundError(f'{kind} "{key[2]}" not found') from None


def _set_controller_reference(owner: Obj, obj: Obj) -> None:
    owner_meta = _meta(owner)
    for field in ("apiVersion", "kind"):
        if not owner.get(field):
            raise ValueError(f"owner has no {field}")
    owner_ns = owner_meta.get("namespace") or ""
    obj_ns = _meta(obj).get("namespace") or ""
    if owner_ns and owner_ns != obj_ns:
        raise ValueError(
            f"cross-namespace owner references are disallowed, owner's namespace "
            f"{owner_ns}, obj's namespace {obj_ns}"
        )
    ref = {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": owner_meta.get("name", ""),
        "uid": owner_meta.get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }
    refs = obj.setdefault("metadata", {}).setdefault("ownerReferences", [])
    for existing in refs:
        if existing.get("controller"):
            if existing.get("uid") != ref["uid"]:
                raise ValueError(
                    f"object is already owned by another {existing.get('kind')} controller "
                    f"{existing.get('name')}"
                )
            existing.update(ref)
            return
    refs.append(ref)


def create_headless_service_if_not_exists(
    store: ObjectStore,
    lws: Obj,
    service_name: str,
    service_selector: Mapping[str, str],
    owner: Obj,
) -> None:
    """Create a headless service in the set's namespace unless one already exists."""
    namespace = _meta(lws).get("namespace") or ""
    try:
        store.get("Service", namespace, service_name)
        return
    except NotFoundError:
        pass
    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": service_name, "namespace": namespace},
        "spec": {
            "clusterIP": "None",  # marks the service as headless
            "selector": dict(service_selector),
            "publishNotReadyAddresses": True,
        },
    }
    _set_controller_reference(owner, service)
    log.debug("Creating headless service.")
    store.create("Service", service)