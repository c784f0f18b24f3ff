"""Controller revisions that record the template state of a leader/worker set.

A revision stores, in ``data``, the JSON bytes of a strategic merge patch that
restores the set's ``leaderWorkerTemplate`` and ``networkConfig``.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping
from typing import Any

from lwskit import keys
from lwskit.cluster import ObjectStore

log = logging.getLogger(__name__)

Obj = dict[str, Any]

REVISION_KIND = "ControllerRevision"
_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"
_FNV32_OFFSET = 2166136261
_FNV32_PRIME = 16777619
_MAX_PREFIX = 220
_DELETE = object()


def _meta(obj: Obj) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _marshal(obj: Any) -> bytes:
    """Encode compactly with sorted keys and HTML-safe escapes."""
    text = json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    for char, escape in (
        ("&", "\\u0026"),
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _new_controller_ref(lws: Obj) -> Obj:
    meta = _meta(lws)
    return {
        "apiVersion": keys.API_VERSION,
        "kind": keys.KIND,
        "name": meta.get("name", ""),
        "uid": meta.get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def _controller_of(obj: Obj) -> Obj | None:
    for ref in _meta(obj).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def _get_patch(lws: Obj) -> bytes:
    """Return a patch that restores the template and network settings of ``lws``."""
    raw = json.loads(json.dumps(lws))
    spec = raw.setdefault("spec", {})
    # Sets created before networkConfig existed hash the same before and after defaulting.
    if spec.get("networkConfig") is None:
        spec["networkConfig"] = {"subdomainPolicy": keys.SUBDOMAIN_SHARED}
    network = spec["networkConfig"]
    template = spec.get("leaderWorkerTemplate") or {}
    network["$patch"] = "replace"
    template["$patch"] = "replace"
    return _marshal({"spec": {"networkConfig": network, "leaderWorkerTemplate": template}})


def safe_encode_string(s: str) -> str:
    """Map every character onto an alphabet without vowels, avoiding accidental words."""
    return "".join(_ALPHANUMS[byte % len(_ALPHANUMS)] for byte in s.encode("utf-8"))


def _fnv32(data: bytes) -> int:
    value = _FNV32_OFFSET
    for byte in data:
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
        value ^= byte
    return value


def hash_revision(revision: Obj) -> str:
    """Return the FNV-32 hash of the revision's data, safely encoded."""
    return safe_encode_string(str(_fnv32(revision.get("data") or b"")))


def revision_name(prefix: str, hash_value: str, revision_number: int) -> str:
    """Return ``prefix-hash-number``, cutting the prefix to 220 characters."""
    return f"{prefix[:_MAX_PREFIX]}-{hash_value}-{revision_number}"


def get_highest_revision(revisions: list[Obj]) -> Obj | None:
    """Return the revision with the highest number; the last one among equals."""
    highest = 0
    found = None
    for revision in revisions:
        if highest <= revision.get("revision", 0):
            highest = revision.get("revision", 0)
            found = revision
    return found


def list_revisions(
    store: ObjectStore, parent: Obj, match_labels: Mapping[str, str]
) -> list[Obj]:
    """List revisions with the labels that are owned by ``parent`` or by no controller."""
    parent_uid = _meta(parent).get("uid", "")
    owned = []
    for revision in store.list(REVISION_KIND, _meta(parent).get("namespace") or "", match_labels):
        ref = _controller_of(revision)
        if ref is None or ref.get("uid") == parent_uid:
            owned.append(revision)
    return owned


def new_revision(store: ObjectStore, lws: Obj, revision_key: str = "") -> Obj:
    """Build, without storing, the next revision recording the state of ``lws``."""
    meta = _meta(lws)
    name = meta.get("name", "")
    revisions = list_revisions(store, lws, {keys.SET_NAME_LABEL_KEY: name})
    highest = get_highest_revision(revisions)
    number = 1 if highest is None else highest["revision"] + 1
    revision = {
        "apiVersion": "apps/v1",
        "kind": REVISION_KIND,
        "metadata": {
            "labels": {keys.SET_NAME_LABEL_KEY: name},
            "ownerReferences": [_new_controller_ref(lws)],
            "namespace": meta.get("namespace", ""),
        },
        "data": _get_patch(lws),
        "revision": number,
    }
    hash_value = hash_revision(revision)
    revision["metadata"]["name"] = revision_name(name, hash_value, number)
    revision["metadata"]["labels"][keys.REVISION_KEY] = revision_key or hash_value
    return revision


def create_revision(store: ObjectStore, revision: Obj) -> Obj:
    """Store the revision and return it."""
    store.create(REVISION_KIND, revision)
    return revision


def get_revision_key(obj: Obj) -> str:
    """Return the object's revision key label, or an empty string."""
    return (_meta(obj).get("labels") or {}).get(keys.REVISION_KEY, "")


def get_revision(store: ObjectStore, lws: Obj, revision_key: str) -> Obj | None:
    """Return the revision of ``lws`` carrying ``revision_key``, or None.

    If several match, the one with the highest number is returned.
    """
    if not revision_key:
        return None
    labels = {keys.SET_NAME_LABEL_KEY: _meta(lws).get("name", ""), keys.REVISION_KEY: revision_key}
    revisions = list_revisions(store, lws, labels)
    if not revisions:
        return None
    if len(revisions) > 1:
        log.error(
            "More than one revision exists for the given template hash; returning the latest revision"
        )
        return get_highest_revision(revisions)
    return revisions[0]


def _merge(original: Any, patch: Any) -> Any:
    """Apply a strategic merge patch whose lists are replaced whole."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    directive = patch.get("$patch")
    body = {k: v for k, v in patch.items() if k != "$patch"}
    if directive == "delete":
        return _DELETE
    if directive == "replace":
        original = None
    elif directive is not None:
        raise ValueError(f"unknown patch directive {directive!r}")
    result = copy.deepcopy(original) if isinstance(original, dict) else {}
    for key, value in body.items():
        if value is None:
            result.pop(key, None)
            continue
        merged = _merge(result.get(key), value)
        if merged is _DELETE:
            result.pop(key, None)
        else:
            result[key] = merged
    return result


def apply_revision(lws: Obj, revision: Obj) -> Obj:
    """Return a new set with the state recorded in ``revision`` restored onto ``lws``."""
    patch = json.loads(revision["data"])
    return _merge(json.loads(json.dumps(lws)), patch)


def equal_revision(lhs: Obj | None, rhs: Obj | None) -> bool:
    """Return True if both are None or both record the same data."""
    if lhs is None or rhs is None:
        return lhs is None and rhs is None
    return lhs.get("data") == rhs.get("data")


def truncate_revisions(store: ObjectStore, lws: Obj, revision_key: str) -> None:
    """Delete every revision of ``lws`` except those carrying ``revision_key``."""
    revisions = list_revisions(store, lws, {keys.SET_NAME_LABEL_KEY: _meta(lws).get("name", "")})
    for revision in revisions:
        if get_revision_key(revision) != revision_key:
            store.delete(REVISION_KIND, revision)