"""Admission defaulting and validation for leader/worker set objects.

Objects are plain dictionaries in the Kubernetes JSON shape.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any

from lwskit import keys
from lwskit.intstr import (
    IntOrString,
    IntOrStringType,
    get_scaled_value_from_int_or_percent,
    is_valid_percent,
)

Obj = dict[str, Any]

INT32_MAX = 2**31 - 1
FIELD_IMMUTABLE_ERROR_MSG = "field is immutable"
TOTAL_ANNOTATION_SIZE_LIMIT = 256 * 1024


class ErrorType(str, enum.Enum):
    """Kind of a field error."""

    INVALID = "FieldValueInvalid"
    REQUIRED = "FieldValueRequired"
    TOO_LONG = "FieldValueTooLong"


_TYPE_TEXT = {
    ErrorType.INVALID: "Invalid value",
    ErrorType.REQUIRED: "Required value",
    ErrorType.TOO_LONG: "Too long",
}


@dataclass
class FieldError:
    """One problem found with one field of an object."""

    type: ErrorType
    field: str
    bad_value: Any
    detail: str

    def __str__(self) -> str:
        body = _TYPE_TEXT[self.type]
        if self.type == ErrorType.INVALID:
            body = f"{body}: {self.bad_value!r}"
        if self.detail:
            body = f"{body}: {self.detail}"
        return f"{self.field}: {body}"


class ValidationError(ValueError):
    """An object was rejected; ``errors`` lists every reason."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        messages = list(dict.fromkeys(str(error) for error in self.errors))
        text = messages[0] if len(messages) == 1 else "[" + ", ".join(messages) + "]"
        super().__init__(text)


def _invalid(path: str, value: Any, detail: str) -> FieldError:
    return FieldError(ErrorType.INVALID, path, value, detail)


def _child(path: str, *names: str) -> str:
    return ".".join([path, *names])


def _raise_if_any(errors: list[FieldError]) -> None:
    if errors:
        raise ValidationError(errors)


# --- object metadata -------------------------------------------------------

_DNS1035_FMT = "[a-z]([-a-z0-9]*[a-z0-9])?"
_DNS1123_LABEL_FMT = "[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS1123_SUBDOMAIN_FMT = _DNS1123_LABEL_FMT + r"(\." + _DNS1123_LABEL_FMT + ")*"
_QUALIFIED_NAME_FMT = "([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]"
_LABEL_VALUE_FMT = "(" + _QUALIFIED_NAME_FMT + ")?"

_DNS1035_MSG = (
    "a DNS-1035 label must consist of lower case alphanumeric characters or '-', "
    "start with an alphabetic character, and end with an alphanumeric character"
)
_DNS1123_LABEL_MSG = (
    "a lowercase RFC 1123 label must consist of lower case alphanumeric characters "
    "or '-', and must start and end with an alphanumeric character"
)
_DNS1123_SUBDOMAIN_MSG = (
    "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric characters, "
    "'-' or '.', and must start and end with an alphanumeric character"
)
_QUALIFIED_NAME_MSG = (
    "must consist of alphanumeric characters, '-', '_' or '.', "
    "and must start and end with an alphanumeric character"
)
_LABEL_VALUE_MSG = (
    "a valid label must be an empty string or consist of alphanumeric characters, "
    "'-', '_' or '.', and must start and end with an alphanumeric character"
)


def _regex_error(msg: str, fmt: str, *examples: str) -> str:
    if not examples:
        return f"{msg} (regex used for validation is '{fmt}')"
    shown = " or ".join(f"'{example}', " for example in examples)
    return f"{msg} (e.g. {shown}regex used for validation is '{fmt}')"


def _max_len_error(length: int) -> str:
    return f"must be no more than {length} characters"


def _check(value: str, fmt: str, max_len: int, msg: str, *examples: str) -> list[str]:
    errors = []
    if len(value) > max_len:
        errors.append(_max_len_error(max_len))
    if re.fullmatch(fmt, value) is None:
        errors.append(_regex_error(msg, fmt, *examples))
    return errors


def _mask_trailing_dash(name: str) -> str:
    if len(name) > 1 and name.endswith("-"):
        return name[:-1] + "a"
    return name


def _name_is_dns1035_label(name: str, prefix: bool) -> list[str]:
    if prefix:
        name = _mask_trailing_dash(name)
    return _check(name, _DNS1035_FMT, 63, _DNS1035_MSG, "my-name", "abc-123")


def _is_dns1123_label(value: str) -> list[str]:
    return _check(value, _DNS1123_LABEL_FMT, 63, _DNS1123_LABEL_MSG, "my-name", "123-abc")


def _is_dns1123_subdomain(value: str) -> list[str]:
    return _check(value, _DNS1123_SUBDOMAIN_FMT, 253, _DNS1123_SUBDOMAIN_MSG, "example.com")


def _is_qualified_name(value: str) -> list[str]:
    example = _regex_error(_QUALIFIED_NAME_MSG, _QUALIFIED_NAME_FMT, "MyName", "my.name", "123-abc")
    parts = value.split("/")
    errors: list[str] = []
    if len(parts) == 1:
        name = parts[0]
    elif len(parts) == 2:
        prefix, name = parts
        if not prefix:
            errors.append("prefix part must be non-empty")
        else:
            errors.extend(f"prefix part {msg}" for msg in _is_dns1123_subdomain(prefix))
    else:
        return [
            f"a qualified name {example} with an optional DNS subdomain prefix "
            "and '/' (e.g. 'example.com/MyName')"
        ]
    if not name:
        errors.append("name part must be non-empty")
    elif len(name) > 63:
        errors.append(f"name part {_max_len_error(63)}")
    if re.fullmatch(_QUALIFIED_NAME_FMT, name) is None:
        errors.append(f"name part {example}")
    return errors


def _is_valid_label_value(value: str) -> list[str]:
    return _check(
        value, _LABEL_VALUE_FMT, 63, _LABEL_VALUE_MSG, "MyValue", "my_value", "12345"
    )


def _validate_object_meta(meta: Obj, path: str) -> list[FieldError]:
    errors: list[FieldError] = []
    generate_name = meta.get("generateName") or ""
    if generate_name:
        errors.extend(
            _invalid(_child(path, "generateName"), generate_name, msg)
            for msg in _name_is_dns1035_label(generate_name, True)
        )
    name = meta.get("name") or ""
    if not name:
        errors.append(
            FieldError(ErrorType.REQUIRED, _child(path, "name"), "", "name or generateName is required")
        )
    else:
        errors.extend(
            _invalid(_child(path, "name"), name, msg)
            for msg in _name_is_dns1035_label(name, False)
        )
    namespace = meta.get("namespace") or ""
    if not namespace:
        errors.append(FieldError(ErrorType.REQUIRED, _child(path, "namespace"), "", ""))
    else:
        errors.extend(
            _invalid(_child(path, "namespace"), namespace, msg)
            for msg in _is_dns1123_label(namespace)
        )

    labels_path = _child(path, "labels")
    for key, value in (meta.get("labels") or {}).items():
        errors.extend(_invalid(labels_path, key, msg) for msg in _is_qualified_name(key))
        errors.extend(
            _invalid(f"{labels_path}[{key}]", value, msg) for msg in _is_valid_label_value(value)
        )

    annotations_path = _child(path, "annotations")
    annotations = meta.get("annotations") or {}
    for key in annotations:
        errors.extend(
            _invalid(annotations_path, key, msg) for msg in _is_qualified_name(key.lower())
        )
    total = sum(len(key) + len(value) for key, value in annotations.items())
    if total > TOTAL_ANNOTATION_SIZE_LIMIT:
        errors.append(
            FieldError(
                ErrorType.TOO_LONG,
                annotations_path,
                "",
                f"must have at most {TOTAL_ANNOTATION_SIZE_LIMIT} bytes",
            )
        )
    return errors


# --- rollout and subgroup helpers -----------------------------------------


def validate_nonnegative_field(value: int, path: str) -> list[FieldError]:
    """Return an error if ``value`` is negative."""
    if value < 0:
        return [_invalid(path, value, "must be grater than or equal to 0")]
    return []


def validate_positive_int_or_percent(value: Any, path: str) -> list[FieldError]:
    """Check that a value is a non-negative integer or a well-formed percentage."""
    value = IntOrString.from_value(value)
    if value.type == IntOrStringType.STRING:
        return [_invalid(path, value, msg) for msg in is_valid_percent(value.str_val)]
    if value.type == IntOrStringType.INT:
        return validate_nonnegative_field(value.int_val, path)
    return [_invalid(path, value, "must be an integer or percentage (e.g '5%%')")]


def get_percent_value(value: Any) -> tuple[int, bool]:
    """Return ``(percent, True)`` for a valid percentage, else ``(0, False)``."""
    value = IntOrString.from_value(value)
    if value.type != IntOrStringType.STRING or is_valid_percent(value.str_val):
        return 0, False
    return int(value.str_val[:-1]), True


def is_not_more_than_100_percent(value: Any, path: str) -> list[FieldError]:
    """Return an error if ``value`` is a percentage above 100%."""
    value = IntOrString.from_value(value)
    percent, is_percent = get_percent_value(value)
    if not is_percent or percent <= 100:
        return []
    return [_invalid(path, value, "must not be greater than 100%")]


def _or_one(value: Any) -> int:
    # Absent counts take the API default of 1.
    return 1 if value is None else value


def _template(lws: Obj) -> Obj:
    return (lws.get("spec") or {}).get("leaderWorkerTemplate") or {}


def validate_sub_group_policy(spec_path: str, lws: Obj) -> list[FieldError]:
    """Check the subgroup size against the group size."""
    template = _template(lws)
    path = _child(spec_path, "leaderWorkerTemplate", "SubGroupPolicy", "subGroupSize")
    size = _or_one(template.get("size"))
    sub_group_size = (template.get("subGroupPolicy") or {}).get("subGroupSize")
    if sub_group_size is None:
        return [FieldError(ErrorType.REQUIRED, path, None, "subGroupSize is required")]
    errors: list[FieldError] = []
    if sub_group_size < 1:
        errors.append(
            _invalid(path, sub_group_size, "subGroupSize must be equal or greater than 1")
        )
    if sub_group_size != 0 and size % sub_group_size != 0 and (size - 1) % sub_group_size != 0:
        errors.append(
            _invalid(path, sub_group_size, "size or size - 1 must be divisible by subGroupSize")
        )
    if size < sub_group_size:
        errors.append(_invalid(path, sub_group_size, "subGroupSize cannot be larger than size"))
    return errors


def _scaled(value: IntOrString, total: int, round_up: bool, path: str, errors: list[FieldError]) -> int:
    try:
        return get_scaled_value_from_int_or_percent(value, total, round_up)
    except ValueError:
        errors.append(_invalid(path, value, "invalid value"))
        return 0


def _general_validate(lws: Obj) -> list[FieldError]:
    spec_path = "spec"
    metadata = lws.get("metadata") or {}
    errors = _validate_object_meta(metadata, "metadata")
    spec = lws.get("spec") or {}
    template = spec.get("leaderWorkerTemplate") or {}

    replicas = _or_one(spec.get("replicas"))
    size = _or_one(template.get("size"))
    if replicas < 0:
        errors.append(
            _invalid(_child(spec_path, "replicas"), replicas, "replicas must be equal or greater than 0")
        )
    if size < 1:
        errors.append(
            _invalid(
                _child(spec_path, "leaderWorkerTemplate", "size"),
                size,
                "size must be equal or greater than 1",
            )
        )
    if replicas * size > INT32_MAX:
        errors.append(
            _invalid(
                _child(spec_path, "replicas"),
                replicas,
                f"the product of replicas and worker replicas must not exceed {INT32_MAX}",
            )
        )

    config = (spec.get("rolloutStrategy") or {}).get("rollingUpdateConfiguration")
    settings = config or {}
    max_unavailable = IntOrString.from_value(settings.get("maxUnavailable", 0))
    max_surge = IntOrString.from_value(settings.get("maxSurge", 0))
    config_path = _child(spec_path, "rolloutStrategy", "rollingUpdateConfiguration")
    max_unavailable_path = _child(config_path, "maxUnavailable")
    max_surge_path = _child(config_path, "maxSurge")
    if config is not None:
        errors += validate_positive_int_or_percent(max_unavailable, max_unavailable_path)
        # Aligned with StatefulSet.
        errors += is_not_more_than_100_percent(max_unavailable, max_unavailable_path)
        errors += validate_positive_int_or_percent(max_surge, max_surge_path)
        errors += is_not_more_than_100_percent(max_surge, max_surge_path)

    unavailable = _scaled(max_unavailable, replicas, False, max_unavailable_path, errors)
    surge = _scaled(max_surge, replicas, True, max_surge_path, errors)
    if unavailable == 0 and surge == 0:
        errors.append(
            _invalid(max_unavailable_path, max_unavailable, "must not be 0 when `maxSurge` is 0")
        )

    if template.get("subGroupPolicy") is not None:
        errors += validate_sub_group_policy(spec_path, lws)
    else:
        annotations = metadata.get("annotations") or {}
        key = keys.SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY
        if key in annotations:
            errors.append(
                _invalid(
                    _child("metadata", "annotations", key),
                    annotations[key],
                    "cannot have subgroup-exclusive-topology without subGroupSize set",
                )
            )
    return errors


def _require_lws(obj: Any) -> Obj:
    if not isinstance(obj, dict):
        raise TypeError(f"expected a LeaderWorkerSet but got a {type(obj).__name__}")
    return obj


class LeaderWorkerSetWebhook:
    """Defaults and validates leader/worker set objects."""

    def default(self, lws: Any) -> None:
        """Fill in restart policy, rollout strategy and network settings."""
        spec = _require_lws(lws).setdefault("spec", {})
        template = spec.setdefault("leaderWorkerTemplate", {})
        if not template.get("restartPolicy"):
            template["restartPolicy"] = keys.RECREATE_GROUP_ON_POD_RESTART
        if template["restartPolicy"] == keys.DEPRECATED_DEFAULT_RESTART_POLICY:
            template["restartPolicy"] = keys.NONE_RESTART_POLICY

        rollout = spec.get("rolloutStrategy")
        if rollout is None:
            rollout = spec["rolloutStrategy"] = {}
        if not rollout.get("type"):
            rollout["type"] = keys.ROLLING_UPDATE_STRATEGY_TYPE
        if (
            rollout["type"] == keys.ROLLING_UPDATE_STRATEGY_TYPE
            and rollout.get("rollingUpdateConfiguration") is None
        ):
            rollout["rollingUpdateConfiguration"] = {"maxUnavailable": 1, "maxSurge": 0}

        network = spec.get("networkConfig")
        if network is None:
            spec["networkConfig"] = {"subdomainPolicy": keys.SUBDOMAIN_SHARED}
        elif network.get("subdomainPolicy") is None:
            network["subdomainPolicy"] = keys.SUBDOMAIN_SHARED

    def validate_create(self, lws: Any) -> list[str]:
        """Validate a new object; raise ValidationError if it is rejected."""
        _raise_if_any(_general_validate(_require_lws(lws)))
        return []

    def validate_update(self, old_lws: Any, new_lws: Any) -> list[str]:
        """Validate an update; raise ValidationError if it is rejected."""
        old_lws, new_lws = _require_lws(old_lws), _require_lws(new_lws)
        errors = _general_validate(new_lws)
        spec_path = "spec"
        old_template, new_template = _template(old_lws), _template(new_lws)

        new_size, old_size = _or_one(new_template.get("size")), _or_one(old_template.get("size"))
        if new_size != old_size:
            errors.append(
                _invalid(
                    _child(spec_path, "leaderWorkerTemplate", "size"),
                    new_size,
                    FIELD_IMMUTABLE_ERROR_MSG,
                )
            )

        sub_path = _child(spec_path, "leaderWorkerTemplate", "SubGroupPolicy", "subGroupSize")
        new_policy = new_template.get("subGroupPolicy")
        old_policy = old_template.get("subGroupPolicy")
        if new_policy is not None and old_policy is not None:
            if new_policy.get("subGroupSize") != old_policy.get("subGroupSize"):
                errors.append(
                    _invalid(sub_path, new_policy.get("subGroupSize"), FIELD_IMMUTABLE_ERROR_MSG)
                )
        if new_policy is not None and old_policy is None:
            errors.append(
                _invalid(
                    sub_path,
                    new_policy.get("subGroupSize"),
                    "cannot enable subGroupSize after the lws is already created",
                )
            )
        if new_policy is None and old_policy is not None:
            errors.append(
                _invalid(
                    sub_path, old_policy.get("subGroupSize"), "cannot remove subGroupSize after enabled"
                )
            )

        new_network = (new_lws.get("spec") or {}).get("networkConfig")
        if new_network is not None and new_network.get("subdomainPolicy") is None:
            old_network = (old_lws.get("spec") or {}).get("networkConfig") or {}
            errors.append(
                _invalid(
                    _child(spec_path, "networkConfig", "subdomainPolicy"),
                    old_network.get("subdomainPolicy"),
                    "cannot set subdomainPolicy as null",
                )
            )
        _raise_if_any(errors)
        return []

    def validate_delete(self, lws: Any) -> list[str]:
        """Admit any deletion."""
        return []