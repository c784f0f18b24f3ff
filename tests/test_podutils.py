import pytest

from lwskit import keys
from lwskit.podutils import (
    MissingMetadataError,
    add_lws_variables,
    container_restarted,
    get_pod_condition,
    get_pod_condition_from_list,
    get_pod_ready_condition,
    is_leader_pod,
    is_pod_ready,
    is_pod_ready_condition_true,
    pod_deleted,
    pod_running_and_ready,
)


def make_pod_with_labels(set_name, group_index, worker_index, namespace, size):
    return {
        "metadata": {
            "name": "pod",
            "namespace": namespace,
            "labels": {
                keys.SET_NAME_LABEL_KEY: set_name,
                keys.GROUP_INDEX_LABEL_KEY: group_index,
                keys.WORKER_INDEX_LABEL_KEY: worker_index,
            },
            "annotations": {keys.SIZE_ANNOTATION_KEY: str(size)},
        },
        "spec": {
            "subdomain": set_name,
            "containers": [{"name": "worker", "image": "busybox"}],
            "initContainers": [{"name": "init", "image": "busybox"}],
        },
    }


@pytest.mark.parametrize(
    "status, expected",
    [
        ({"phase": "Running", "initContainerStatuses": [{"restartCount": 1}]}, True),
        ({"phase": "Pending", "initContainerStatuses": [{"restartCount": 1}]}, True),
        ({"phase": "Running", "containerStatuses": [{"restartCount": 1}]}, True),
        ({"phase": "Failed"}, False),
        (
            {
                "phase": "Running",
                "initContainerStatuses": [{"restartCount": 0}],
                "containerStatuses": [{"restartCount": 0}],
            },
            False,
        ),
        ({"phase": "Failed", "containerStatuses": [{"restartCount": 3}]}, False),
    ],
)
def test_container_restarted(status, expected):
    assert container_restarted({"status": status}) is expected


@pytest.mark.parametrize(
    "args, address, size, worker_index",
    [
        (("test-sample", "0", "0", "default", 3), "test-sample-0.test-sample.default", 3, "0"),
        (("test-sample", "0", "1", "default", 3), "test-sample-0.test-sample.default", 3, "1"),
        (("test-sample", "1", "0", "default", 2), "test-sample-1.test-sample.default", 2, "0"),
        (("test-sample", "1", "3", "default", 2), "test-sample-1.test-sample.default", 2, "3"),
        (("test-sample", "1", "3", "lws", 2), "test-sample-1.test-sample.lws", 2, "3"),
    ],
)
def test_add_lws_variables(args, address, size, worker_index):
    pod = make_pod_with_labels(*args)
    add_lws_variables(pod)
    containers = pod["spec"]["containers"] + pod["spec"]["initContainers"]
    assert len(containers) == 2
    for container in containers:
        env = container["env"]
        assert env[0] == {"name": "LWS_LEADER_ADDRESS", "value": address}
        assert env[1]["value"] == str(size)
        assert env[2]["value"] == worker_index


def test_add_lws_variables_keeps_other_vars_after_and_replaces_duplicates():
    pod = make_pod_with_labels("test-sample", "0", "1", "default", 3)
    pod["spec"]["containers"][0]["env"] = [
        {"name": "FOO", "value": "bar"},
        {"name": keys.LWS_GROUP_SIZE, "value": "99"},
    ]
    add_lws_variables(pod)
    env = pod["spec"]["containers"][0]["env"]
    assert [e["name"] for e in env] == [
        keys.LWS_LEADER_ADDRESS,
        keys.LWS_GROUP_SIZE,
        keys.LWS_WORKER_INDEX,
        "FOO",
    ]
    assert env[1]["value"] == "3"


@pytest.mark.parametrize(
    "remove_from, key, fragment",
    [
        ("labels", keys.SET_NAME_LABEL_KEY, "no name label"),
        ("labels", keys.GROUP_INDEX_LABEL_KEY, "no group index label"),
        ("annotations", keys.SIZE_ANNOTATION_KEY, "no size annotation"),
        ("labels", keys.WORKER_INDEX_LABEL_KEY, "no worker index label"),
    ],
)
def test_add_lws_variables_missing_metadata(remove_from, key, fragment):
    pod = make_pod_with_labels("test-sample", "0", "1", "default", 3)
    del pod["metadata"][remove_from][key]
    with pytest.raises(MissingMetadataError, match=fragment):
        add_lws_variables(pod)


def test_pod_deleted():
    assert pod_deleted({"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z"}}) is True
    assert pod_deleted({"metadata": {}}) is False


def test_is_leader_pod():
    assert is_leader_pod(make_pod_with_labels("a", "0", "0", "default", 2)) is True
    assert is_leader_pod(make_pod_with_labels("a", "0", "1", "default", 2)) is False


def _status(phase, ready):
    return {
        "phase": phase,
        "conditions": [
            {"type": "Initialized", "status": "True"},
            {"type": "Ready", "status": ready},
        ],
    }


def test_pod_running_and_ready():
    assert pod_running_and_ready({"status": _status("Running", "True")}) is True
    assert pod_running_and_ready({"status": _status("Pending", "True")}) is False
    assert pod_running_and_ready({"status": _status("Running", "False")}) is False


def test_is_pod_ready():
    assert is_pod_ready({"status": _status("Pending", "True")}) is True
    assert is_pod_ready({"status": {"phase": "Running"}}) is False


def test_is_pod_ready_condition_true():
    assert is_pod_ready_condition_true(_status("Running", "True")) is True
    assert is_pod_ready_condition_true(_status("Running", "False")) is False


def test_get_pod_ready_condition():
    assert get_pod_ready_condition(_status("Running", "True")) == {"type": "Ready", "status": "True"}
    assert get_pod_ready_condition({}) is None


def test_get_pod_condition_returns_index():
    assert get_pod_condition(_status("Running", "True"), "Ready") == (
        1,
        {"type": "Ready", "status": "True"},
    )
    assert get_pod_condition(None, "Ready") is None


def test_get_pod_condition_from_list():
    conditions = [{"type": "A"}, {"type": "B"}, {"type": "B", "status": "x"}]
    assert get_pod_condition_from_list(conditions, "B") == (1, {"type": "B"})
    assert get_pod_condition_from_list(conditions, "C") is None
    assert get_pod_condition_from_list(None, "A") is None