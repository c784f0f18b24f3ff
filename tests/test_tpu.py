import pytest

from lwskit import keys
from lwskit.tpu import (
    LEADER_REQUESTS_TPUS_ANNOTATION_KEY,
    TPU_NAME,
    TPU_WORKER_HOSTNAMES,
    TPU_WORKER_ID,
    add_tpu_annotations,
    add_tpu_variables,
    add_tpu_variables_subgroup,
    get_container_requesting_tpus,
    num_tpus_requested,
    parse_quantity,
    pod_requests_tpus,
)


def tpu_container():
    return {
        "name": "worker",
        "image": "busybox",
        "resources": {"limits": {"google.com/tpu": "4"}},
    }


def leader_spec_with_tpu():
    return {"subdomain": "default", "containers": [tpu_container()]}


def leader_spec_with_tpu_multiple_containers():
    return {
        "subdomain": "default",
        "containers": [{"name": "leader", "image": "nginx"}, tpu_container()],
    }


def leader_spec():
    return {"subdomain": "default", "containers": [{"name": "leader", "image": "nginx"}]}


def make_pod(name, labels, annotations=None, spec=None):
    return {
        "metadata": {
            "name": name,
            "namespace": "default",
            "labels": labels,
            "annotations": annotations or {},
        },
        "spec": spec if spec is not None else leader_spec_with_tpu(),
    }


def env_values(pod):
    return [env["value"] for env in pod["spec"]["containers"][0]["env"]]


@pytest.mark.parametrize(
    "pod, size, hostnames, worker_id, tpu_name",
    [
        (
            make_pod("test-sample-1", {keys.WORKER_INDEX_LABEL_KEY: "0"}),
            1,
            "test-sample-1.default",
            "0",
            "test-sample-1",
        ),
        (
            make_pod(
                "test-sample-1-3",
                {keys.WORKER_INDEX_LABEL_KEY: "3"},
                {LEADER_REQUESTS_TPUS_ANNOTATION_KEY: "true"},
            ),
            5,
            "test-sample-1.default,test-sample-1-1.default,test-sample-1-2.default,"
            "test-sample-1-3.default,test-sample-1-4.default",
            "3",
            "test-sample-1",
        ),
    ],
)
def test_add_tpu_variables(pod, size, hostnames, worker_id, tpu_name):
    add_tpu_variables(pod, size)
    assert env_values(pod) == [hostnames, worker_id, tpu_name]
    names = [env["name"] for env in pod["spec"]["containers"][0]["env"]]
    assert names == [TPU_WORKER_HOSTNAMES, TPU_WORKER_ID, TPU_NAME]


def test_add_tpu_variables_worker_without_leader_tpus_shifts_id():
    pod = make_pod("test-sample-1-3", {keys.WORKER_INDEX_LABEL_KEY: "3"})
    add_tpu_variables(pod, 5)
    assert env_values(pod) == [
        "test-sample-1-1.default,test-sample-1-2.default,test-sample-1-3.default,"
        "test-sample-1-4.default",
        "2",
        "test-sample-1",
    ]


def test_add_tpu_variables_is_idempotent():
    pod = make_pod("test-sample-1", {keys.WORKER_INDEX_LABEL_KEY: "0"})
    add_tpu_variables(pod, 3)
    add_tpu_variables(pod, 3)
    assert len(pod["spec"]["containers"][0]["env"]) == 3


def test_add_tpu_variables_without_tpu_container_is_noop():
    pod = make_pod("test-sample-1", {keys.WORKER_INDEX_LABEL_KEY: "0"}, spec=leader_spec())
    add_tpu_variables(pod, 3)
    assert "env" not in pod["spec"]["containers"][0]


def test_add_tpu_variables_rejects_name_without_ordinal():
    pod = make_pod("sample", {keys.WORKER_INDEX_LABEL_KEY: "2"})
    with pytest.raises(ValueError, match="parsing parent name"):
        add_tpu_variables(pod, 3)


@pytest.mark.parametrize(
    "pod, hostnames, worker_id, tpu_name",
    [
        (
            make_pod(
                "test-sample-1-3",
                {keys.WORKER_INDEX_LABEL_KEY: "3", keys.SUB_GROUP_INDEX_LABEL_KEY: "0"},
                {
                    LEADER_REQUESTS_TPUS_ANNOTATION_KEY: "true",
                    keys.SUB_GROUP_SIZE_ANNOTATION_KEY: "5",
                },
            ),
            "test-sample-1.default,test-sample-1-1.default,test-sample-1-2.default,"
            "test-sample-1-3.default,test-sample-1-4.default",
            "3",
            "test-sample-1",
        ),
        (
            make_pod(
                "test-sample-1-7",
                {keys.WORKER_INDEX_LABEL_KEY: "7", keys.SUB_GROUP_INDEX_LABEL_KEY: "1"},
                {
                    LEADER_REQUESTS_TPUS_ANNOTATION_KEY: "true",
                    keys.SUB_GROUP_SIZE_ANNOTATION_KEY: "4",
                },
            ),
            "test-sample-1-4.default,test-sample-1-5.default,test-sample-1-6.default,"
            "test-sample-1-7.default",
            "3",
            "test-sample-1",
        ),
        (
            make_pod(
                "test-sample-1-5",
                {keys.WORKER_INDEX_LABEL_KEY: "5", keys.SUB_GROUP_INDEX_LABEL_KEY: "1"},
                {keys.SUB_GROUP_SIZE_ANNOTATION_KEY: "4"},
            ),
            "test-sample-1-5.default,test-sample-1-6.default,test-sample-1-7.default,"
            "test-sample-1-8.default",
            "0",
            "test-sample-1",
        ),
    ],
)
def test_add_tpu_variables_subgroup(pod, hostnames, worker_id, tpu_name):
    add_tpu_variables_subgroup(pod)
    assert env_values(pod) == [hostnames, worker_id, tpu_name]


def test_add_tpu_variables_dispatches_to_subgroup():
    pod = make_pod(
        "test-sample-1-7",
        {keys.WORKER_INDEX_LABEL_KEY: "7", keys.SUB_GROUP_INDEX_LABEL_KEY: "1"},
        {LEADER_REQUESTS_TPUS_ANNOTATION_KEY: "true", keys.SUB_GROUP_SIZE_ANNOTATION_KEY: "4"},
    )
    add_tpu_variables(pod, 100)
    assert env_values(pod)[0].split(",")[0] == "test-sample-1-4.default"


def test_add_tpu_variables_subgroup_leader_without_annotation_uses_truncated_mod():
    pod = make_pod(
        "test-sample-1",
        {keys.WORKER_INDEX_LABEL_KEY: "0", keys.SUB_GROUP_INDEX_LABEL_KEY: "0"},
        {keys.SUB_GROUP_SIZE_ANNOTATION_KEY: "5"},
    )
    add_tpu_variables_subgroup(pod)
    assert env_values(pod) == [
        "test-sample-1.default,test-sample-1-1.default,test-sample-1-2.default,"
        "test-sample-1-3.default,test-sample-1-4.default",
        "-1",
        "test-sample-1",
    ]


def test_add_tpu_variables_subgroup_missing_size_raises():
    pod = make_pod(
        "test-sample-1-3",
        {keys.WORKER_INDEX_LABEL_KEY: "3", keys.SUB_GROUP_INDEX_LABEL_KEY: "0"},
    )
    with pytest.raises(ValueError):
        add_tpu_variables_subgroup(pod)


@pytest.mark.parametrize(
    "spec, expected",
    [
        (leader_spec_with_tpu(), tpu_container()),
        (leader_spec_with_tpu_multiple_containers(), tpu_container()),
        (leader_spec(), None),
    ],
)
def test_get_container_requesting_tpus(spec, expected):
    assert get_container_requesting_tpus(spec) == expected


def test_get_container_requesting_tpus_checks_init_containers():
    spec = {"containers": [{"name": "main"}], "initContainers": [tpu_container()]}
    assert get_container_requesting_tpus(spec) is spec["initContainers"][0]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("4", 4),
        ("500m", 1),
        ("1Ki", 1024),
        ("2k", 2000),
        ("1e3", 1000),
        ("0", 0),
        ("-500m", -1),
        (7, 7),
    ],
)
def test_parse_quantity(text, expected):
    assert parse_quantity(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "4X", "1.2.3"])
def test_parse_quantity_invalid(text):
    with pytest.raises(ValueError):
        parse_quantity(text)


def test_num_tpus_requested_falls_back_to_requests():
    container = {"resources": {"limits": {"cpu": "1"}, "requests": {"google.com/tpu": "8"}}}
    assert num_tpus_requested(container) == 8
    assert num_tpus_requested({"name": "plain"}) == 0


def test_pod_requests_tpus():
    assert pod_requests_tpus(leader_spec_with_tpu()) is True
    assert pod_requests_tpus(leader_spec()) is False


def test_add_tpu_annotations():
    annotations = {}
    add_tpu_annotations({"spec": leader_spec_with_tpu()}, annotations)
    assert annotations == {LEADER_REQUESTS_TPUS_ANNOTATION_KEY: "true"}
    untouched = {}
    add_tpu_annotations({"spec": leader_spec()}, untouched)
    assert untouched == {}