# lwskit

Helpers for running groups of pods as one unit: a leader pod and its workers,
replicated as a set. The package works on plain Python dictionaries shaped like
the cluster's own pod, stateful set, service and revision objects. It has no
third-party dependencies.

## What it provides

- `lwskit.pod_webhook.PodWebhook` fills in a set's pod through `default(pod)`.
  It adds the group index, worker index and sub-group index labels and the
  group and sub-group hash labels. It sets exclusive-placement affinity terms
  (`set_exclusive_affinities`) when the exclusive-topology annotations are
  present. It injects the TPU environment variables
  (`lwskit.tpu.add_tpu_variables`) when a container requests TPUs, and the
  `LWS_LEADER_ADDRESS`, `LWS_GROUP_SIZE` and `LWS_WORKER_INDEX` variables
  (`lwskit.podutils.add_lws_variables`). Pods without the set-name label are
  left untouched. `validate_create`, `validate_update` and `validate_delete`
  admit any pod and return an empty list of warnings.
- `lwskit.lws_webhook.LeaderWorkerSetWebhook` sets defaults on a set through
  `default(lws)`:
  - the restart policy becomes `RecreateGroupOnPodRestart`, and `Default` is
    turned into `None`;
  - the rollout strategy becomes `RollingUpdate`, with `maxUnavailable: 1` and
    `maxSurge: 0`;
  - the subdomain policy becomes `Shared`.

  `validate_create` and `validate_update` raise `ValidationError` when the set
  is rejected. The error's `errors` attribute is a list of `FieldError`
  entries. They cover the metadata name and labels, replicas and size, the
  rollout percentages, sub-group size, and fields that may not change on
  update.
- `lwskit.intstr.IntOrString` holds values that may be an integer or a
  percentage, such as `maxSurge` and `maxUnavailable`. The module also has
  `is_valid_percent` and `get_scaled_value_from_int_or_percent`.
- `lwskit.tpu` detects containers that request `google.com/tpu`
  (`pod_requests_tpus`, `get_container_requesting_tpus`, `num_tpus_requested`).
  It parses resource quantities (`parse_quantity`) and sets
  `TPU_WORKER_HOSTNAMES`, `TPU_WORKER_ID` and `TPU_NAME`, with or without
  sub-groups.
- `lwskit.podutils` checks pod state (`container_restarted`, `pod_deleted`,
  `is_leader_pod`, `pod_running_and_ready`, `is_pod_ready`) and looks up pod
  conditions. A missing label or annotation raises `MissingMetadataError`.
- `lwskit.revision` records the template and network settings of a set as
  revisions. It provides `new_revision`, `create_revision`, `get_revision`,
  `list_revisions`, `apply_revision`, `equal_revision`, `truncate_revisions`
  and `get_highest_revision`. Revision names have the form
  `name-hash-number`, where the hash is an FNV-32 hash of the revision data,
  encoded with `safe_encode_string`.
- `lwskit.cluster.ObjectStore` is an in-memory store with `get`, `create`,
  `list` and `delete`. It raises `NotFoundError` and `AlreadyExistsError`.
  `create_headless_service_if_not_exists` creates a group's headless service in
  the store, with a controller owner reference to the owner object.
- `lwskit.keys` lists the label, annotation, environment variable and policy
  names.
- Smaller helpers:
  - `lwskit.statefulset.get_parent_name_and_ordinal` and `statefulset_ready`;
  - `lwskit.utils.sha1_hash`, `non_zero_value`, `sort_by_index` and
    `get_operator_namespace`, which reads the service-account namespace file
    and falls back to `lws-system`;
  - `lwskit.useragent.default`, which returns
    `lws/<version> (<os>/<arch>) <short commit>`.

## Example

```python
from lwskit.pod_webhook import PodWebhook

pod = {
    "metadata": {
        "name": "test-sample-1-3",
        "namespace": "default",
        "labels": {"leaderworkerset.sigs.k8s.io/name": "test-sample",
                   "leaderworkerset.sigs.k8s.io/group-index": "1"},
        "annotations": {"leaderworkerset.sigs.k8s.io/size": "5"},
    },
    "spec": {"containers": [{"name": "worker", "image": "busybox"}]},
}
PodWebhook().default(pod)
print(pod["metadata"]["labels"]["leaderworkerset.sigs.k8s.io/worker-index"])  # "3"
```

## What it does not do

- It does not serve admission requests over HTTP. The webhook classes are
  plain objects that you call yourself.
- It does not talk to a real cluster or run a reconcile loop. Revisions and
  services live only in the in-memory `ObjectStore`.
- It provides no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```