"""Well-known label, annotation, environment and policy names for leader/worker sets."""

GROUP_NAME = "leaderworkerset.x-k8s.io"
API_VERSION = f"{GROUP_NAME}/v1"
KIND = "LeaderWorkerSet"

_PREFIX = "leaderworkerset.sigs.k8s.io"

# Labels
SET_NAME_LABEL_KEY = f"{_PREFIX}/name"
GROUP_INDEX_LABEL_KEY = f"{_PREFIX}/group-index"
WORKER_INDEX_LABEL_KEY = f"{_PREFIX}/worker-index"
REVISION_KEY = f"{_PREFIX}/template-revision-hash"
GROUP_UNIQUE_HASH_LABEL_KEY = f"{_PREFIX}/group-key"
SUB_GROUP_INDEX_LABEL_KEY = f"{_PREFIX}/subgroup-index"
SUB_GROUP_UNIQUE_HASH_LABEL_KEY = f"{_PREFIX}/subgroup-key"

# Annotations
SIZE_ANNOTATION_KEY = f"{_PREFIX}/size"
LEADER_POD_NAME_ANNOTATION_KEY = f"{_PREFIX}/leader-name"
EXCLUSIVE_KEY_ANNOTATION_KEY = f"{_PREFIX}/exclusive-topology"
SUB_GROUP_SIZE_ANNOTATION_KEY = f"{_PREFIX}/subgroup-size"
SUB_GROUP_EXCLUSIVE_KEY_ANNOTATION_KEY = f"{_PREFIX}/subgroup-exclusive-topology"
SUBDOMAIN_POLICY_ANNOTATION_KEY = f"{_PREFIX}/subdomainPolicy"

# Environment variables injected into every container
LWS_LEADER_ADDRESS = "LWS_LEADER_ADDRESS"
LWS_GROUP_SIZE = "LWS_GROUP_SIZE"
LWS_WORKER_INDEX = "LWS_WORKER_INDEX"

# Restart policies
RECREATE_GROUP_ON_POD_RESTART = "RecreateGroupOnPodRestart"
NONE_RESTART_POLICY = "None"
DEPRECATED_DEFAULT_RESTART_POLICY = "Default"

# Rollout strategies
ROLLING_UPDATE_STRATEGY_TYPE = "RollingUpdate"

# Subdomain policies
SUBDOMAIN_SHARED = "Shared"
SUBDOMAIN_UNIQUE_PER_REPLICA = "UniquePerReplica"

# Pod phases and conditions
POD_RUNNING = "Running"
POD_PENDING = "Pending"
POD_FAILED = "Failed"
POD_SUCCEEDED = "Succeeded"
POD_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"