# Timeouts
TIMEOUT_2SEC = 2
TIMEOUT_1MIN = 60
TIMEOUT_2MIN = 120

DEFAULT_POLL_INTERVAL = TIMEOUT_2SEC

# Kinds handled by the platform gateway
PVC_KIND = "PersistentVolumeClaim"
POD_KIND = "Pod"
VOLUME_SNAPSHOT_KIND = "VolumeSnapshot"
VOLUME_SNAPSHOT_CLASS_KIND = "VolumeSnapshotClass"
STORAGE_CLASS_KIND = "StorageClass"
SECRET_KIND = "Secret"
CONFIG_MAP_KIND = "ConfigMap"
DEPLOYMENT_KIND = "Deployment"
DAEMONSET_KIND = "DaemonSet"
NAMESPACE_KIND = "Namespace"

SNAPSHOT_API_GROUP = "snapshot.storage.k8s.io"

# Platform phases
POD_RUNNING = "Running"
PVC_BOUND = "Bound"

# Features gated by platform version
FEATURE_RESIZE = "resize"
FEATURE_PVC_CLONE = "pvc-clone"
FEATURE_SNAPSHOT = "snapshot"

# Scenario defaults
DEFAULT_NAMESPACE = "default"
DEFAULT_PVC_SIZE = "2Gi"
DEFAULT_PVC_EXPAND_SIZE = "5Gi"
DEFAULT_UPGRADE_VERSION = "v3.0.0"
DEFAULT_DEPLOY_TIMEOUT_MINUTES = 10
CHECKSUM_FILE_NAME = "testClone"
APP_LABEL_KEY = "app"
CEPH_CSI_GIT_REPO = "https://github.com/ceph/ceph-csi.git"
CEPH_CSI_CHECKOUT_DIR = "/tmp/ceph-csi"

# Commands
KUBECTL = "kubectl"
GIT = "git"
MD5SUM = "md5sum"
