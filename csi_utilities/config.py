from dataclasses import dataclass, field
from typing import Any

from csi_utilities.constants import (
    CEPH_CSI_GIT_REPO,
    DEFAULT_DEPLOY_TIMEOUT_MINUTES,
    DEFAULT_NAMESPACE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PVC_EXPAND_SIZE,
    DEFAULT_PVC_SIZE,
    DEFAULT_UPGRADE_VERSION,
    TIMEOUT_1MIN,
)

TRUE_STRINGS = ("true", "yes", "1")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


@dataclass(frozen=True)
class UpgradeConfig:
    """
    Immutable configuration of an upgrade scenario.

    `deploy_timeout` is stored in seconds; the config file key `deploy_timeout` is given in minutes.
    """

    upgrade_testing: bool = False
    test_rbd: bool = True
    test_cephfs: bool = True
    upgrade_version: str = DEFAULT_UPGRADE_VERSION
    deploy_timeout: int = DEFAULT_DEPLOY_TIMEOUT_MINUTES * TIMEOUT_1MIN
    ceph_csi_namespace: str = DEFAULT_NAMESPACE
    poll_interval: int = DEFAULT_POLL_INTERVAL
    csi_source_dir: str = "."
    ceph_csi_git_repo: str = CEPH_CSI_GIT_REPO
    pvc_size: str = DEFAULT_PVC_SIZE
    pvc_expand_size: str = DEFAULT_PVC_EXPAND_SIZE
    collect_logs_on_failure: bool = True
    prerequisite_manifests: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_py_config(cls, config: dict[str, Any]) -> "UpgradeConfig":
        prerequisites = config.get("prerequisite_manifests") or {}
        return cls(
            upgrade_testing=_as_bool(config.get("upgrade_testing", False)),
            test_rbd=_as_bool(config.get("test_rbd", True)),
            test_cephfs=_as_bool(config.get("test_cephfs", True)),
            upgrade_version=config.get("upgrade_version", DEFAULT_UPGRADE_VERSION),
            deploy_timeout=int(config.get("deploy_timeout", DEFAULT_DEPLOY_TIMEOUT_MINUTES)) * TIMEOUT_1MIN,
            ceph_csi_namespace=config.get("ceph_csi_namespace", DEFAULT_NAMESPACE),
            poll_interval=int(config.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            csi_source_dir=config.get("csi_source_dir", "."),
            ceph_csi_git_repo=config.get("ceph_csi_git_repo", CEPH_CSI_GIT_REPO),
            pvc_size=config.get("pvc_size", DEFAULT_PVC_SIZE),
            pvc_expand_size=config.get("pvc_expand_size", DEFAULT_PVC_EXPAND_SIZE),
            collect_logs_on_failure=_as_bool(config.get("collect_logs_on_failure", True)),
            prerequisite_manifests={driver: tuple(paths) for driver, paths in prerequisites.items()},
        )

    def should_run(self, driver_name: str) -> bool:
        if not self.upgrade_testing:
            return False
        return {"rbd": self.test_rbd, "cephfs": self.test_cephfs}.get(driver_name, False)

    def prerequisites_for(self, driver_name: str) -> tuple[str, ...]:
        return self.prerequisite_manifests.get(driver_name, ())
