import logging
import os
import shutil
from dataclasses import dataclass

from pyhelper_utils.shell import run_command

from csi_utilities.constants import (
    APP_LABEL_KEY,
    CEPH_CSI_CHECKOUT_DIR,
    CEPH_CSI_GIT_REPO,
    DAEMONSET_KIND,
    DEFAULT_NAMESPACE,
    DEPLOYMENT_KIND,
    GIT,
    KUBECTL,
    NAMESPACE_KIND,
)
from csi_utilities.exceptions import DeploymentNotReady
from csi_utilities.templates import read_template_text, replace_namespace

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CSIDriver:
    name: str
    manifests_dir: str
    manifests: tuple[str, ...]
    examples_dir: str
    provisioner_deployment: str
    nodeplugin_daemonset: str
    log_selectors: tuple[str, ...]
    workload_label: str
    snapshot_name: str
    snapshot_class: str
    snapshot_clone_workload: str
    snapshot_clone_label: str
    claim_clone_workload: str
    claim_clone_label: str

    @property
    def workload_labels(self) -> dict[str, str]:
        return {APP_LABEL_KEY: self.workload_label}

    @property
    def snapshot_clone_claim(self) -> str:
        return f"{self.name}-pvc-restore"

    @property
    def claim_clone_claim(self) -> str:
        return f"{self.name}-pvc-clone"


RBD_DRIVER = CSIDriver(
    name="rbd",
    manifests_dir="deploy/rbd/kubernetes",
    manifests=(
        "csi-provisioner-rbac.yaml",
        "csi-provisioner-psp.yaml",
        "csi-rbdplugin-provisioner.yaml",
        "csi-nodeplugin-rbac.yaml",
        "csi-nodeplugin-psp.yaml",
        "csi-rbdplugin.yaml",
    ),
    examples_dir="examples/rbd",
    provisioner_deployment="csi-rbdplugin-provisioner",
    nodeplugin_daemonset="csi-rbdplugin",
    log_selectors=("app=ceph-csi-rbd", "app=csi-rbdplugin-provisioner", "app=csi-rbdplugin"),
    workload_label="upgrade-testing",
    snapshot_name="rbd-pvc-snapshot",
    snapshot_class="csi-rbdplugin-snapclass",
    snapshot_clone_workload="app-clone-from-snap",
    snapshot_clone_label="validate-snap-clone",
    claim_clone_workload="appclone",
    claim_clone_label="validate-clone",
)

CEPHFS_DRIVER = CSIDriver(
    name="cephfs",
    manifests_dir="deploy/cephfs/kubernetes",
    manifests=(
        "csi-provisioner-rbac.yaml",
        "csi-provisioner-psp.yaml",
        "csi-cephfsplugin-provisioner.yaml",
        "csi-nodeplugin-rbac.yaml",
        "csi-nodeplugin-psp.yaml",
        "csi-cephfsplugin.yaml",
    ),
    examples_dir="examples/cephfs",
    provisioner_deployment="csi-cephfsplugin-provisioner",
    nodeplugin_daemonset="csi-cephfsplugin",
    log_selectors=("app=ceph-csi-cephfs", "app=csi-cephfsplugin-provisioner", "app=csi-cephfsplugin"),
    workload_label="cephfs-upgrade-testing",
    snapshot_name="cephfs-pvc-snapshot",
    snapshot_class="csi-cephfsplugin-snapclass",
    snapshot_clone_workload="snap-clone-cephfs",
    snapshot_clone_label="validate-snap-cephfs",
    claim_clone_workload="appclone",
    claim_clone_label="validate-clone",
)

CSI_DRIVERS = {driver.name: driver for driver in (RBD_DRIVER, CEPHFS_DRIVER)}


def run_kubectl(action: str, manifest_path: str, namespace: str, *extra_args: str) -> None:
    """
    Run `kubectl <action>` on a manifest rewritten for `namespace`.

    Raises:
        DeploymentNotReady: if kubectl exits non-zero.
    """
    manifest = replace_namespace(manifest=read_template_text(path=manifest_path), namespace=namespace)
    success, _, err = run_command(
        command=[KUBECTL, action, "-n", namespace, *extra_args, "-f", "-"],
        input=manifest,
        check=False,
        verify_stderr=False,
    )
    if not success:
        raise DeploymentNotReady(err_str=f"kubectl {action} of {manifest_path} failed: {err}")


def apply_manifest(manifest_path: str, namespace: str) -> None:
    run_kubectl("apply", manifest_path, namespace)


def delete_manifest(manifest_path: str, namespace: str) -> None:
    run_kubectl("delete", manifest_path, namespace, "--ignore-not-found=true")


class PluginDeployer:
    """
    Deploy and remove a CSI driver from a ceph-csi source tree.

    The deployer starts on `source_dir` (the version under test). `checkout` switches it to a released version cloned
    from git; `restore_source` switches it back. Example templates are resolved against the active source tree so
    they always match the deployed release.
    """

    def __init__(
        self,
        gateway,
        driver: CSIDriver,
        namespace: str,
        source_dir: str,
        timeout: int,
        git_repo: str = CEPH_CSI_GIT_REPO,
        checkout_dir: str = CEPH_CSI_CHECKOUT_DIR,
    ):
        self.gateway = gateway
        self.driver = driver
        self.namespace = namespace
        self.source_dir = os.path.abspath(source_dir)
        self.timeout = timeout
        self.git_repo = git_repo
        self.checkout_dir = checkout_dir
        self.active_source_dir = self.source_dir

    def checkout(self, version: str) -> str:
        """
        Clone `version` of the driver sources and make it the active source tree.

        Raises:
            DeploymentNotReady: if the clone fails.
        """
        if os.path.isdir(self.checkout_dir):
            shutil.rmtree(self.checkout_dir)

        LOGGER.info(f"Checking out {self.git_repo} {version} into {self.checkout_dir}")
        success, _, err = run_command(
            command=[GIT, "clone", "--single-branch", "--branch", version, self.git_repo, self.checkout_dir],
            check=False,
            verify_stderr=False,
        )
        if not success:
            raise DeploymentNotReady(err_str=f"Failed to check out {version} of {self.git_repo}: {err}")

        self.active_source_dir = self.checkout_dir
        return self.checkout_dir

    def restore_source(self) -> None:
        LOGGER.info(f"Switching {self.driver.name} sources back to {self.source_dir}")
        self.active_source_dir = self.source_dir

    def example_path(self, file_name: str) -> str:
        return os.path.join(self.active_source_dir, self.driver.examples_dir, file_name)

    def manifest_paths(self) -> list[str]:
        manifests_dir = os.path.join(self.active_source_dir, self.driver.manifests_dir)
        paths = []
        for manifest in self.driver.manifests:
            path = os.path.join(manifests_dir, manifest)
            if os.path.isfile(path):
                paths.append(path)
            else:
                LOGGER.info(f"{manifest} is not shipped in {manifests_dir}, skipping")
        return paths

    def deploy(self) -> None:
        """
        Apply the driver manifests of the active source tree and wait for the rollout.

        Raises:
            DeploymentNotReady: if a manifest is rejected or the rollout does not complete within the timeout.
        """
        LOGGER.info(f"Deploying {self.driver.name} plugin from {self.active_source_dir} in {self.namespace}")
        for manifest_path in self.manifest_paths():
            apply_manifest(manifest_path=manifest_path, namespace=self.namespace)
        self.wait_for_rollout()

    def wait_for_rollout(self) -> None:
        self.gateway.wait_for_rollout(
            kind=DEPLOYMENT_KIND,
            name=self.driver.provisioner_deployment,
            namespace=self.namespace,
            timeout=self.timeout,
        )
        self.gateway.wait_for_rollout(
            kind=DAEMONSET_KIND,
            name=self.driver.nodeplugin_daemonset,
            namespace=self.namespace,
            timeout=self.timeout,
        )

    def remove(self) -> None:
        LOGGER.info(f"Removing {self.driver.name} plugin deployed from {self.active_source_dir}")
        for manifest_path in reversed(self.manifest_paths()):
            delete_manifest(manifest_path=manifest_path, namespace=self.namespace)


class ScenarioHooks:
    """Setup and teardown around an upgrade scenario, owned by the caller."""

    def setup(self, run) -> None:
        pass

    def teardown(self, run) -> None:
        pass


class ClusterPrerequisites(ScenarioHooks):
    """
    Create the plugin namespace (unless it is `default`) and apply prerequisite manifests before the plugin is
    deployed: CSI config map, secrets, storage class and snapshot class. Teardown reverses both.
    """

    def __init__(self, gateway, namespace: str, manifests: tuple[str, ...] = ()):
        self.gateway = gateway
        self.namespace = namespace
        self.manifests = manifests
        self.created_namespace = False
        self.applied_manifests: list[str] = []

    def setup(self, run) -> None:
        if self.namespace != DEFAULT_NAMESPACE and not self.gateway.exists(kind=NAMESPACE_KIND, name=self.namespace):
            self.gateway.create(
                body={"apiVersion": "v1", "kind": NAMESPACE_KIND, "metadata": {"name": self.namespace}}
            )
            self.created_namespace = True

        for manifest_path in self.manifests:
            apply_manifest(manifest_path=manifest_path, namespace=self.namespace)
            self.applied_manifests.append(manifest_path)

    def teardown(self, run) -> None:
        for manifest_path in reversed(self.applied_manifests):
            delete_manifest(manifest_path=manifest_path, namespace=self.namespace)
        self.applied_manifests.clear()

        if self.created_namespace:
            self.gateway.delete(kind=NAMESPACE_KIND, name=self.namespace)
            self.created_namespace = False
