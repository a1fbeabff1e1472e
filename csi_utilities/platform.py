"""
Platform gateway: the single seam between the upgrade suite and the cluster.

Every create/get/delete/patch/exec call made by the suite goes through `PlatformGateway`, which translates kubernetes
client errors into the suite's exception hierarchy and owns the fixed-interval polling policy used by every wait.
"""

import logging
import shlex
from typing import Any, Callable

from kubernetes.client import VersionApi
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError
from ocp_resources.config_map import ConfigMap
from ocp_resources.daemonset import DaemonSet
from ocp_resources.deployment import Deployment
from ocp_resources.namespace import Namespace
from ocp_resources.persistent_volume_claim import PersistentVolumeClaim
from ocp_resources.pod import ExecOnPodError, Pod
from ocp_resources.resource import ResourceEditor
from ocp_resources.secret import Secret
from ocp_resources.storage_class import StorageClass
from ocp_resources.volume_snapshot import VolumeSnapshot
from ocp_resources.volume_snapshot_class import VolumeSnapshotClass
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from csi_utilities.constants import (
    CONFIG_MAP_KIND,
    DAEMONSET_KIND,
    DEFAULT_POLL_INTERVAL,
    DEPLOYMENT_KIND,
    NAMESPACE_KIND,
    POD_KIND,
    PVC_KIND,
    SECRET_KIND,
    STORAGE_CLASS_KIND,
    TIMEOUT_1MIN,
    TIMEOUT_2MIN,
    VOLUME_SNAPSHOT_CLASS_KIND,
    VOLUME_SNAPSHOT_KIND,
)
from csi_utilities.exceptions import (
    DeploymentNotReady,
    ExecutionError,
    PlatformAPIError,
    TimeoutWaitingForReady,
)
from csi_utilities.version_gate import VersionInfo

LOGGER = logging.getLogger(__name__)

RESOURCE_CLASSES = {
    PVC_KIND: PersistentVolumeClaim,
    POD_KIND: Pod,
    VOLUME_SNAPSHOT_KIND: VolumeSnapshot,
    VOLUME_SNAPSHOT_CLASS_KIND: VolumeSnapshotClass,
    STORAGE_CLASS_KIND: StorageClass,
    SECRET_KIND: Secret,
    CONFIG_MAP_KIND: ConfigMap,
    DEPLOYMENT_KIND: Deployment,
    DAEMONSET_KIND: DaemonSet,
    NAMESPACE_KIND: Namespace,
}
CLUSTER_SCOPED_KINDS = (STORAGE_CLASS_KIND, VOLUME_SNAPSHOT_CLASS_KIND, NAMESPACE_KIND)


def resource_identity(kind: str, name: str, namespace: str | None = None) -> str:
    return f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"


class PlatformGateway:
    def __init__(self, client: DynamicClient, poll_interval: int = DEFAULT_POLL_INTERVAL):
        self.client = client
        self.poll_interval = poll_interval

    def _resource_class(self, kind: str):
        try:
            return RESOURCE_CLASSES[kind]
        except KeyError:
            raise PlatformAPIError(err_str=f"Unsupported resource kind {kind}")

    def _resource(self, kind: str, name: str, namespace: str | None = None, kind_dict: dict | None = None):
        resource_class = self._resource_class(kind=kind)
        kwargs: dict[str, Any] = {"name": name, "client": self.client}
        if kind not in CLUSTER_SCOPED_KINDS:
            kwargs["namespace"] = namespace
        if kind_dict:
            kwargs["kind_dict"] = kind_dict
        return resource_class(**kwargs)

    def create(self, body: dict) -> Any:
        """
        Create the resource described by `body`.

        Args:
            body (dict): full manifest; `kind`, `metadata.name` and (for namespaced kinds) `metadata.namespace` are
                required.

        Returns:
            Resource: handle of the created resource.

        Raises:
            PlatformAPIError: if the API server rejects the request.
        """
        kind = body["kind"]
        name = body["metadata"]["name"]
        namespace = body["metadata"].get("namespace")
        resource = self._resource(kind=kind, name=name, namespace=namespace, kind_dict=body)
        LOGGER.info(f"Creating {resource_identity(kind=kind, name=name, namespace=namespace)}")
        try:
            resource.create(wait=False)
        except ApiException as exp:
            raise PlatformAPIError(
                err_str=f"Failed to create {resource_identity(kind=kind, name=name, namespace=namespace)}: {exp}"
            ) from exp
        return resource

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict:
        """
        Returns:
            dict: the live resource.

        Raises:
            NotFoundError: if the resource does not exist.
            PlatformAPIError: on any other API failure.
        """
        resource = self._resource(kind=kind, name=name, namespace=namespace)
        try:
            return resource.instance.to_dict()
        except NotFoundError:
            raise
        except ApiException as exp:
            raise PlatformAPIError(
                err_str=f"Failed to get {resource_identity(kind=kind, name=name, namespace=namespace)}: {exp}"
            ) from exp

    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        try:
            self.get(kind=kind, name=name, namespace=namespace)
        except NotFoundError:
            return False
        return True

    def delete(
        self, kind: str, name: str, namespace: str | None = None, wait: bool = True, timeout: int = TIMEOUT_2MIN
    ) -> bool:
        """
        Delete a resource; an already-absent resource is not an error.

        Returns:
            bool: True if the resource was deleted, False if it was already gone.

        Raises:
            PlatformAPIError: on API failure, or if the resource is still present after `timeout`.
        """
        identity = resource_identity(kind=kind, name=name, namespace=namespace)
        resource = self._resource(kind=kind, name=name, namespace=namespace)
        try:
            if not resource.exists:
                LOGGER.warning(f"{identity} is already absent")
                return False
            deleted = resource.delete(wait=wait, timeout=timeout)
        except NotFoundError:
            LOGGER.warning(f"{identity} is already absent")
            return False
        except ApiException as exp:
            raise PlatformAPIError(err_str=f"Failed to delete {identity}: {exp}") from exp

        if wait and not deleted and resource.exists:
            raise PlatformAPIError(err_str=f"{identity} still exists after {timeout} seconds")
        return True

    def patch(self, kind: str, name: str, namespace: str | None, patch: dict) -> None:
        resource = self._resource(kind=kind, name=name, namespace=namespace)
        LOGGER.info(f"Patching {resource_identity(kind=kind, name=name, namespace=namespace)} with {patch}")
        try:
            ResourceEditor(patches={resource: patch}).update()
        except ApiException as exp:
            raise PlatformAPIError(
                err_str=f"Failed to patch {resource_identity(kind=kind, name=name, namespace=namespace)}: {exp}"
            ) from exp

    def wait_until(
        self,
        predicate: Callable[..., Any],
        timeout: int,
        description: str,
        exceptions_dict: dict | None = None,
        **predicate_kwargs: Any,
    ) -> Any:
        """
        Poll `predicate` every `poll_interval` seconds until it returns a truthy value.

        NotFoundError raised by the predicate is retried; resources are often not visible right after creation.
        Any exception outside `exceptions_dict` is raised as is, on the poll that raised it.

        Returns:
            The first truthy value returned by `predicate`.

        Raises:
            TimeoutWaitingForReady: if `timeout` elapses first.
        """
        exceptions_dict = exceptions_dict or {NotFoundError: []}
        samples = TimeoutSampler(
            wait_timeout=timeout,
            sleep=self.poll_interval,
            func=predicate,
            exceptions_dict=exceptions_dict,
            **predicate_kwargs,
        )
        try:
            for sample in samples:
                if sample:
                    return sample
        except TimeoutExpiredError as exp:
            if exp.last_exp is not None and not isinstance(exp.last_exp, tuple(exceptions_dict)):
                raise exp.last_exp from exp
            raise TimeoutWaitingForReady(
                err_str=f"Timed out after {timeout} seconds waiting for {description}"
            ) from exp

    def query_version(self) -> VersionInfo:
        try:
            server_version = VersionApi(api_client=self.client.client).get_code()
        except ApiException as exp:
            raise PlatformAPIError(err_str=f"Failed to get server version: {exp}") from exp
        version = VersionInfo.from_components(major=server_version.major, minor=server_version.minor)
        LOGGER.info(f"Platform version: {version} ({server_version.git_version})")
        return version

    def wait_for_rollout(self, kind: str, name: str, namespace: str, timeout: int) -> None:
        """
        Wait for a provisioner deployment or node-plugin daemonset to report all replicas available.

        Raises:
            DeploymentNotReady: if the rollout does not complete within `timeout`.
        """
        identity = resource_identity(kind=kind, name=name, namespace=namespace)
        LOGGER.info(f"Waiting for {identity} rollout")
        try:
            self.wait_until(
                predicate=self.exists,
                timeout=timeout,
                description=f"{identity} to exist",
                kind=kind,
                name=name,
                namespace=namespace,
            )
            resource = self._resource(kind=kind, name=name, namespace=namespace)
            if kind == DEPLOYMENT_KIND:
                resource.wait_for_replicas(timeout=timeout)
            elif kind == DAEMONSET_KIND:
                resource.wait_until_deployed(timeout=timeout)
            else:
                raise PlatformAPIError(err_str=f"{kind} has no rollout status")
        except (TimeoutWaitingForReady, TimeoutExpiredError) as exp:
            raise DeploymentNotReady(err_str=f"{identity} rollout did not complete: {exp}") from exp

    def list_pods(self, namespace: str, label_selector: str) -> list[str]:
        try:
            return [pod.name for pod in Pod.get(client=self.client, namespace=namespace, label_selector=label_selector)]
        except ApiException as exp:
            raise PlatformAPIError(err_str=f"Failed to list pods with {label_selector} in {namespace}: {exp}") from exp

    def exec_in_workload(self, namespace: str, command: str, label_selector: str, timeout: int = TIMEOUT_1MIN) -> str:
        """
        Run a shell command in the first pod matching `label_selector`.

        Returns:
            str: the command stdout.

        Raises:
            ExecutionError: if no pod matches or the command exits non-zero.
        """
        pod_names = self.list_pods(namespace=namespace, label_selector=label_selector)
        if not pod_names:
            raise ExecutionError(
                err_str=f"No pod matches {label_selector} in {namespace}", command=command
            )

        pod = Pod(name=pod_names[0], namespace=namespace, client=self.client)
        try:
            return pod.execute(command=["/bin/sh", "-c", command], timeout=timeout)
        except ExecOnPodError as exp:
            raise ExecutionError(
                err_str=f"Command {shlex.quote(command)} failed in pod {pod.name}: {exp}",
                command=command,
                stderr=getattr(exp, "err", ""),
            ) from exp

    def pod_logs(self, name: str, namespace: str, container: str | None = None) -> str:
        kwargs = {"container": container} if container else {}
        try:
            return Pod(name=name, namespace=namespace, client=self.client).log(**kwargs)
        except ApiException as exp:
            raise PlatformAPIError(err_str=f"Failed to read logs of pod {namespace}/{name}: {exp}") from exp
