import logging

from csi_utilities.constants import POD_KIND, POD_RUNNING, PVC_BOUND, PVC_KIND
from csi_utilities.exceptions import PlatformAPIError, ResourceCreationError
from libs.csi.resources import ConsumerWorkload, VolumeClaim

LOGGER = logging.getLogger(__name__)


def resource_phase(resource: dict) -> str | None:
    return resource.get("status", {}).get("phase")


class ResourceLifecycleManager:
    """
    Create, wait for and delete claim/workload pairs.

    A workload is ready only when its pod reports Running and the claim it mounts reports Bound.
    """

    def __init__(self, gateway, timeout: int):
        self.gateway = gateway
        self.timeout = timeout

    def _create(self, resource: VolumeClaim | ConsumerWorkload) -> None:
        try:
            self.gateway.create(body=resource.to_dict())
        except PlatformAPIError as exp:
            raise ResourceCreationError(err_str=f"Failed to create {resource}: {exp}") from exp

    def is_claim_bound(self, claim_name: str, namespace: str) -> bool:
        return resource_phase(self.gateway.get(kind=PVC_KIND, name=claim_name, namespace=namespace)) == PVC_BOUND

    def is_workload_running(self, workload: ConsumerWorkload) -> bool:
        pod = self.gateway.get(kind=POD_KIND, name=workload.name, namespace=workload.namespace)
        return resource_phase(pod) == POD_RUNNING

    def is_ready(self, workload: ConsumerWorkload) -> bool:
        if not self.is_workload_running(workload=workload):
            return False
        return self.is_claim_bound(claim_name=workload.claim_name, namespace=workload.namespace)

    def wait_for_ready(self, workload: ConsumerWorkload, timeout: int | None = None) -> None:
        self.gateway.wait_until(
            predicate=self.is_ready,
            timeout=timeout or self.timeout,
            description=f"{workload} to run with claim {workload.claim_name} bound",
            workload=workload,
        )

    def wait_for_running(self, workload: ConsumerWorkload, timeout: int | None = None) -> None:
        self.gateway.wait_until(
            predicate=self.is_workload_running,
            timeout=timeout or self.timeout,
            description=f"{workload} to reach {POD_RUNNING}",
            workload=workload,
        )

    def bind(
        self, claim: VolumeClaim, workload: ConsumerWorkload, timeout: int | None = None
    ) -> tuple[VolumeClaim, ConsumerWorkload]:
        """
        Create `claim`, then `workload` mounting it, and wait until both are ready.

        Returns:
            tuple: the claim and the workload as bound to it.

        Raises:
            ResourceCreationError: if the platform rejects either resource.
            PlatformAPIError: if reading either resource fails while waiting.
            TimeoutWaitingForReady: if the pair is not ready within `timeout`.
        """
        LOGGER.info(f"Binding {workload.name} to {claim}")
        self._create(resource=claim)
        bound_workload = self.create_workload(workload=workload.bind_to(claim_name=claim.name), timeout=timeout)
        return claim, bound_workload

    def create_workload(self, workload: ConsumerWorkload, timeout: int | None = None) -> ConsumerWorkload:
        """Create a workload on an existing claim and wait until it is ready."""
        self._create(resource=workload)
        self.wait_for_ready(workload=workload, timeout=timeout)
        LOGGER.info(f"{workload} is running with claim {workload.claim_name} bound")
        return workload

    def delete_workload(self, workload: ConsumerWorkload) -> bool:
        return self.gateway.delete(
            kind=POD_KIND, name=workload.name, namespace=workload.namespace, timeout=self.timeout
        )

    def delete_claim(self, claim: VolumeClaim) -> bool:
        return self.gateway.delete(kind=PVC_KIND, name=claim.name, namespace=claim.namespace, timeout=self.timeout)

    def unbind(self, claim: VolumeClaim, workload: ConsumerWorkload) -> None:
        """
        Delete `workload`, then `claim`. Either may already be gone.

        Raises:
            PlatformAPIError: on any platform failure other than the resource being absent.
        """
        LOGGER.info(f"Unbinding {workload.name} from {claim}")
        self.delete_workload(workload=workload)
        self.delete_claim(claim=claim)

    @staticmethod
    def mount_path_of(workload: ConsumerWorkload) -> str:
        return workload.mount_path
