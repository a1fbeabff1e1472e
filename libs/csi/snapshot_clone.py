import logging

from csi_utilities.constants import APP_LABEL_KEY, VOLUME_SNAPSHOT_KIND
from csi_utilities.exceptions import PlatformAPIError, SnapshotCreationError, TimeoutWaitingForReady
from libs.csi.lifecycle import ResourceLifecycleManager
from libs.csi.resources import (
    ConsumerWorkload,
    Snapshot,
    VolumeClaim,
    claim_data_source,
    snapshot_data_source,
)

LOGGER = logging.getLogger(__name__)


class SnapshotCloneOrchestrator:
    """
    Snapshot bound claims and bind clone claims populated from a snapshot or directly from a claim.

    Clone claims copy storage class and access modes from `claim_template`; clone workloads are derived from
    `workload_template`. Feature gating is the caller's decision.
    """

    def __init__(
        self,
        gateway,
        lifecycle: ResourceLifecycleManager,
        claim_template: VolumeClaim,
        workload_template: ConsumerWorkload,
        snapshot_class: str | None = None,
    ):
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.claim_template = claim_template
        self.workload_template = workload_template
        self.snapshot_class = snapshot_class

    def is_snapshot_ready(self, snapshot: Snapshot) -> bool:
        status = self.gateway.get(kind=VOLUME_SNAPSHOT_KIND, name=snapshot.name, namespace=snapshot.namespace).get(
            "status", {}
        )
        if status.get("error"):
            raise SnapshotCreationError(err_str=f"{snapshot} reports error: {status['error']}")
        return bool(status.get("readyToUse"))

    def snapshot(self, claim: VolumeClaim, name: str, timeout: int | None = None) -> Snapshot:
        """
        Take a point-in-time snapshot of `claim` and wait until it is ready to use.

        Raises:
            SnapshotCreationError: if the snapshot is rejected, reports an error or is not ready within `timeout`.
        """
        snapshot = Snapshot(
            name=name, namespace=claim.namespace, source_claim=claim.name, snapshot_class=self.snapshot_class
        )
        LOGGER.info(f"Creating {snapshot} of {claim}")
        try:
            self.gateway.create(body=snapshot.to_dict())
            self.gateway.wait_until(
                predicate=self.is_snapshot_ready,
                timeout=timeout or self.lifecycle.timeout,
                description=f"{snapshot} to be ready to use",
                snapshot=snapshot,
            )
        except (PlatformAPIError, TimeoutWaitingForReady) as exp:
            raise SnapshotCreationError(err_str=f"Failed to create {snapshot}: {exp}") from exp
        return snapshot

    def delete_snapshot(self, snapshot: Snapshot) -> bool:
        return self.gateway.delete(
            kind=VOLUME_SNAPSHOT_KIND, name=snapshot.name, namespace=snapshot.namespace, timeout=self.lifecycle.timeout
        )

    def _bind_clone(
        self, claim: VolumeClaim, workload_name: str, label_value: str
    ) -> tuple[VolumeClaim, ConsumerWorkload]:
        workload = self.workload_template.derive(
            name=workload_name,
            labels={APP_LABEL_KEY: label_value},
            claim_name=claim.name,
        )
        return self.lifecycle.bind(claim=claim, workload=workload)

    def clone_from_snapshot(
        self,
        snapshot: Snapshot,
        size: str,
        claim_name: str,
        workload_name: str,
        label_value: str,
    ) -> tuple[VolumeClaim, ConsumerWorkload]:
        LOGGER.info(f"Creating clone {claim_name} from {snapshot}")
        claim = VolumeClaim.from_source(
            source=self.claim_template,
            name=claim_name,
            size=size,
            data_source=snapshot_data_source(snapshot_name=snapshot.name),
        )
        claim.namespace = snapshot.namespace
        return self._bind_clone(claim=claim, workload_name=workload_name, label_value=label_value)

    def clone_from_claim(
        self,
        source_claim: VolumeClaim,
        size: str,
        claim_name: str,
        workload_name: str,
        label_value: str,
    ) -> tuple[VolumeClaim, ConsumerWorkload]:
        LOGGER.info(f"Creating clone {claim_name} from {source_claim}")
        claim = VolumeClaim.from_source(
            source=source_claim,
            name=claim_name,
            size=size,
            data_source=claim_data_source(claim_name=source_claim.name),
        )
        return self._bind_clone(claim=claim, workload_name=workload_name, label_value=label_value)
