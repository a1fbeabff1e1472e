import logging
import shlex

import bitmath

from csi_utilities.constants import PVC_KIND
from csi_utilities.exceptions import (
    CapacityMismatchError,
    ExecutionError,
    ExpansionTimeoutError,
    TimeoutWaitingForReady,
)
from libs.csi.lifecycle import ResourceLifecycleManager
from libs.csi.resources import ConsumerWorkload, VolumeClaim

LOGGER = logging.getLogger(__name__)

# Share of a claim's requested size that must be usable through the mounted filesystem.
MIN_USABLE_CAPACITY_PERCENT = 95


def parse_size(size: str) -> bitmath.Bitmath:
    return bitmath.parse_string_unsafe(size)


def capacity_reaches(observed: bitmath.Bitmath, requested: bitmath.Bitmath) -> bool:
    """
    Compare a filesystem size with a requested claim size.

    Filesystem metadata makes the usable size of a volume slightly smaller than the claim, so a filesystem of at
    least `MIN_USABLE_CAPACITY_PERCENT` of the claim counts as reaching it.
    """
    return observed.bytes * 100 >= requested.bytes * MIN_USABLE_CAPACITY_PERCENT


class ResizeOrchestrator:
    def __init__(self, gateway, lifecycle: ResourceLifecycleManager):
        self.gateway = gateway
        self.lifecycle = lifecycle

    def claim_capacity(self, claim: VolumeClaim) -> bitmath.Bitmath | None:
        pvc = self.gateway.get(kind=PVC_KIND, name=claim.name, namespace=claim.namespace)
        capacity = pvc.get("status", {}).get("capacity", {}).get("storage")
        return parse_size(capacity) if capacity else None

    def is_claim_expanded(self, claim: VolumeClaim, requested: bitmath.Bitmath) -> bool:
        capacity = self.claim_capacity(claim=claim)
        return capacity is not None and capacity >= requested

    def observed_capacity(self, workload: ConsumerWorkload) -> bitmath.Bitmath:
        """Size of the filesystem mounted at the workload's claim mount path, as reported by `df`."""
        command = f"df -k {shlex.quote(workload.mount_path)} | tail -n 1 | awk '{{print $2}}'"
        output = self.gateway.exec_in_workload(
            namespace=workload.namespace, command=command, label_selector=workload.label_selector
        ).strip()
        return bitmath.KiB(int(output))

    def expand(
        self, claim: VolumeClaim, workload: ConsumerWorkload, new_size: str, timeout: int | None = None
    ) -> VolumeClaim:
        """
        Request `new_size` for `claim` and verify the consuming workload observes it.

        Returns:
            VolumeClaim: `claim`, with its size updated.

        Raises:
            ValueError: if `new_size` does not exceed the current claim size.
            ExpansionTimeoutError: if the claim or the workload do not converge within `timeout`.
            CapacityMismatchError: if the capacity observed in the workload stays below `new_size`.
        """
        timeout = timeout or self.lifecycle.timeout
        requested = parse_size(new_size)
        original = parse_size(claim.size)
        if requested <= original:
            raise ValueError(f"Expansion of {claim} must grow it: requested {new_size}, current {claim.size}")

        LOGGER.info(f"Expanding {claim} from {claim.size} to {new_size}")
        self.gateway.patch(
            kind=PVC_KIND,
            name=claim.name,
            namespace=claim.namespace,
            patch={"spec": {"resources": {"requests": {"storage": new_size}}}},
        )
        try:
            self.gateway.wait_until(
                predicate=self.is_claim_expanded,
                timeout=timeout,
                description=f"{claim} to report capacity {new_size}",
                claim=claim,
                requested=requested,
            )
            # The node plugin may need to remount the volume before the workload runs again.
            self.lifecycle.wait_for_running(workload=workload, timeout=timeout)
        except TimeoutWaitingForReady as exp:
            raise ExpansionTimeoutError(err_str=f"Expansion of {claim} to {new_size} did not converge: {exp}") from exp

        observed = None

        def _workload_observes_capacity():
            nonlocal observed
            observed = self.observed_capacity(workload=workload)
            return capacity_reaches(observed=observed, requested=requested)

        try:
            self.gateway.wait_until(
                predicate=_workload_observes_capacity,
                timeout=timeout,
                description=f"{workload} to observe {new_size} at {workload.mount_path}",
                exceptions_dict={ExecutionError: []},
            )
        except TimeoutWaitingForReady as exp:
            raise CapacityMismatchError(
                err_str=f"{workload} observes {observed.best_prefix() if observed else 'no capacity'} "
                f"at {workload.mount_path}, expected at least {new_size}"
            ) from exp

        LOGGER.info(f"{workload} observes {observed.best_prefix()} at {workload.mount_path}")
        claim.size = new_size
        return claim
