"""
Upgrade sequencer: the state machine driving one CSI upgrade scenario.

    NOT_DEPLOYED -> OLD_VERSION_DEPLOYED -> WORKLOAD_BOUND -> SNAPSHOT_CAPTURED -> PLUGIN_REMOVED
    -> NEW_VERSION_DEPLOYED -> WORKLOAD_REBOUND -> VERIFIED -> (CLONE_VALIDATED | CLONE_SKIPPED)
    -> (RESIZE_VALIDATED | RESIZE_SKIPPED) -> TORN_DOWN

Steps run strictly in order and the first failure aborts the scenario. Teardown runs on every exit path and releases
every resource the scenario acquired; teardown errors never mask the failure that aborted the scenario.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial

from csi_utilities.config import UpgradeConfig
from csi_utilities.constants import APP_LABEL_KEY, CHECKSUM_FILE_NAME, POD_KIND, PVC_KIND, VOLUME_SNAPSHOT_KIND
from csi_utilities.data_collector import collect_csi_pod_logs, get_data_collector_base_directory
from csi_utilities.exceptions import UpgradeStepError
from csi_utilities.version_gate import (
    CLONE_FROM_CLAIM_FEATURES,
    CLONE_FROM_SNAPSHOT_FEATURES,
    RESIZE_FEATURES,
    are_enabled,
)
from libs.csi.deployment import CSIDriver, PluginDeployer, ScenarioHooks
from libs.csi.integrity import DataIntegrityVerifier
from libs.csi.lifecycle import ResourceLifecycleManager
from libs.csi.resize import ResizeOrchestrator
from libs.csi.resources import (
    ChecksumRecord,
    ConsumerWorkload,
    ScenarioContext,
    Snapshot,
    VolumeClaim,
)
from libs.csi.snapshot_clone import SnapshotCloneOrchestrator

LOGGER = logging.getLogger(__name__)

PVC_TEMPLATE = "pvc.yaml"
POD_TEMPLATE = "pod.yaml"

STEP_SETUP = "setup"
STEP_DEPLOY_OLD_VERSION = "deploy-old-version"
STEP_BIND_INITIAL_WORKLOAD = "bind-initial-workload"
STEP_CAPTURE_SNAPSHOT = "capture-snapshot"
STEP_REDEPLOY_PLUGIN = "redeploy-plugin"
STEP_REBIND_WORKLOAD = "rebind-workload"
STEP_CLONE_FROM_SNAPSHOT = "clone-from-snapshot"
STEP_CLONE_FROM_CLAIM = "clone-from-claim"
STEP_RESIZE = "resize"
STEP_TEARDOWN = "teardown"


class UpgradeState(Enum):
    NOT_DEPLOYED = "NotDeployed"
    OLD_VERSION_DEPLOYED = "OldVersionDeployed"
    WORKLOAD_BOUND = "WorkloadBound"
    SNAPSHOT_CAPTURED = "SnapshotCaptured"
    PLUGIN_REMOVED = "PluginRemoved"
    NEW_VERSION_DEPLOYED = "NewVersionDeployed"
    WORKLOAD_REBOUND = "WorkloadRebound"
    VERIFIED = "Verified"
    CLONE_VALIDATED = "CloneValidated"
    CLONE_SKIPPED = "CloneSkipped"
    RESIZE_VALIDATED = "ResizeValidated"
    RESIZE_SKIPPED = "ResizeSkipped"
    TORN_DOWN = "TornDown"


class StepOutcome(Enum):
    PASSED = "passed"
    SKIPPED = "skipped"


@dataclass
class UpgradeRun:
    context: ScenarioContext
    state: UpgradeState = UpgradeState.NOT_DEPLOYED
    history: list[UpgradeState] = field(default_factory=lambda: [UpgradeState.NOT_DEPLOYED])
    claim: VolumeClaim | None = None
    workload: ConsumerWorkload | None = None
    snapshot: Snapshot | None = None
    baseline: ChecksumRecord | None = None
    rebound: ChecksumRecord | None = None
    clone_checksums: dict[str, ChecksumRecord] = field(default_factory=dict)
    outcomes: dict[str, StepOutcome] = field(default_factory=dict)
    acquired: list[tuple[str, str, str]] = field(default_factory=list)
    plugin_deployed: bool = False
    failure: BaseException | None = None

    def transition(self, state: UpgradeState) -> None:
        LOGGER.info(f"Upgrade state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def acquire(self, kind: str, name: str, namespace: str) -> None:
        identity = (kind, name, namespace)
        if identity not in self.acquired:
            self.acquired.append(identity)

    def release(self, kind: str, name: str, namespace: str) -> None:
        identity = (kind, name, namespace)
        if identity in self.acquired:
            self.acquired.remove(identity)


class UpgradeSequencer:
    def __init__(
        self,
        config: UpgradeConfig,
        driver: CSIDriver,
        gateway,
        deployer: PluginDeployer,
        namespace: str,
        hooks: ScenarioHooks | None = None,
        claim_template: VolumeClaim | None = None,
        workload_template: ConsumerWorkload | None = None,
    ):
        self.config = config
        self.driver = driver
        self.gateway = gateway
        self.deployer = deployer
        self.hooks = hooks or ScenarioHooks()
        self.claim_template = claim_template
        self.workload_template = workload_template
        self.context = ScenarioContext(
            namespace=namespace,
            label_selectors=(f"{APP_LABEL_KEY}={driver.workload_label}",),
            timeout=config.deploy_timeout,
        )
        self.lifecycle = ResourceLifecycleManager(gateway=gateway, timeout=config.deploy_timeout)
        self.verifier = DataIntegrityVerifier(gateway=gateway)
        self.resizer = ResizeOrchestrator(gateway=gateway, lifecycle=self.lifecycle)

    @contextmanager
    def _step(self, step: str, resource: object):
        LOGGER.info(f"[{self.driver.name}] {step}: {resource}")
        try:
            yield
        except UpgradeStepError:
            raise
        except Exception as exp:
            raise UpgradeStepError(step=step, resource=resource, cause=exp) from exp

    def run(self) -> UpgradeRun:
        """
        Run the whole scenario.

        Returns:
            UpgradeRun: final state, checksums and step outcomes.

        Raises:
            UpgradeStepError: for the first failing step, after teardown has run.
        """
        run = UpgradeRun(context=self.context)
        try:
            with self._step(step=STEP_SETUP, resource=self.config.ceph_csi_namespace):
                self.hooks.setup(run=run)
            self.deploy_old_version(run=run)
            self.bind_initial_workload(run=run)
            self.capture_snapshot(run=run)
            self.redeploy_plugin(run=run)
            self.rebind_workload(run=run)
            self.validate_clones(run=run)
            self.validate_resize(run=run)
        except BaseException as exp:
            run.failure = exp
            raise
        finally:
            self.teardown(run=run)
        return run

    def deploy_old_version(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_DEPLOY_OLD_VERSION, resource=self.config.upgrade_version):
            self.deployer.checkout(version=self.config.upgrade_version)
            run.plugin_deployed = True
            self.deployer.deploy()
        run.transition(state=UpgradeState.OLD_VERSION_DEPLOYED)

    def _initial_templates(self) -> tuple[VolumeClaim, ConsumerWorkload]:
        claim = self.claim_template or VolumeClaim.from_template(
            path=self.deployer.example_path(file_name=PVC_TEMPLATE),
            namespace=self.context.namespace,
        )
        workload = self.workload_template or ConsumerWorkload.from_template(
            path=self.deployer.example_path(file_name=POD_TEMPLATE),
            namespace=self.context.namespace,
        )
        return (
            replace(claim, namespace=self.context.namespace, size=self.config.pvc_size),
            replace(workload, namespace=self.context.namespace, labels=self.driver.workload_labels),
        )

    def bind_initial_workload(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_BIND_INITIAL_WORKLOAD, resource=self.context.namespace):
            claim, workload = self._initial_templates()
            run.acquire(kind=PVC_KIND, name=claim.name, namespace=claim.namespace)
            run.acquire(kind=POD_KIND, name=workload.name, namespace=workload.namespace)
            run.claim, run.workload = self.lifecycle.bind(claim=claim, workload=workload)
            file_path = self.verifier.write_marker_file(workload=run.workload, file_name=CHECKSUM_FILE_NAME)
            run.baseline = self.verifier.capture_checksum(workload=run.workload, file_path=file_path)
        run.transition(state=UpgradeState.WORKLOAD_BOUND)

    def _snapshot_orchestrator(self, run: UpgradeRun) -> SnapshotCloneOrchestrator:
        return SnapshotCloneOrchestrator(
            gateway=self.gateway,
            lifecycle=self.lifecycle,
            claim_template=run.claim,
            workload_template=run.workload,
            snapshot_class=self.driver.snapshot_class,
        )

    def capture_snapshot(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_CAPTURE_SNAPSHOT, resource=run.claim):
            run.acquire(kind=VOLUME_SNAPSHOT_KIND, name=self.driver.snapshot_name, namespace=run.claim.namespace)
            run.snapshot = self._snapshot_orchestrator(run=run).snapshot(
                claim=run.claim, name=self.driver.snapshot_name
            )
        run.transition(state=UpgradeState.SNAPSHOT_CAPTURED)

    def redeploy_plugin(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_REDEPLOY_PLUGIN, resource=run.workload):
            # The claim stays; only its consumer goes away while the plugin is replaced.
            self.lifecycle.delete_workload(workload=run.workload)
            self.deployer.remove()
            run.plugin_deployed = False
            run.transition(state=UpgradeState.PLUGIN_REMOVED)
            self.deployer.restore_source()
            run.plugin_deployed = True
            self.deployer.deploy()
        run.transition(state=UpgradeState.NEW_VERSION_DEPLOYED)

    def rebind_workload(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_REBIND_WORKLOAD, resource=run.workload):
            run.workload = self.lifecycle.create_workload(workload=run.workload.bind_to(claim_name=run.claim.name))
            run.transition(state=UpgradeState.WORKLOAD_REBOUND)
            run.rebound = self.verifier.capture_checksum(workload=run.workload, file_path=run.baseline.file_path)
            self.verifier.assert_equal(expected=run.baseline, actual=run.rebound)
        run.transition(state=UpgradeState.VERIFIED)

    def validate_clone(self, run: UpgradeRun, from_snapshot: bool) -> StepOutcome:
        """
        Bind a clone of the primary claim, verify the marker file checksum against the baseline, then delete it.

        Skipped when the platform version does not support the clone flavor.
        """
        step = STEP_CLONE_FROM_SNAPSHOT if from_snapshot else STEP_CLONE_FROM_CLAIM
        features = CLONE_FROM_SNAPSHOT_FEATURES if from_snapshot else CLONE_FROM_CLAIM_FEATURES
        if from_snapshot:
            claim_name, workload_name, label_value = (
                self.driver.snapshot_clone_claim,
                self.driver.snapshot_clone_workload,
                self.driver.snapshot_clone_label,
            )
        else:
            claim_name, workload_name, label_value = (
                self.driver.claim_clone_claim,
                self.driver.claim_clone_workload,
                self.driver.claim_clone_label,
            )

        with self._step(step=step, resource=run.snapshot if from_snapshot else run.claim):
            if not are_enabled(features=features, version=self.gateway.query_version()):
                LOGGER.info(f"Skipping {step}: not supported by the platform version")
                run.outcomes[step] = StepOutcome.SKIPPED
                return StepOutcome.SKIPPED

            namespace = run.claim.namespace
            run.acquire(kind=PVC_KIND, name=claim_name, namespace=namespace)
            run.acquire(kind=POD_KIND, name=workload_name, namespace=namespace)
            orchestrator = self._snapshot_orchestrator(run=run)
            if from_snapshot:
                clone_claim, clone_workload = orchestrator.clone_from_snapshot(
                    snapshot=run.snapshot,
                    size=self.config.pvc_size,
                    claim_name=claim_name,
                    workload_name=workload_name,
                    label_value=label_value,
                )
            else:
                clone_claim, clone_workload = orchestrator.clone_from_claim(
                    source_claim=run.claim,
                    size=self.config.pvc_size,
                    claim_name=claim_name,
                    workload_name=workload_name,
                    label_value=label_value,
                )

            clone_file_path = os.path.join(clone_workload.mount_path, CHECKSUM_FILE_NAME)
            checksum = self.verifier.capture_checksum(workload=clone_workload, file_path=clone_file_path)
            run.clone_checksums[step] = checksum
            self.verifier.assert_equal(expected=run.baseline, actual=checksum)

            self.lifecycle.unbind(claim=clone_claim, workload=clone_workload)
            run.release(kind=POD_KIND, name=workload_name, namespace=namespace)
            run.release(kind=PVC_KIND, name=claim_name, namespace=namespace)

        run.outcomes[step] = StepOutcome.PASSED
        return StepOutcome.PASSED

    def validate_clones(self, run: UpgradeRun) -> None:
        outcomes = [
            self.validate_clone(run=run, from_snapshot=True),
            self.validate_clone(run=run, from_snapshot=False),
        ]
        if StepOutcome.PASSED in outcomes:
            run.transition(state=UpgradeState.CLONE_VALIDATED)
        else:
            run.transition(state=UpgradeState.CLONE_SKIPPED)

    def validate_resize(self, run: UpgradeRun) -> None:
        with self._step(step=STEP_RESIZE, resource=run.claim):
            if not are_enabled(features=RESIZE_FEATURES, version=self.gateway.query_version()):
                LOGGER.info(f"Skipping {STEP_RESIZE}: not supported by the platform version")
                run.outcomes[STEP_RESIZE] = StepOutcome.SKIPPED
                run.transition(state=UpgradeState.RESIZE_SKIPPED)
                return

            run.claim = self.resizer.expand(
                claim=run.claim, workload=run.workload, new_size=self.config.pvc_expand_size
            )
        run.outcomes[STEP_RESIZE] = StepOutcome.PASSED
        run.transition(state=UpgradeState.RESIZE_VALIDATED)

    def _release(self, run: UpgradeRun, kind: str, name: str, namespace: str) -> None:
        self.gateway.delete(kind=kind, name=name, namespace=namespace, timeout=self.context.timeout)
        run.release(kind=kind, name=name, namespace=namespace)

    def _remove_plugin(self, run: UpgradeRun) -> None:
        if run.plugin_deployed:
            self.deployer.remove()
            run.plugin_deployed = False

    def teardown(self, run: UpgradeRun) -> None:
        """
        Release everything the scenario acquired, remove the plugin and run the teardown hooks.

        Every action runs even if an earlier one fails. Failures are logged; the first one is raised only when the
        scenario itself succeeded.
        """
        teardown_actions = []
        if run.failure is not None and self.config.collect_logs_on_failure:
            teardown_actions.append(
                (
                    "collect plugin logs",
                    partial(
                        collect_csi_pod_logs,
                        gateway=self.gateway,
                        namespace=self.config.ceph_csi_namespace,
                        label_selectors=self.driver.log_selectors,
                        base_directory=os.path.join(get_data_collector_base_directory(), self.driver.name),
                    ),
                )
            )
        teardown_actions.extend(
            (
                f"delete {kind} {namespace}/{name}",
                partial(self._release, run=run, kind=kind, name=name, namespace=namespace),
            )
            for kind, name, namespace in reversed(run.acquired)
        )
        teardown_actions.append(("remove plugin", partial(self._remove_plugin, run=run)))
        teardown_actions.append(("teardown hooks", partial(self.hooks.teardown, run=run)))

        teardown_errors = []
        for description, action in teardown_actions:
            try:
                action()
            except Exception as exp:
                LOGGER.exception(f"[{self.driver.name}] teardown action '{description}' failed")
                teardown_errors.append(exp)

        run.transition(state=UpgradeState.TORN_DOWN)

        if teardown_errors and run.failure is None:
            raise UpgradeStepError(
                step=STEP_TEARDOWN, resource=self.context.namespace, cause=teardown_errors[0]
            ) from teardown_errors[0]
