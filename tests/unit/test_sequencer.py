import dataclasses
import os

import pytest

from csi_utilities.exceptions import (
    ChecksumMismatchError,
    DeploymentNotReady,
    SnapshotCreationError,
    TimeoutWaitingForReady,
    UpgradeStepError,
)
from csi_utilities.version_gate import VersionInfo
from libs.csi.deployment import RBD_DRIVER, ScenarioHooks
from libs.csi.sequencer import (
    STEP_BIND_INITIAL_WORKLOAD,
    STEP_CAPTURE_SNAPSHOT,
    STEP_CLONE_FROM_CLAIM,
    STEP_CLONE_FROM_SNAPSHOT,
    STEP_DEPLOY_OLD_VERSION,
    STEP_REBIND_WORKLOAD,
    STEP_RESIZE,
    STEP_TEARDOWN,
    StepOutcome,
    UpgradeSequencer,
    UpgradeState,
)
from tests.unit.utils import TEST_NAMESPACE

MARKER_PATH = "/var/lib/www/html/testClone"
SCENARIO_KINDS = ("PersistentVolumeClaim", "Pod", "VolumeSnapshot")


class RecordingHooks(ScenarioHooks):
    def __init__(self):
        self.calls = []

    def setup(self, run):
        self.calls.append(("setup", run.state))

    def teardown(self, run):
        self.calls.append(("teardown", run.state))


class FailingTeardownHooks(RecordingHooks):
    def teardown(self, run):
        super().teardown(run=run)
        raise DeploymentNotReady(err_str="failed to delete prerequisites")


@pytest.fixture()
def hooks():
    return RecordingHooks()


@pytest.fixture()
def sequencer(upgrade_config, fake_gateway, fake_deployer, hooks):
    return UpgradeSequencer(
        config=upgrade_config,
        driver=RBD_DRIVER,
        gateway=fake_gateway,
        deployer=fake_deployer,
        namespace=TEST_NAMESPACE,
        hooks=hooks,
    )


def scenario_resources(gateway):
    return [identity for identity in gateway.resources if identity[0] in SCENARIO_KINDS]


def assert_torn_down(gateway, deployer):
    assert scenario_resources(gateway=gateway) == []
    assert deployer.calls[-1][0] == "remove"


@pytest.mark.unit
def test_upgrade_happy_path(sequencer, fake_gateway, fake_deployer, hooks):
    run = sequencer.run()

    assert run.history == [
        UpgradeState.NOT_DEPLOYED,
        UpgradeState.OLD_VERSION_DEPLOYED,
        UpgradeState.WORKLOAD_BOUND,
        UpgradeState.SNAPSHOT_CAPTURED,
        UpgradeState.PLUGIN_REMOVED,
        UpgradeState.NEW_VERSION_DEPLOYED,
        UpgradeState.WORKLOAD_REBOUND,
        UpgradeState.VERIFIED,
        UpgradeState.CLONE_VALIDATED,
        UpgradeState.RESIZE_VALIDATED,
        UpgradeState.TORN_DOWN,
    ]
    assert run.failure is None
    assert run.outcomes == {
        STEP_CLONE_FROM_SNAPSHOT: StepOutcome.PASSED,
        STEP_CLONE_FROM_CLAIM: StepOutcome.PASSED,
        STEP_RESIZE: StepOutcome.PASSED,
    }
    assert run.claim.size == "5Gi"
    assert run.acquired == []
    assert hooks.calls == [("setup", UpgradeState.NOT_DEPLOYED), ("teardown", UpgradeState.RESIZE_VALIDATED)]
    assert_torn_down(gateway=fake_gateway, deployer=fake_deployer)


@pytest.mark.unit
def test_upgrade_preserves_checksum(sequencer):
    run = sequencer.run()

    assert run.baseline.file_path == MARKER_PATH
    assert run.rebound.digest == run.baseline.digest
    assert {step: checksum.digest for step, checksum in run.clone_checksums.items()} == {
        STEP_CLONE_FROM_SNAPSHOT: run.baseline.digest,
        STEP_CLONE_FROM_CLAIM: run.baseline.digest,
    }
    assert run.clone_checksums[STEP_CLONE_FROM_SNAPSHOT].workload == RBD_DRIVER.snapshot_clone_workload
    assert run.clone_checksums[STEP_CLONE_FROM_CLAIM].workload == RBD_DRIVER.claim_clone_workload


@pytest.mark.unit
def test_upgrade_deploys_old_version_then_source(sequencer, fake_deployer, source_dirs):
    source_dir, checkout_dir = source_dirs
    sequencer.run()

    assert fake_deployer.calls[0] == ("checkout", "v3.0.0")
    assert fake_deployer.deployed_from == [checkout_dir, source_dir]


@pytest.mark.unit
def test_upgrade_keeps_claim_across_redeploy(sequencer, fake_gateway):
    sequencer.run()

    claim_events = [event for event in fake_gateway.events if event[1:] == ("PersistentVolumeClaim", "rbd-pvc")]
    assert claim_events == [
        ("create", "PersistentVolumeClaim", "rbd-pvc"),
        ("patch", "PersistentVolumeClaim", "rbd-pvc"),
        ("delete", "PersistentVolumeClaim", "rbd-pvc"),
    ]
    pod_events = [event[0] for event in fake_gateway.events if event[1:] == ("Pod", "csi-rbd-demo-pod")]
    assert pod_events == ["create", "delete", "create", "delete"]


@pytest.mark.unit
@pytest.mark.parametrize(
    "minor, expected_history, expected_outcomes",
    [
        pytest.param(
            16,
            [UpgradeState.CLONE_VALIDATED, UpgradeState.RESIZE_VALIDATED],
            {
                STEP_CLONE_FROM_SNAPSHOT: StepOutcome.SKIPPED,
                STEP_CLONE_FROM_CLAIM: StepOutcome.PASSED,
                STEP_RESIZE: StepOutcome.PASSED,
            },
            id="1.16-no-snapshot-clone",
        ),
        pytest.param(
            15,
            [UpgradeState.CLONE_SKIPPED, UpgradeState.RESIZE_VALIDATED],
            {
                STEP_CLONE_FROM_SNAPSHOT: StepOutcome.SKIPPED,
                STEP_CLONE_FROM_CLAIM: StepOutcome.SKIPPED,
                STEP_RESIZE: StepOutcome.PASSED,
            },
            id="1.15-no-clone",
        ),
        pytest.param(
            14,
            [UpgradeState.CLONE_SKIPPED, UpgradeState.RESIZE_SKIPPED],
            {
                STEP_CLONE_FROM_SNAPSHOT: StepOutcome.SKIPPED,
                STEP_CLONE_FROM_CLAIM: StepOutcome.SKIPPED,
                STEP_RESIZE: StepOutcome.SKIPPED,
            },
            id="1.14-no-resize",
        ),
    ],
)
def test_upgrade_feature_gates(sequencer, fake_gateway, minor, expected_history, expected_outcomes):
    fake_gateway.version = VersionInfo(major=1, minor=minor)
    run = sequencer.run()

    assert run.failure is None
    assert run.history[-3:-1] == expected_history
    assert run.outcomes == expected_outcomes
    assert run.state == UpgradeState.TORN_DOWN


@pytest.mark.unit
def test_skipped_clones_create_no_resources(sequencer, fake_gateway):
    fake_gateway.version = VersionInfo(major=1, minor=15)
    sequencer.run()

    created = [name for action, _, name in fake_gateway.events if action == "create"]
    for name in (
        RBD_DRIVER.snapshot_clone_claim,
        RBD_DRIVER.snapshot_clone_workload,
        RBD_DRIVER.claim_clone_claim,
        RBD_DRIVER.claim_clone_workload,
    ):
        assert name not in created


@pytest.mark.unit
def test_version_queried_per_gated_step(sequencer, fake_gateway):
    sequencer.run()
    assert fake_gateway.version_queries == 3


@pytest.mark.unit
def test_checksum_mismatch_after_upgrade(sequencer, fake_gateway, fake_deployer):
    def corrupt_on_redeploy(deploy_count):
        if deploy_count == 2:
            fake_gateway.write_file(
                namespace=TEST_NAMESPACE, claim_name="rbd-pvc", path=MARKER_PATH, content="corrupted\n"
            )

    fake_deployer.on_deploy.append(corrupt_on_redeploy)
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_REBIND_WORKLOAD
    assert isinstance(exc_info.value.__cause__, ChecksumMismatchError)
    assert_torn_down(gateway=fake_gateway, deployer=fake_deployer)


@pytest.mark.unit
def test_teardown_tolerates_resources_removed_out_of_band(sequencer, fake_gateway, fake_deployer, caplog):
    def remove_snapshot_and_corrupt(deploy_count):
        if deploy_count == 2:
            fake_gateway.delete(kind="VolumeSnapshot", name=RBD_DRIVER.snapshot_name, namespace=TEST_NAMESPACE)
            fake_gateway.write_file(
                namespace=TEST_NAMESPACE, claim_name="rbd-pvc", path=MARKER_PATH, content="corrupted\n"
            )

    fake_deployer.on_deploy.append(remove_snapshot_and_corrupt)
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_REBIND_WORKLOAD
    assert not [record for record in caplog.records if record.levelname == "ERROR"]
    assert_torn_down(gateway=fake_gateway, deployer=fake_deployer)


@pytest.mark.unit
def test_clone_checksum_mismatch(sequencer, fake_gateway):
    original_create = fake_gateway.create

    def create_with_corrupted_clone(body):
        resource = original_create(body=body)
        if body["metadata"]["name"] == RBD_DRIVER.snapshot_clone_claim:
            fake_gateway.write_file(
                namespace=TEST_NAMESPACE,
                claim_name=RBD_DRIVER.snapshot_clone_claim,
                path=MARKER_PATH,
                content="stale\n",
            )
        return resource

    fake_gateway.create = create_with_corrupted_clone
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_CLONE_FROM_SNAPSHOT
    assert isinstance(exc_info.value.cause, ChecksumMismatchError)
    assert scenario_resources(gateway=fake_gateway) == []


@pytest.mark.unit
def test_old_version_deploy_failure(sequencer, fake_gateway, fake_deployer, hooks):
    fake_gateway.unready_rollouts.add(RBD_DRIVER.nodeplugin_daemonset)
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_DEPLOY_OLD_VERSION
    assert isinstance(exc_info.value.cause, DeploymentNotReady)
    assert fake_deployer.calls[-1][0] == "remove"
    assert hooks.calls[-1] == ("teardown", UpgradeState.NOT_DEPLOYED)


@pytest.mark.unit
def test_checkout_failure_skips_plugin_removal(sequencer, fake_deployer):
    fake_deployer.fail_checkout = True
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_DEPLOY_OLD_VERSION
    assert fake_deployer.calls == [("checkout", "v3.0.0")]


@pytest.mark.unit
def test_workload_never_ready(sequencer, fake_gateway, fake_deployer):
    fake_gateway.stuck.add("csi-rbd-demo-pod")
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_BIND_INITIAL_WORKLOAD
    assert isinstance(exc_info.value.cause, TimeoutWaitingForReady)
    assert "csi-rbd-demo-pod" in str(exc_info.value)
    assert_torn_down(gateway=fake_gateway, deployer=fake_deployer)


@pytest.mark.unit
def test_teardown_error_does_not_mask_failure(sequencer, fake_gateway, fake_deployer):
    fake_gateway.stuck.add(RBD_DRIVER.snapshot_name)
    fake_gateway.failing_deletes.add(RBD_DRIVER.snapshot_name)
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_CAPTURE_SNAPSHOT
    assert isinstance(exc_info.value.cause, SnapshotCreationError)
    # the primary claim and workload are still released
    assert [identity[0] for identity in scenario_resources(gateway=fake_gateway)] == ["VolumeSnapshot"]
    assert fake_deployer.calls[-1][0] == "remove"


@pytest.mark.unit
def test_teardown_error_after_success(upgrade_config, fake_gateway, fake_deployer):
    sequencer = UpgradeSequencer(
        config=upgrade_config,
        driver=RBD_DRIVER,
        gateway=fake_gateway,
        deployer=fake_deployer,
        namespace=TEST_NAMESPACE,
        hooks=FailingTeardownHooks(),
    )
    with pytest.raises(UpgradeStepError) as exc_info:
        sequencer.run()

    assert exc_info.value.step == STEP_TEARDOWN
    assert isinstance(exc_info.value.cause, DeploymentNotReady)
    assert scenario_resources(gateway=fake_gateway) == []


@pytest.mark.unit
def test_logs_collected_on_failure(upgrade_config, fake_gateway, fake_deployer, monkeypatch, tmp_path):
    monkeypatch.setenv("CSI_UPGRADE_DATA_COLLECTOR_DIR", str(tmp_path / "collected"))
    fake_gateway.create(
        body={
            "kind": "Pod",
            "metadata": {"name": "csi-rbdplugin-x2k9v", "namespace": "default", "labels": {"app": "csi-rbdplugin"}},
            "spec": {"containers": [], "volumes": []},
        }
    )
    fake_gateway.stuck.add(RBD_DRIVER.snapshot_name)
    sequencer = UpgradeSequencer(
        config=dataclasses.replace(upgrade_config, collect_logs_on_failure=True),
        driver=RBD_DRIVER,
        gateway=fake_gateway,
        deployer=fake_deployer,
        namespace=TEST_NAMESPACE,
    )
    with pytest.raises(UpgradeStepError):
        sequencer.run()

    assert os.listdir(tmp_path / "collected" / "rbd") == ["csi-rbdplugin-x2k9v.log"]


@pytest.mark.unit
def test_no_logs_collected_on_success(upgrade_config, fake_gateway, fake_deployer, monkeypatch, tmp_path):
    monkeypatch.setenv("CSI_UPGRADE_DATA_COLLECTOR_DIR", str(tmp_path / "collected"))
    UpgradeSequencer(
        config=dataclasses.replace(upgrade_config, collect_logs_on_failure=True),
        driver=RBD_DRIVER,
        gateway=fake_gateway,
        deployer=fake_deployer,
        namespace=TEST_NAMESPACE,
    ).run()

    assert not (tmp_path / "collected").exists()
