import pytest

from libs.csi.sequencer import STEP_RESIZE, StepOutcome, UpgradeState


def assert_clone_preserves_data(upgrade_run, step):
    if upgrade_run.outcomes[step] == StepOutcome.SKIPPED:
        pytest.skip(f"{step} is not supported by the cluster version")

    clone_checksum = upgrade_run.clone_checksums[step]
    assert clone_checksum.digest == upgrade_run.baseline.digest, (
        f"{clone_checksum.workload} reports {clone_checksum.digest}, expected {upgrade_run.baseline.digest}"
    )


def assert_resize_observed(upgrade_run, expected_size):
    if upgrade_run.outcomes[STEP_RESIZE] == StepOutcome.SKIPPED:
        pytest.skip("Volume expansion is not supported by the cluster version")
    assert upgrade_run.claim.size == expected_size
    assert UpgradeState.RESIZE_VALIDATED in upgrade_run.history


def assert_torn_down(upgrade_run):
    assert upgrade_run.state == UpgradeState.TORN_DOWN
    assert not upgrade_run.acquired, f"Resources left behind: {upgrade_run.acquired}"
