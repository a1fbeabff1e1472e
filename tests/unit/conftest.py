import pytest

from csi_utilities.config import UpgradeConfig
from csi_utilities.version_gate import VersionInfo
from libs.csi.deployment import RBD_DRIVER
from libs.csi.lifecycle import ResourceLifecycleManager
from libs.csi.resources import ConsumerWorkload, VolumeClaim
from tests.unit.fakes import FakePlatformGateway, FakePluginDeployer
from tests.unit.utils import SHORT_TIMEOUT, TEST_NAMESPACE, write_examples


@pytest.fixture()
def fake_gateway():
    return FakePlatformGateway(version=VersionInfo(major=1, minor=17))


@pytest.fixture()
def lifecycle(fake_gateway):
    return ResourceLifecycleManager(gateway=fake_gateway, timeout=SHORT_TIMEOUT)


@pytest.fixture()
def claim():
    return VolumeClaim(name="rbd-pvc", namespace=TEST_NAMESPACE, size="2Gi")


@pytest.fixture()
def workload():
    return ConsumerWorkload.for_claim(
        name="csi-rbd-demo-pod",
        namespace=TEST_NAMESPACE,
        claim_name="rbd-pvc",
        labels={"app": "upgrade-testing"},
    )


@pytest.fixture()
def bound_pair(lifecycle, claim, workload):
    return lifecycle.bind(claim=claim, workload=workload)


@pytest.fixture()
def upgrade_config():
    return UpgradeConfig(
        upgrade_testing=True,
        upgrade_version="v3.0.0",
        deploy_timeout=SHORT_TIMEOUT,
        poll_interval=0,
        collect_logs_on_failure=False,
    )


@pytest.fixture()
def source_dirs(tmp_path):
    source_dir = str(tmp_path / "ceph-csi")
    checkout_dir = str(tmp_path / "ceph-csi-release")
    write_examples(source_dir=source_dir, driver=RBD_DRIVER)
    write_examples(source_dir=checkout_dir, driver=RBD_DRIVER)
    return source_dir, checkout_dir


@pytest.fixture()
def fake_deployer(fake_gateway, source_dirs):
    source_dir, checkout_dir = source_dirs
    return FakePluginDeployer(
        gateway=fake_gateway,
        driver=RBD_DRIVER,
        namespace="default",
        source_dir=source_dir,
        checkout_dir=checkout_dir,
    )
