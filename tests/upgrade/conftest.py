import logging

import pytest
from ocp_resources.namespace import Namespace
from ocp_resources.resource import get_client
from pytest_testconfig import config as py_config

from csi_utilities.config import UpgradeConfig
from csi_utilities.platform import PlatformGateway
from libs.csi.deployment import CSI_DRIVERS, ClusterPrerequisites, PluginDeployer
from libs.csi.sequencer import UpgradeSequencer

LOGGER = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def admin_client():
    return get_client()


@pytest.fixture(scope="session")
def upgrade_config():
    return UpgradeConfig.from_py_config(config=py_config)


@pytest.fixture(scope="session", autouse=True)
def skip_if_upgrade_testing_disabled(upgrade_config):
    if not upgrade_config.upgrade_testing:
        pytest.skip("upgrade_testing is not enabled")


@pytest.fixture(scope="session")
def platform_gateway(admin_client, upgrade_config):
    return PlatformGateway(client=admin_client, poll_interval=upgrade_config.poll_interval)


@pytest.fixture(scope="class")
def csi_driver(request, upgrade_config):
    driver = CSI_DRIVERS[request.param]
    if not upgrade_config.should_run(driver_name=driver.name):
        pytest.skip(f"{driver.name} upgrade testing is disabled")
    return driver


@pytest.fixture(scope="class")
def upgrade_namespace(admin_client, csi_driver):
    with Namespace(name=f"{csi_driver.name}-upgrade", client=admin_client, teardown=True) as namespace:
        namespace.wait_for_status(status=Namespace.Status.ACTIVE)
        yield namespace


@pytest.fixture(scope="class")
def plugin_deployer(platform_gateway, upgrade_config, csi_driver):
    return PluginDeployer(
        gateway=platform_gateway,
        driver=csi_driver,
        namespace=upgrade_config.ceph_csi_namespace,
        source_dir=upgrade_config.csi_source_dir,
        timeout=upgrade_config.deploy_timeout,
        git_repo=upgrade_config.ceph_csi_git_repo,
    )


@pytest.fixture(scope="class")
def upgrade_run(upgrade_config, csi_driver, platform_gateway, plugin_deployer, upgrade_namespace):
    LOGGER.info(f"Running {csi_driver.name} upgrade from {upgrade_config.upgrade_version}")
    return UpgradeSequencer(
        config=upgrade_config,
        driver=csi_driver,
        gateway=platform_gateway,
        deployer=plugin_deployer,
        namespace=upgrade_namespace.name,
        hooks=ClusterPrerequisites(
            gateway=platform_gateway,
            namespace=upgrade_config.ceph_csi_namespace,
            manifests=upgrade_config.prerequisites_for(driver_name=csi_driver.name),
        ),
    ).run()
