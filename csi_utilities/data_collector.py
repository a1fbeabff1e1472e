import logging
import os

from csi_utilities.exceptions import PlatformAPIError

LOGGER = logging.getLogger(__name__)

DATA_COLLECTOR_DIR_ENV = "CSI_UPGRADE_DATA_COLLECTOR_DIR"
DEFAULT_DATA_COLLECTOR_DIR = "tests-collected-info"


def get_data_collector_base_directory() -> str:
    return os.environ.get(DATA_COLLECTOR_DIR_ENV, DEFAULT_DATA_COLLECTOR_DIR)


def write_to_file(base_directory: str, file_name: str, content: str) -> str:
    os.makedirs(base_directory, exist_ok=True)
    file_path = os.path.join(base_directory, file_name)
    with open(file_path, "w") as fd:
        fd.write(content)
    return file_path


def collect_csi_pod_logs(gateway, namespace: str, label_selectors: tuple[str, ...], base_directory: str) -> list[str]:
    """
    Write the logs of every pod matching `label_selectors` in `namespace` under `base_directory`.

    Failures to read a single pod's logs are logged and skipped so that collection never hides the scenario error.

    Returns:
        list[str]: paths of the written log files.
    """
    written_files = []
    for label_selector in label_selectors:
        try:
            pod_names = gateway.list_pods(namespace=namespace, label_selector=label_selector)
        except PlatformAPIError as exp:
            LOGGER.error(f"Failed to list pods with {label_selector}: {exp}")
            continue

        for pod_name in pod_names:
            try:
                logs = gateway.pod_logs(name=pod_name, namespace=namespace)
            except PlatformAPIError as exp:
                LOGGER.error(f"Failed to collect logs of {pod_name}: {exp}")
                continue
            written_files.append(
                write_to_file(base_directory=base_directory, file_name=f"{pod_name}.log", content=logs)
            )
    LOGGER.info(f"Collected {len(written_files)} pod logs under {base_directory}")
    return written_files
