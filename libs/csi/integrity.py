import logging
import os
import shlex
import uuid

from csi_utilities.constants import MD5SUM
from csi_utilities.exceptions import ChecksumMismatchError, ExecutionError
from libs.csi.resources import ChecksumRecord, ConsumerWorkload

LOGGER = logging.getLogger(__name__)


class DataIntegrityVerifier:
    def __init__(self, gateway):
        self.gateway = gateway

    def _exec(self, workload: ConsumerWorkload, command: str, selector: str | None = None) -> str:
        return self.gateway.exec_in_workload(
            namespace=workload.namespace,
            command=command,
            label_selector=selector or workload.label_selector,
        )

    def write_marker_file(self, workload: ConsumerWorkload, file_name: str, selector: str | None = None) -> str:
        """
        Write a file with unique content into the workload mount.

        Returns:
            str: the file path inside the workload.
        """
        file_path = os.path.join(workload.mount_path, file_name)
        marker = uuid.uuid4().hex
        LOGGER.info(f"Writing marker {marker} to {file_path} in {workload}")
        self._exec(
            workload=workload,
            command=f"echo {marker} > {shlex.quote(file_path)} && sync",
            selector=selector,
        )
        return file_path

    def capture_checksum(
        self, workload: ConsumerWorkload, file_path: str, selector: str | None = None
    ) -> ChecksumRecord:
        """
        Compute the md5 digest of `file_path` inside the running workload.

        Raises:
            ExecutionError: if the workload cannot be reached or the file is absent.
        """
        LOGGER.info(f"Calculating checksum of {file_path} in {workload}")
        command = f"{MD5SUM} {shlex.quote(file_path)}"
        output = self._exec(workload=workload, command=command, selector=selector).strip()
        if not output:
            raise ExecutionError(err_str=f"{MD5SUM} of {file_path} returned no output in {workload}", command=command)

        digest = output.split()[0]
        LOGGER.info(f"Checksum of {file_path} in {workload}: {digest}")
        return ChecksumRecord(workload=workload.name, file_path=file_path, digest=digest)

    @staticmethod
    def assert_equal(expected: ChecksumRecord, actual: ChecksumRecord) -> None:
        if actual.digest != expected.digest:
            LOGGER.error(
                f"The md5sum of files did not match, expected {expected.digest} received {actual.digest}"
            )
            raise ChecksumMismatchError(expected=expected, actual=actual)
        LOGGER.info(f"The md5sum of {actual.file_path} in {actual.workload} matched {expected.workload}")
