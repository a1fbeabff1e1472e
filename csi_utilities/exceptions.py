class CSIUpgradeError(Exception):
    def __init__(self, err_str):
        super().__init__(err_str)
        self.err_str = err_str

    def __str__(self):
        return self.err_str


class PlatformAPIError(CSIUpgradeError):
    pass


class TimeoutWaitingForReady(CSIUpgradeError):
    pass


class ResourceCreationError(CSIUpgradeError):
    pass


class DeploymentNotReady(CSIUpgradeError):
    pass


class SnapshotCreationError(CSIUpgradeError):
    pass


class ExecutionError(CSIUpgradeError):
    def __init__(self, err_str, command=None, stderr=""):
        super().__init__(err_str=err_str)
        self.command = command
        self.stderr = stderr


class ChecksumMismatchError(CSIUpgradeError):
    def __init__(self, expected, actual):
        super().__init__(
            err_str=(
                f"Checksum of {actual.file_path} did not match: "
                f"expected {expected.digest}, received {actual.digest}"
            )
        )
        self.expected = expected
        self.actual = actual


class ExpansionTimeoutError(TimeoutWaitingForReady):
    pass


class CapacityMismatchError(CSIUpgradeError):
    pass


class TemplateLoadError(CSIUpgradeError):
    pass


class UpgradeStepError(CSIUpgradeError):
    """
    Raised when a sequencer step fails; the underlying error is chained as `__cause__`.
    """

    def __init__(self, step, resource, cause):
        super().__init__(err_str=f"Step '{step}' failed for {resource}: {cause}")
        self.step = step
        self.resource = resource
        self.cause = cause
