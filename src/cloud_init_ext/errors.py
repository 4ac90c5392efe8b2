"""Provisioning pipeline errors.

Every failure a provisioning job can hit is a ``ProvisioningError``. The
message of each error is what operators see in the failure notification.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloud_init_ext.playbooks import PlaybookFunction


class ProvisioningError(Exception):
    """Base class for errors that abort a provisioning job."""

    retryable: bool = False


class InvalidAddress(ProvisioningError):
    """A stored address could not be parsed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid IP address: {value!r}")


class UnsupportedAddressFamily(ProvisioningError):
    """A non-IPv4 address was found in the registry."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Unsupported: only IPv4 addresses are supported, found {address}")


class PoolExhausted(ProvisioningError):
    """No address below the pool ceiling is free."""

    def __init__(self, network: str, ceiling: int):
        self.network = network
        self.ceiling = ceiling
        super().__init__(f"No more free addresses available in {network} (ceiling .{ceiling})")


class DuplicateAddress(ProvisioningError):
    """The address was registered concurrently by another job."""

    retryable = True

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Address {address} is already registered")


class PersistenceError(ProvisioningError):
    """Storage was unreachable or rejected the operation."""


class MissingPlaybook(ProvisioningError):
    def __init__(self, function: "PlaybookFunction"):
        self.function = function
        super().__init__(f"Missing playbook providing function {function.value!r}")


class ProcessSpawnError(ProvisioningError):
    """The playbook executable could not be launched."""

    def __init__(self, command: str, reason: str):
        self.command = command
        super().__init__(f"Unable to launch {command}: {reason}")


class PlaybookFailed(ProvisioningError):
    """The playbook exited with a non-zero status."""

    def __init__(self, path: str, returncode: int):
        self.path = path
        self.returncode = returncode
        super().__init__(f"Playbook {path} did not exit successfully (exit code {returncode})")


class ProcessTimeout(ProvisioningError):
    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(f"Playbook {path} timed out after {timeout}s")


class JobRejected(ProvisioningError):
    """The orchestrator cannot accept another job right now.

    Raised to the triggering layer only, never reported through the
    notification sink.
    """


class NotificationDeliveryError(Exception):
    """Failure report could not be delivered. Logged, never escalated."""
