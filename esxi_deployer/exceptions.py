"""
Deployer Exceptions

Errors raised by the image builder, the BMC adapters and the provisioning driver.
The driver decides whether to retry based on the exception class only.
"""

from typing import Optional


class DeployerError(Exception):
    """Base class for all deployer errors"""


class BuildError(DeployerError):
    """Image build failed (source image, rendering or ISO tooling). Never retried."""

    def __init__(self, hostname: str, message: str):
        self.hostname = hostname
        self.message = message
        super().__init__(f"{hostname}: {message}")


class BmcError(DeployerError):
    """Error talking to a BMC"""

    retryable = False

    def __init__(self, bmc: str, operation: str, message: str, status_code: Optional[int] = None):
        self.bmc = bmc
        self.operation = operation
        self.message = message
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{operation} on {bmc} failed: {message}{detail}")


class TransportError(BmcError):
    """Network, timeout or authentication problem. Retryable."""

    retryable = True


class VendorRejected(BmcError):
    """BMC understood the request and refused it. Not retried within a run."""

    retryable = False


class VerificationTimeout(DeployerError):
    """Installed host did not become reachable in time. Retryable."""

    retryable = True

    def __init__(self, hostname: str, ip: str, waited_seconds: float):
        self.hostname = hostname
        self.ip = ip
        self.waited_seconds = waited_seconds
        super().__init__(f"{hostname} ({ip}) not reachable after {waited_seconds:.0f}s")


class ProvisioningAborted(DeployerError):
    """Operator requested an abort"""
