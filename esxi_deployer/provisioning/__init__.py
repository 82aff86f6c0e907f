"""
Provisioning Module

Drives hosts through a virtual-media install over their BMC.
"""

from .driver import ProvisioningDriver
from .probe import Probe, ReachabilityProbe, check_port

__all__ = [
    "ProvisioningDriver",
    "Probe",
    "ReachabilityProbe",
    "check_port",
]
