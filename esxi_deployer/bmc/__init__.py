"""
BMC Module

Vendor adapters for out-of-band server management.
"""

from .base import VendorAdapter
from .redfish_adapter import RedfishAdapter
from .ilo_adapter import IloAdapter
from .factory import BmcAdapterFactory

__all__ = [
    "VendorAdapter",
    "RedfishAdapter",
    "IloAdapter",
    "BmcAdapterFactory",
]
