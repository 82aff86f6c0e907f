"""
Image Building Module

Builds per-host unattended-install ISO images from the vendor installer.
"""

from .builder import ImageBuilder, file_sha256, lowercase_tree
from .boot_config import append_kernel_option, find_boot_configs, patch_boot_config
from .iso_tools import IsoToolchain, IsoToolError, REQUIRED_TOOLS, missing_tools
from .kickstart import (
    KICKSTART_FILE_NAME,
    KICKSTART_KERNEL_OPTION,
    render_kickstart,
    build_boot_descriptor,
    descriptor_digest,
)

__all__ = [
    "ImageBuilder",
    "file_sha256",
    "lowercase_tree",
    "append_kernel_option",
    "find_boot_configs",
    "patch_boot_config",
    "IsoToolchain",
    "IsoToolError",
    "REQUIRED_TOOLS",
    "missing_tools",
    "KICKSTART_FILE_NAME",
    "KICKSTART_KERNEL_OPTION",
    "render_kickstart",
    "build_boot_descriptor",
    "descriptor_digest",
]
