"""
ISO Tooling

Thin wrappers around the external ISO tools: xorriso to extract the source
image, genisoimage to repackage it and isohybrid to make the result bootable
from both legacy BIOS and UEFI.
"""

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from loguru import logger

REQUIRED_TOOLS = ("xorriso", "genisoimage", "isohybrid")

# Boot images inside an extracted ESXi installer tree (after lowercasing)
LEGACY_BOOT_IMAGE = "isolinux.bin"
BOOT_CATALOG = "boot.cat"
EFI_BOOT_IMAGE = "efiboot.img"


class IsoToolError(Exception):
    """An external ISO tool failed or is missing"""


def missing_tools(tools=REQUIRED_TOOLS) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


class IsoToolchain:
    """Runs the ISO tools as subprocesses"""

    def __init__(self, timeout_seconds: int = 1800, volume_id: str = "ESXI-KS"):
        self.timeout_seconds = timeout_seconds
        self.volume_id = volume_id

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self.timeout_seconds)
        except FileNotFoundError:
            raise IsoToolError(f"{cmd[0]} is not installed")
        except subprocess.CalledProcessError as e:
            raise IsoToolError(f"{cmd[0]} exited with {e.returncode}: {(e.stderr or '').strip()[-500:]}")
        except subprocess.TimeoutExpired as e:
            raise IsoToolError(f"{cmd[0]} timed out after {e.timeout} seconds")

    def extract(self, source_iso: Path, destination: Path) -> None:
        """Copy the ISO contents into destination. The ISO is only read."""
        destination.mkdir(parents=True, exist_ok=True)
        self._run([
            "xorriso",
            "-osirrox", "on",
            "-indev", str(source_iso),
            "-extract", "/", str(destination),
        ])
        # xorriso keeps the read-only permissions of the ISO
        for path in [destination, *destination.rglob("*")]:
            if not path.is_symlink():
                path.chmod(path.stat().st_mode | 0o200)

    def repack(self, tree: Path, output_iso: Path) -> None:
        """Build a legacy + UEFI El Torito image from the tree"""
        output_iso.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            "genisoimage",
            "-relaxed-filenames",
            "-J", "-R",
            "-V", self.volume_id,
            "-o", str(output_iso),
            "-b", LEGACY_BOOT_IMAGE,
            "-c", BOOT_CATALOG,
            "-no-emul-boot", "-boot-load-size", "4", "-boot-info-table",
        ]
        if (tree / EFI_BOOT_IMAGE).is_file():
            cmd += ["-eltorito-alt-boot", "-e", EFI_BOOT_IMAGE, "-no-emul-boot"]
        cmd.append(str(tree))
        self._run(cmd)

    def hybridize(self, iso: Path) -> None:
        self._run(["isohybrid", "--uefi", str(iso)])


def legacy_boot_image(tree: Path) -> Optional[Path]:
    path = tree / LEGACY_BOOT_IMAGE
    return path if path.is_file() else None
