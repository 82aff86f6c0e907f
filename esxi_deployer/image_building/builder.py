"""
Image Builder

Turns the vendor installer ISO into a per-host unattended-install ISO:
- extract the source image into a per-host staging directory
- lowercase every file name except the kickstart
- append the kickstart option to boot.cfg
- write the rendered kickstart
- repackage and apply the hybrid-boot transformation
- always remove the staging directory
"""

import hashlib
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from ..configs import (
    BuildArtifact,
    BuildStatus,
    Credentials,
    HostSpec,
    KickstartConfig,
)
from ..exceptions import BuildError
from .boot_config import find_boot_configs, patch_boot_config
from .iso_tools import IsoToolchain, IsoToolError, legacy_boot_image
from .kickstart import (
    KICKSTART_FILE_NAME,
    KICKSTART_KERNEL_OPTION,
    build_boot_descriptor,
    descriptor_digest,
)


def file_sha256(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def lowercase_tree(root: Path, keep: str = KICKSTART_FILE_NAME) -> int:
    """
    Rename every file and directory below root to lowercase, except entries
    named ``keep``. Children are renamed before their parents.

    Returns:
        Number of renamed entries

    Raises:
        FileExistsError: two entries differ only by case
    """
    renamed = 0
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames + dirnames:
            if name == keep:
                continue
            lowered = name.lower()
            if lowered == name:
                continue
            src = os.path.join(dirpath, name)
            dst = os.path.join(dirpath, lowered)
            if os.path.lexists(dst):
                raise FileExistsError(f"{src} collides with {dst}")
            os.rename(src, dst)
            renamed += 1
    return renamed


class ImageBuilder:
    """
    Builds per-host installer images.

    Builds for different hosts may run concurrently; each one works in
    ``<staging_dir>/<hostname>`` and writes ``<output_dir>/<hostname>.iso``.
    """

    def __init__(
        self,
        staging_dir: str,
        output_dir: str,
        kickstart_options: Optional[KickstartConfig] = None,
        toolchain: Optional[IsoToolchain] = None,
    ):
        self.staging_dir = Path(staging_dir)
        self.output_dir = Path(output_dir)
        self.kickstart_options = kickstart_options or KickstartConfig()
        self.toolchain = toolchain or IsoToolchain()

    def staging_path(self, hostname: str) -> Path:
        return self.staging_dir / hostname

    def output_path(self, host: HostSpec) -> Path:
        return self.output_dir / host.image_name

    def _check_source(self, hostname: str, source_iso: Path) -> None:
        if not source_iso.is_file():
            raise BuildError(hostname, f"source image not found: {source_iso}")
        if not os.access(source_iso, os.R_OK):
            raise BuildError(hostname, f"source image not readable: {source_iso}")

    def build(self, source_iso: str, host: HostSpec, credentials: Credentials) -> BuildArtifact:
        """
        Build the unattended-install image for one host.

        Args:
            source_iso: Vendor installer ISO (never modified)
            host: Target host, including its network profile
            credentials: Run credentials (root password goes into the kickstart)

        Returns:
            BuildArtifact with status BUILT

        Raises:
            BuildError: on any failure; the staging area is removed either way
        """
        hostname = host.hostname
        source = Path(source_iso)
        self._check_source(hostname, source)

        # Render first so a bad host record fails before any disk work
        descriptor = build_boot_descriptor(host, credentials, self.kickstart_options)

        staging = self.staging_path(hostname)
        output = self.output_path(host)
        if staging.exists():
            logger.warning(f"Removing stale staging area {staging}")
            shutil.rmtree(staging)

        logger.info(f"Building image for {hostname} from {source.name}")
        try:
            self.toolchain.extract(source, staging)

            renamed = lowercase_tree(staging)
            logger.debug(f"Lowercased {renamed} entries in {staging}")

            boot_configs = find_boot_configs(staging)
            if not boot_configs or boot_configs[0] != staging / "boot.cfg":
                raise BuildError(hostname, "installer boot.cfg not found in source image")
            for boot_cfg in boot_configs:
                if patch_boot_config(boot_cfg, KICKSTART_KERNEL_OPTION):
                    logger.debug(f"Appended {KICKSTART_KERNEL_OPTION} to {boot_cfg.relative_to(staging)}")

            if legacy_boot_image(staging) is None:
                raise BuildError(hostname, "legacy boot image isolinux.bin not found in source image")

            (staging / descriptor.file_name).write_text(descriptor.content, encoding="utf-8")

            if output.exists():
                output.unlink()
            self.toolchain.repack(staging, output)
            self.toolchain.hybridize(output)
            checksum = file_sha256(output)
        except IsoToolError as e:
            raise BuildError(hostname, str(e))
        except FileExistsError as e:
            raise BuildError(hostname, f"file name collision after lowercasing: {e}")
        except OSError as e:
            raise BuildError(hostname, f"filesystem error: {e}")
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        artifact = BuildArtifact(
            hostname=hostname,
            status=BuildStatus.BUILT,
            image_path=str(output),
            checksum=checksum,
            kickstart_sha256=descriptor_digest(descriptor),
            built_at=datetime.now().isoformat(),
        )
        logger.success(f"Built {output} (sha256 {artifact.checksum[:12]})")
        return artifact
