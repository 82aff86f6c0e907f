"""
Installer boot.cfg editing

boot.cfg lists the boot modules of one specific installer build, so it is
never regenerated: the only change is an option appended to ``kernelopt``.
"""

from pathlib import Path
from typing import List

KERNELOPT_KEY = "kernelopt="


def append_kernel_option(text: str, option: str) -> str:
    """
    Append ``option`` to the kernelopt line of a boot.cfg document.

    Every other line is returned unchanged. If the option is already present
    the text is returned as-is; if there is no kernelopt line, one is added.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    lines = text.splitlines(keepends=True)

    for i, line in enumerate(lines):
        if not line.startswith(KERNELOPT_KEY):
            continue
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        current = body[len(KERNELOPT_KEY):].split()
        if option in current:
            return text
        separator = " " if body[len(KERNELOPT_KEY):].strip() else ""
        lines[i] = f"{body.rstrip()}{separator}{option}{ending}"
        return "".join(lines)

    if lines and not lines[-1].endswith(("\n", "\r")):
        lines[-1] += newline
    lines.append(f"{KERNELOPT_KEY}{option}{newline}")
    return "".join(lines)


def find_boot_configs(root: Path) -> List[Path]:
    """The legacy and UEFI boot.cfg files of an extracted installer tree"""
    candidates = [root / "boot.cfg", root / "efi" / "boot" / "boot.cfg"]
    return [p for p in candidates if p.is_file()]


def patch_boot_config(path: Path, option: str) -> bool:
    """Append the option in place. Returns True if the file changed."""
    original = path.read_bytes().decode("utf-8", errors="surrogateescape")
    updated = append_kernel_option(original, option)
    if updated == original:
        return False
    path.write_bytes(updated.encode("utf-8", errors="surrogateescape"))
    return True
