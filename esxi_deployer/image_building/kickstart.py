"""
Kickstart rendering

Produces the unattended-install file read by the ESXi installer at early boot.
Rendering is a pure function of its inputs so two builds from the same host
record produce byte-identical files.
"""

import hashlib
import ipaddress
from typing import List

from ..configs import BootDescriptor, Credentials, HostSpec, KickstartConfig
from ..exceptions import BuildError

# The installer looks this path up case-sensitively, so it is never lowercased
KICKSTART_FILE_NAME = "KS.CFG"
KICKSTART_KERNEL_OPTION = f"ks=cdrom:/{KICKSTART_FILE_NAME}"

# %firstboot commands for each network stack that can be switched off
_DISABLE_STACK_COMMANDS = {
    "ipv6": "esxcli network ip set --ipv6-enabled=false",
}


def _require_ip(hostname: str, field_name: str, value: str) -> str:
    if not value:
        raise BuildError(hostname, f"missing required field '{field_name}'")
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        raise BuildError(hostname, f"invalid IPv4 address for '{field_name}': {value!r}")
    return value


def _require_netmask(hostname: str, value: str) -> str:
    _require_ip(hostname, "netmask", value)
    try:
        ipaddress.IPv4Network(f"0.0.0.0/{value}")
    except ValueError:
        raise BuildError(hostname, f"invalid netmask: {value!r}")
    return value


def _firstboot_lines(host: HostSpec, options: KickstartConfig) -> List[str]:
    network = host.network
    lines = [
        "%firstboot --interpreter=busybox",
        "",
        "# remote shell access",
        "vim-cmd hostsvc/enable_ssh",
        "vim-cmd hostsvc/start_ssh",
    ]
    if options.enable_shell:
        lines += [
            "vim-cmd hostsvc/enable_esx_shell",
            "vim-cmd hostsvc/start_esx_shell",
            "esxcli system settings advanced set -o /UserVars/SuppressShellWarning -i 1",
        ]

    if options.disabled_network_stack:
        stack = options.disabled_network_stack.lower()
        if stack not in _DISABLE_STACK_COMMANDS:
            raise BuildError(host.hostname, f"unsupported network stack to disable: {options.disabled_network_stack!r}")
        lines += ["", f"# disable {stack}", _DISABLE_STACK_COMMANDS[stack]]

    lines += [
        "",
        "# time sources",
        f"esxcli system ntp set --server={network.ntp_servers[0]} --server={network.ntp_servers[1]} --enabled=true",
        "",
        "esxcli system shutdown reboot -d {} -r \"apply firstboot configuration\"".format(options.reboot_delay_seconds),
    ]
    return lines


def render_kickstart(host: HostSpec, credentials: Credentials, options: KickstartConfig) -> str:
    """
    Render the kickstart for one host.

    Raises:
        BuildError: a required field is missing or invalid
    """
    network = host.network
    hostname = host.hostname
    if not hostname:
        raise BuildError("<unnamed>", "missing required field 'hostname'")

    ip = _require_ip(hostname, "mgmt_ip", host.mgmt_ip)
    netmask = _require_netmask(hostname, network.netmask)
    gateway = _require_ip(hostname, "gateway", network.gateway)
    dns = [_require_ip(hostname, "dns_servers", d) for d in network.dns_servers]
    for ntp in network.ntp_servers:
        if not ntp:
            raise BuildError(hostname, "missing required field 'ntp_servers'")
    if not credentials.root_password:
        raise BuildError(hostname, "missing required field 'root_password'")
    if "\n" in credentials.root_password or "\r" in credentials.root_password:
        raise BuildError(hostname, "root password must not contain line breaks")
    if not 0 <= network.vlan_id <= 4094:
        raise BuildError(hostname, f"invalid VLAN id: {network.vlan_id}")

    network_line = (
        f"network --bootproto=static --device=vmnic0 --ip={ip} --netmask={netmask} "
        f"--gateway={gateway} --nameserver={','.join(dns)} --hostname={hostname}"
    )
    # A zero VLAN tag breaks networking on the installed host
    if network.vlan_id != 0:
        network_line += f" --vlanid={network.vlan_id}"

    lines = [
        "# Generated by esxi-deployer",
        "vmaccepteula",
        "",
        "clearpart --firstdisk --overwritevmfs",
        "install --firstdisk --overwritevmfs",
        "",
        network_line,
        "",
        f"rootpw {credentials.root_password}",
        "",
        "reboot --noeject",
        "",
        *_firstboot_lines(host, options),
    ]
    return "\n".join(lines) + "\n"


def build_boot_descriptor(host: HostSpec, credentials: Credentials, options: KickstartConfig) -> BootDescriptor:
    return BootDescriptor(
        file_name=KICKSTART_FILE_NAME,
        content=render_kickstart(host, credentials, options),
    )


def descriptor_digest(descriptor: BootDescriptor) -> str:
    return hashlib.sha256(descriptor.content.encode("utf-8")).hexdigest()
