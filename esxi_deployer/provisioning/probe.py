"""
Reachability probes for installed hosts
"""

import socket
from typing import Callable

from ..configs import HostSpec

# Returns True when the host answers
Probe = Callable[[HostSpec], bool]


def check_port(ip: str, port: int, timeout: float = 5) -> bool:
    """Whether a TCP connection to ip:port succeeds"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)

    try:
        return sock.connect_ex((ip, port)) == 0
    except (socket.timeout, socket.error):
        return False
    finally:
        sock.close()


class ReachabilityProbe:
    """
    TCP probe against the installed hypervisor's management address.
    Port 443 is the host client / API endpoint of an installed ESXi host.
    """

    def __init__(self, port: int = 443, timeout: float = 5):
        self.port = port
        self.timeout = timeout

    def __call__(self, host: HostSpec) -> bool:
        return check_port(host.mgmt_ip, self.port, self.timeout)
