"""
HostProfiler - Reads host facts once at the start of a run.

Uses /proc and standard OS tools; every probe is read-only.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .config import AppConfig, host_path
from .errors import ExecutionError
from .utils import CommandRunner, Utils

logger = logging.getLogger("vps_init.profiler")


@dataclass(frozen=True)
class HostProfile:
    """Immutable snapshot of the host facts the tuning steps depend on."""

    total_memory_mb: int
    ipv6_capable: bool
    kernel_major: int
    kernel_minor: int
    kernel_release: str = ""
    cpu_cores: int = 1
    swap_total_mb: int = 0
    conntrack_available: bool = False

    @property
    def kernel_version(self) -> Tuple[int, int]:
        return (self.kernel_major, self.kernel_minor)


def parse_kernel_release(release: str) -> Tuple[int, int]:
    """
    Extract (major, minor) from a kernel release string such as 5.15.0-91-generic.

    Returns (0, 0) when the string cannot be parsed, which fails every
    minimum-version check.
    """
    match = re.match(r"\s*(\d+)\.(\d+)", release or "")
    if not match:
        return (0, 0)
    return (int(match.group(1)), int(match.group(2)))


class HostProfiler:
    """
    Gathers memory, IPv6 reachability, kernel version and subsystem presence.

    Args:
        root: Filesystem root the kernel interfaces are read from
        runner: Command runner used for the IPv6 probes
        kernel_release: Override for the running kernel release
    """

    def __init__(
        self,
        root: Path = Path("/"),
        runner: Optional[Callable] = None,
        kernel_release: Optional[str] = None,
    ):
        self.root = Path(root)
        self.runner = runner or CommandRunner()
        self._kernel_release = kernel_release

    def profile(self) -> HostProfile:
        """Perform the full host scan."""
        meminfo = self.meminfo()
        release = self._kernel_release or os.uname().release
        major, minor = parse_kernel_release(release)

        profile = HostProfile(
            total_memory_mb=meminfo.get("MemTotal", 0) // 1024,
            swap_total_mb=meminfo.get("SwapTotal", 0) // 1024,
            ipv6_capable=self.has_ipv6(),
            kernel_major=major,
            kernel_minor=minor,
            kernel_release=release,
            cpu_cores=os.cpu_count() or 1,
            conntrack_available=host_path(self.root, AppConfig.CONNTRACK_MAX).exists(),
        )
        logger.info(
            f"Host profile: {profile.total_memory_mb}MB RAM, {profile.cpu_cores} cores, "
            f"kernel {release}, ipv6={profile.ipv6_capable}, "
            f"conntrack={profile.conntrack_available}"
        )
        return profile

    def meminfo(self) -> Dict[str, int]:
        """Parse /proc/meminfo into kB values."""
        values: Dict[str, int] = {}
        content = Utils.read_text(host_path(self.root, AppConfig.MEMINFO))
        if not content:
            logger.warning("Could not read meminfo; assuming 0MB of memory")
            return values

        for match in re.finditer(r"^(\w+):\s*(\d+)\s*kB", content, re.MULTILINE):
            values[match.group(1)] = int(match.group(2))
        return values

    def has_ipv6(self) -> bool:
        """True if the host has a default IPv6 route or a global IPv6 address."""
        try:
            route = self.runner(["ip", "-6", "route", "show", "default"], check=False, probe=True)
            if "default" in (route.stdout or ""):
                return True
            addr = self.runner(["ip", "-6", "addr", "show"], check=False, probe=True)
            return bool(re.search(r"inet6.*scope global", addr.stdout or ""))
        except ExecutionError as e:
            logger.debug(f"IPv6 probe failed: {e}")
            return False

    def os_release(self) -> Dict[str, str]:
        """Parse /etc/os-release into a dict (empty if missing)."""
        info: Dict[str, str] = {}
        content = Utils.read_text(host_path(self.root, AppConfig.OS_RELEASE))
        if not content:
            return info
        for line in content.splitlines():
            if "=" not in line or line.lstrip().startswith("#"):
                continue
            key, _, value = line.partition("=")
            info[key.strip()] = value.strip().strip('"').strip("'")
        return info
