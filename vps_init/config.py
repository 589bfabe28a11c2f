"""
Configuration for vps_init.

AppConfig holds the fixed constants of the tool (paths, timeouts, defaults).
BootstrapConfig is the immutable run configuration built once by the CLI and
passed explicitly to every step.
"""

import datetime
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError


# ----------------------------------------------------------------
# Configuration & Constants
# ----------------------------------------------------------------
class AppConfig:
    """Global application constants."""

    VERSION: str = "4.1.0"
    APP_NAME: str = "VPS Init"
    APP_SUBTITLE: str = "Debian & Ubuntu LTS Bootstrap Utility"

    # Managed files (absolute host paths; steps resolve them against a root)
    SYSCTL_BBR_CONF: str = "/etc/sysctl.d/99-bbr.conf"
    SYSCTL_LEGACY_CONF: str = "/etc/sysctl.d/99-bbr-optimized.conf"
    RESOLVED_DROPIN: str = "/etc/systemd/resolved.conf.d/99-custom-dns.conf"
    CLOUD_DIR: str = "/etc/cloud"
    CLOUD_DNS_CFG: str = "/etc/cloud/cloud.cfg.d/99-custom-dns.cfg"
    RESOLVCONF_HEAD: str = "/etc/resolvconf/resolv.conf.d/head"
    RESOLV_CONF: str = "/etc/resolv.conf"
    HOSTS_FILE: str = "/etc/hosts"
    FSTAB: str = "/etc/fstab"
    SWAPFILE: str = "/swapfile"
    VIMRC_LOCAL: str = "/etc/vim/vimrc.local"
    ROOT_VIMRC: str = "/root/.vimrc"
    FAIL2BAN_JAIL: str = "/etc/fail2ban/jail.local"
    OS_RELEASE: str = "/etc/os-release"
    ZONEINFO_DIR: str = "/usr/share/zoneinfo"
    LOG_DIR: str = "/var/log"

    # Kernel interfaces
    MEMINFO: str = "/proc/meminfo"
    CONNTRACK_MAX: str = "/proc/sys/net/netfilter/nf_conntrack_max"
    AVAILABLE_CONGESTION: str = "/proc/sys/net/ipv4/tcp_available_congestion_control"

    # Minimum kernel for BBR congestion control
    BBR_MIN_KERNEL: Tuple[int, int] = (4, 9)

    # Operation settings
    COMMAND_TIMEOUT: int = 300  # seconds
    APT_TIMEOUT: int = 3600  # seconds, for apt-get install and upgrade
    SWAP_AUTO_CAP_MB: int = 2048
    SWAP_DISK_HEADROOM_MB: int = 100

    # Defaults exposed on the command line
    DEFAULT_TIMEZONE: str = "Asia/Hong_Kong"
    DEFAULT_SWAP: str = "1024"
    DEFAULT_DNS_V4: Tuple[str, str] = ("1.1.1.1", "8.8.8.8")
    DEFAULT_DNS_V6: Tuple[str, str] = ("2606:4700:4700::1111", "2001:4860:4860::8888")
    DEFAULT_PACKAGES: Tuple[str, ...] = ("sudo", "wget", "zip", "vim")

    # Releases the tool is designed for: distro ID -> VERSION_ID values
    SUPPORTED_RELEASES: Dict[str, Tuple[str, ...]] = {
        "debian": ("10", "11", "12", "13"),
        "ubuntu": ("20.04", "22.04", "24.04"),
    }

    @staticmethod
    def default_log_file() -> str:
        ts = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        return f"{AppConfig.LOG_DIR}/vps-init-{ts}.log"


def host_path(root: Path, absolute: str) -> Path:
    """Resolve an absolute host path beneath an alternate filesystem root."""
    return Path(root) / absolute.lstrip("/")


# ----------------------------------------------------------------
# Run Configuration Values
# ----------------------------------------------------------------
class NetworkMode(str, Enum):
    """Kernel network tuning mode."""

    BASELINE = "baseline"
    OPTIMIZED = "optimized"
    DISABLED = "disabled"


@dataclass(frozen=True)
class SwapDirective:
    """Requested swap size: a fixed size in MB, automatic sizing, or none."""

    size_mb: Optional[int] = None
    auto: bool = False

    @classmethod
    def parse(cls, value: str) -> "SwapDirective":
        """
        Parse a swap directive string.

        Args:
            value: "auto", "0", or a whole number of megabytes

        Returns:
            The parsed directive

        Raises:
            ConfigurationError: If the value is not a recognised directive
        """
        text = str(value).strip().lower()
        if text == "auto":
            return cls(auto=True)
        if re.fullmatch(r"\d+", text):
            return cls(size_mb=int(text))
        raise ConfigurationError(
            f"Invalid swap size '{value}': expected a number of MB, 'auto' or '0'"
        )

    @property
    def disabled(self) -> bool:
        return not self.auto and not self.size_mb

    def resolve(self, total_memory_mb: int) -> int:
        """Swap size in MB for a host with the given memory."""
        if self.auto:
            return min(total_memory_mb, AppConfig.SWAP_AUTO_CAP_MB)
        return self.size_mb or 0

    def __str__(self) -> str:
        return "auto" if self.auto else str(self.size_mb or 0)


@dataclass(frozen=True)
class DNSServers:
    """The four resolver addresses in preference order."""

    primary4: str = AppConfig.DEFAULT_DNS_V4[0]
    secondary4: str = AppConfig.DEFAULT_DNS_V4[1]
    primary6: str = AppConfig.DEFAULT_DNS_V6[0]
    secondary6: str = AppConfig.DEFAULT_DNS_V6[1]

    @property
    def ipv4(self) -> Tuple[str, str]:
        return (self.primary4, self.secondary4)

    @property
    def ipv6(self) -> Tuple[str, str]:
        return (self.primary6, self.secondary6)

    def ordered(self, ipv6_capable: bool) -> List[str]:
        """IPv4 primary, IPv4 secondary, then the IPv6 pair when usable."""
        servers = list(self.ipv4)
        if ipv6_capable:
            servers.extend(self.ipv6)
        return servers


@dataclass(frozen=True)
class BootstrapConfig:
    """Immutable configuration for a single bootstrap run."""

    hostname: Optional[str] = None
    timezone: str = AppConfig.DEFAULT_TIMEZONE
    swap: SwapDirective = field(
        default_factory=lambda: SwapDirective.parse(AppConfig.DEFAULT_SWAP)
    )
    dns: DNSServers = field(default_factory=DNSServers)
    network_mode: NetworkMode = NetworkMode.BASELINE
    packages: Tuple[str, ...] = AppConfig.DEFAULT_PACKAGES
    enable_fail2ban: bool = False
    fail2ban_port: Optional[int] = None
    non_interactive: bool = False
    dry_run: bool = False
    log_file: str = field(default_factory=AppConfig.default_log_file)
    root: Path = Path("/")
