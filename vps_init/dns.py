"""
DNS resolver configuration.

BackendDetector works out which subsystem owns name resolution on the host,
probing in a fixed priority order so that a higher-level owner is never fought
by a lower-level direct file write:

1. systemd-resolved is active      -> SYSTEMD_RESOLVED
2. cloud-init manages resolv.conf  -> CLOUD_INIT
3. resolvconf is installed         -> RESOLVCONF
4. anything else                   -> RAW_FILE

DNSApplier renders and writes the backend-specific configuration. Every backend
lists the addresses in the same order: IPv4 primary, IPv4 secondary, then the
IPv6 pair when the host can reach IPv6.
"""

import logging
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from .config import AppConfig, DNSServers, host_path
from .errors import ExecutionError
from .results import Status, StepResult
from .utils import CommandRunner, Utils
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.dns")


class DNSBackend(str, Enum):
    """Subsystem responsible for the effective resolver configuration."""

    SYSTEMD_RESOLVED = "systemd-resolved"
    CLOUD_INIT = "cloud-init"
    RESOLVCONF = "resolvconf"
    RAW_FILE = "raw-file"


CLOUD_MANAGES_RESOLV = re.compile(r"manage_resolv_conf: *true")


class BackendDetector:
    """
    Probes the host for the active DNS backend. Never raises.

    Args:
        root: Filesystem root for the cloud-init probe
        runner: Command runner for the systemd probe
        which: PATH lookup used for the resolvconf probe
    """

    def __init__(
        self,
        root: Path = Path("/"),
        runner: Optional[Callable] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.root = Path(root)
        self.runner = runner or CommandRunner()
        self.which = which

    def detect(self) -> DNSBackend:
        """Return the highest-priority backend present on the host."""
        if self.resolved_active():
            backend = DNSBackend.SYSTEMD_RESOLVED
        elif self.cloud_init_manages_dns():
            backend = DNSBackend.CLOUD_INIT
        elif self.resolvconf_installed():
            backend = DNSBackend.RESOLVCONF
        else:
            backend = DNSBackend.RAW_FILE
        logger.info(f"Detected DNS backend: {backend.value}")
        return backend

    def resolved_active(self) -> bool:
        try:
            result = self.runner(
                ["systemctl", "is-active", "--quiet", "systemd-resolved"],
                check=False,
                probe=True,
            )
        except ExecutionError as e:
            logger.debug(f"systemd-resolved probe failed: {e}")
            return False
        return result.returncode == 0

    def cloud_init_manages_dns(self) -> bool:
        cloud_dir = host_path(self.root, AppConfig.CLOUD_DIR)
        if not cloud_dir.is_dir():
            return False
        for path in sorted(cloud_dir.rglob("*")):
            if not path.is_file():
                continue
            content = Utils.read_text(path)
            if content and CLOUD_MANAGES_RESOLV.search(content):
                logger.debug(f"cloud-init resolver management declared in {path}")
                return True
        return False

    def resolvconf_installed(self) -> bool:
        return self.which("resolvconf") is not None


# ----------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------
def nameserver_lines(servers: List[str]) -> str:
    return "".join(f"nameserver {address}\n" for address in servers)


def render_resolved(servers: DNSServers, ipv6_capable: bool) -> str:
    fallback = servers.ipv6 if ipv6_capable else servers.ipv4
    return (
        "[Resolve]\n"
        f"DNS={' '.join(servers.ipv4)}\n"
        f"FallbackDNS={' '.join(fallback)}\n"
    )


def render_cloud_init(servers: DNSServers, ipv6_capable: bool) -> str:
    document = {
        "manage_resolv_conf": True,
        "resolv_conf": {"nameservers": servers.ordered(ipv6_capable)},
    }
    return "#cloud-config\n" + yaml.safe_dump(
        document, default_flow_style=False, sort_keys=False
    )


def render_resolvconf_head(existing: str, servers: DNSServers, ipv6_capable: bool) -> str:
    """Drop existing nameserver lines from the head fragment and append ours."""
    kept = [line for line in existing.splitlines() if not line.startswith("nameserver")]
    head = "".join(f"{line}\n" for line in kept)
    return head + nameserver_lines(servers.ordered(ipv6_capable))


# ----------------------------------------------------------------
# DNS Applier
# ----------------------------------------------------------------
class DNSApplier:
    """
    Writes resolver configuration for a detected backend.

    Args:
        writer: ConfigWriter used for every file change
        runner: Command runner for service reloads
        root: Filesystem root the files are written beneath
    """

    def __init__(
        self,
        writer: Optional[ConfigWriter] = None,
        runner: Optional[Callable] = None,
        root: Path = Path("/"),
    ):
        self.writer = writer or ConfigWriter()
        self.runner = runner or CommandRunner()
        self.root = Path(root)
        self._handlers: Dict[DNSBackend, Callable[[DNSServers, bool], StepResult]] = {
            DNSBackend.SYSTEMD_RESOLVED: self._apply_resolved,
            DNSBackend.CLOUD_INIT: self._apply_cloud_init,
            DNSBackend.RESOLVCONF: self._apply_resolvconf,
            DNSBackend.RAW_FILE: self._apply_raw_file,
        }

    def apply(
        self, backend: DNSBackend, servers: DNSServers, ipv6_capable: bool
    ) -> StepResult:
        """
        Configure resolvers through the given backend.

        Args:
            backend: Result of BackendDetector.detect()
            servers: The four resolver addresses
            ipv6_capable: Whether the IPv6 pair should be used

        Returns:
            StepResult describing the change

        Raises:
            WriteError: If the configuration file cannot be written
        """
        if ipv6_capable:
            logger.info("IPv6 connectivity detected; configuring IPv6 resolvers too")
        else:
            logger.info("No IPv6 connectivity; configuring IPv4 resolvers only")
        return self._handlers[backend](servers, ipv6_capable)

    def _apply_resolved(self, servers: DNSServers, ipv6_capable: bool) -> StepResult:
        path = host_path(self.root, AppConfig.RESOLVED_DROPIN)
        result = self.writer.write(path, render_resolved(servers, ipv6_capable))

        warnings = []
        if result.status == Status.APPLIED:
            try:
                self.runner(["systemctl", "restart", "systemd-resolved"])
            except ExecutionError as e:
                logger.warning(f"systemd-resolved restart failed: {e}")
                warnings.append("systemd-resolved restart failed")
            self._flush_caches()

        return StepResult(
            result.status,
            "DNS configured (systemd-resolved)",
            paths=[path],
            warnings=warnings,
        )

    def _flush_caches(self) -> None:
        try:
            self.runner(["resolvectl", "flush-caches"], check=False)
        except ExecutionError as e:
            logger.debug(f"resolvectl flush-caches failed: {e}")

    def _apply_cloud_init(self, servers: DNSServers, ipv6_capable: bool) -> StepResult:
        path = host_path(self.root, AppConfig.CLOUD_DNS_CFG)
        result = self.writer.write(path, render_cloud_init(servers, ipv6_capable))
        return StepResult(
            result.status,
            "DNS configured (cloud-init); takes effect after the next reboot",
            paths=[path],
        )

    def _apply_resolvconf(self, servers: DNSServers, ipv6_capable: bool) -> StepResult:
        path = host_path(self.root, AppConfig.RESOLVCONF_HEAD)
        existing = Utils.read_text(path) or ""
        result = self.writer.write(
            path, render_resolvconf_head(existing, servers, ipv6_capable)
        )

        warnings = []
        if result.status == Status.APPLIED:
            try:
                self.runner(["resolvconf", "-u"])
            except ExecutionError as e:
                logger.warning(f"resolvconf -u failed: {e}")
                warnings.append("resolvconf regeneration failed")

        return StepResult(
            result.status, "DNS configured (resolvconf)", paths=[path], warnings=warnings
        )

    def _apply_raw_file(self, servers: DNSServers, ipv6_capable: bool) -> StepResult:
        path = host_path(self.root, AppConfig.RESOLV_CONF)
        logger.warning(f"No DNS manager detected; overwriting {path} directly")

        try:
            self.runner(["chattr", "-i", str(path)], check=False)
        except ExecutionError as e:
            logger.debug(f"chattr -i failed: {e}")

        result = self.writer.write(path, nameserver_lines(servers.ordered(ipv6_capable)))
        return StepResult(
            result.status,
            "DNS configured (direct overwrite); a DNS manager installed later may replace it",
            paths=[path],
        )
