"""
Host identity, preflight and package steps.

These are thin wrappers around OS commands; file edits still go through
ConfigWriter so they are backed up and idempotent.
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .config import AppConfig, host_path
from .errors import ExecutionError, InsufficientPrivilegeError, ValidationError
from .profiler import HostProfiler
from .results import Status, StepResult
from .utils import CommandRunner, Utils
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.system")

HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]$|^[a-zA-Z0-9]$")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

VIMRC_LOCAL = """\
syntax on
set nocompatible
set backspace=indent,eol,start
set ruler
set showcmd
set hlsearch
set incsearch
set autoindent
set tabstop=4
set shiftwidth=4
set expandtab
set encoding=utf-8
set mouse=a
set nobackup
set noswapfile
"""


# ----------------------------------------------------------------
# Preflight & Environment Checkers
# ----------------------------------------------------------------
class PreflightChecker:
    """Preflight checks to ensure the system is ready for setup."""

    def __init__(
        self,
        profiler: Optional[HostProfiler] = None,
        geteuid: Callable[[], int] = os.geteuid,
    ):
        self.profiler = profiler or HostProfiler()
        self.geteuid = geteuid

    def check_root(self) -> None:
        """
        Raises:
            InsufficientPrivilegeError: If not running as root
        """
        if self.geteuid() != 0:
            raise InsufficientPrivilegeError(
                "This script must be run with root privileges (try: sudo vps-init)"
            )
        logger.info("Root privileges confirmed")

    def check_os_version(self) -> Tuple[bool, str]:
        """
        Check /etc/os-release against the supported Debian and Ubuntu releases.

        Returns:
            (supported, pretty name of the running OS)
        """
        info = self.profiler.os_release()
        distro = info.get("ID", "").lower()
        version = info.get("VERSION_ID", "")
        pretty = info.get("PRETTY_NAME", f"{distro} {version}".strip() or "unknown")

        supported = version in AppConfig.SUPPORTED_RELEASES.get(distro, ())
        if supported:
            logger.info(f"Detected supported OS: {pretty}")
        else:
            logger.warning(f"Unsupported OS release: {pretty}")
        return supported, pretty


# ----------------------------------------------------------------
# Hostname & Timezone
# ----------------------------------------------------------------
def validate_hostname(name: str) -> bool:
    return bool(HOSTNAME_PATTERN.match(name or ""))


def render_hosts(existing: str, hostname: str) -> str:
    """Point the 127.0.1.1 entry of an /etc/hosts file at hostname."""
    if re.search(rf"^127\.0\.1\.1\s+{re.escape(hostname)}(\s|$)", existing, re.MULTILINE):
        return existing
    entry = f"127.0.1.1\t{hostname}"
    if re.search(r"^127\.0\.1\.1", existing, re.MULTILINE):
        return re.sub(r"^127\.0\.1\.1.*$", entry, existing, flags=re.MULTILINE)
    if existing and not existing.endswith("\n"):
        existing += "\n"
    return existing + entry + "\n"


class IdentityManager:
    """Sets the hostname and timezone."""

    def __init__(
        self,
        writer: Optional[ConfigWriter] = None,
        runner: Optional[Callable] = None,
        root: Path = Path("/"),
    ):
        self.writer = writer or ConfigWriter()
        self.runner = runner or CommandRunner()
        self.root = Path(root)

    def configure_hostname(self, new_hostname: Optional[str], current: str) -> StepResult:
        """
        Apply a new hostname (if given) and keep /etc/hosts consistent.

        Raises:
            ValidationError: If new_hostname is malformed
            WriteError: If /etc/hosts cannot be written
        """
        final = current
        if new_hostname:
            if not validate_hostname(new_hostname):
                raise ValidationError(
                    f"Hostname '{new_hostname}' is invalid; keeping '{current}'"
                )
            self.runner(["hostnamectl", "set-hostname", new_hostname])
            final = new_hostname

        hosts = host_path(self.root, AppConfig.HOSTS_FILE)
        result = self.writer.write(hosts, render_hosts(Utils.read_text(hosts) or "", final))

        status = Status.APPLIED if new_hostname else result.status
        return StepResult(status, f"Hostname set to {final}", paths=[hosts])

    def configure_timezone(self, tz: str) -> StepResult:
        """
        Raises:
            ValidationError: If the timezone is unknown
            ExecutionError: If timedatectl fails
        """
        tz_file = host_path(self.root, f"{AppConfig.ZONEINFO_DIR}/{tz}")
        if not tz_file.is_file():
            raise ValidationError(f"Timezone file {tz_file} not found")

        self.runner(["timedatectl", "set-timezone", tz])
        return StepResult(Status.APPLIED, f"Timezone set to {tz}")


# ----------------------------------------------------------------
# Packages
# ----------------------------------------------------------------
class SystemUpdater:
    """Installs baseline tooling and upgrades the system with apt."""

    def __init__(
        self,
        writer: Optional[ConfigWriter] = None,
        runner: Optional[Callable] = None,
        root: Path = Path("/"),
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.writer = writer or ConfigWriter()
        self.runner = runner or CommandRunner()
        self.root = Path(root)
        self.which = which

    def install_packages(self, packages: Sequence[str]) -> StepResult:
        """
        Refresh package lists and install packages.

        Raises:
            ExecutionError: If the package lists cannot be updated
        """
        self.runner(["apt-get", "update", "-qq"], env=APT_ENV)

        warnings: List[str] = []
        if packages:
            try:
                self.runner(
                    ["apt-get", "install", "-y", *packages],
                    env=APT_ENV,
                    timeout=AppConfig.APT_TIMEOUT,
                )
            except ExecutionError as e:
                logger.warning(f"Some packages failed to install: {e}")
                warnings.append("some packages failed to install")

        return StepResult(
            Status.APPLIED, f"Installed: {' '.join(packages) or 'nothing'}", warnings=warnings
        )

    def configure_vim(self) -> StepResult:
        """Write vimrc.local and source it from root's .vimrc."""
        if self.which("vim") is None:
            return StepResult(Status.SKIPPED, "vim not installed")

        vimrc = host_path(self.root, AppConfig.VIMRC_LOCAL)
        result = self.writer.write(vimrc, VIMRC_LOCAL)

        root_vimrc = host_path(self.root, AppConfig.ROOT_VIMRC)
        source_line = f"source {AppConfig.VIMRC_LOCAL}"
        current = Utils.read_text(root_vimrc) or ""
        if source_line not in current:
            if current and not current.endswith("\n"):
                current += "\n"
            self.writer.write(root_vimrc, current + source_line + "\n")

        return StepResult(result.status, "Vim configured", paths=[vimrc, root_vimrc])

    def update_and_cleanup(self) -> StepResult:
        """Full upgrade keeping existing config files, then purge and clean."""
        steps = [
            (
                [
                    "apt-get", "full-upgrade", "-y",
                    "-o", "Dpkg::Options::=--force-confold",
                ],
                "system upgrade reported errors",
                AppConfig.APT_TIMEOUT,
            ),
            (["apt-get", "autoremove", "--purge", "-y"], "autoremove failed", None),
            (["apt-get", "clean"], "apt cache clean failed", None),
        ]

        warnings: List[str] = []
        for cmd, failure, timeout in steps:
            try:
                self.runner(cmd, env=APT_ENV, timeout=timeout)
            except ExecutionError as e:
                logger.warning(f"{failure}: {e}")
                warnings.append(failure)

        return StepResult(Status.APPLIED, "System updated and cleaned", warnings=warnings)
