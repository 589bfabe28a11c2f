"""
SecurityHardener - Installs a fail2ban policy protecting SSH.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig, host_path
from .errors import ValidationError
from .results import StepResult
from .utils import CommandRunner
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.security")

DEFAULT_SSH_PORT = 22


def ssh_port_list(extra_port: Optional[int]) -> str:
    """
    Ports the sshd jail watches: 22 plus an optional extra port.

    Raises:
        ValidationError: If extra_port is outside 1-65535
    """
    if extra_port is None:
        return str(DEFAULT_SSH_PORT)
    if not 1 <= extra_port <= 65535:
        raise ValidationError(f"Invalid fail2ban port '{extra_port}'")
    if extra_port == DEFAULT_SSH_PORT:
        return str(DEFAULT_SSH_PORT)
    return f"{DEFAULT_SSH_PORT},{extra_port}"


def render_jail(port_list: str) -> str:
    return (
        "[DEFAULT]\n"
        "bantime = -1\n"
        "findtime = 300\n"
        "maxretry = 3\n"
        "banaction = iptables-allports\n"
        "action = %(action_mwl)s\n"
        "\n"
        "[sshd]\n"
        "enabled = true\n"
        f"port = {port_list}\n"
        "backend = systemd\n"
        "ignoreip = 127.0.0.1/8\n"
    )


class SecurityHardener:
    """Configures fail2ban for SSH."""

    def __init__(
        self,
        writer: Optional[ConfigWriter] = None,
        runner: Optional[Callable] = None,
        root: Path = Path("/"),
    ):
        self.writer = writer or ConfigWriter()
        self.runner = runner or CommandRunner()
        self.root = Path(root)

    def configure_fail2ban(self, extra_port: Optional[int] = None) -> StepResult:
        """
        Install fail2ban and write jail.local.

        Raises:
            ValidationError: If the extra port is invalid
            ExecutionError: If installation or the service restart fails
            WriteError: If jail.local cannot be written
        """
        ports = ssh_port_list(extra_port)
        logger.info(f"Protecting SSH ports: {ports}")

        self.runner(
            ["apt-get", "install", "-y", "fail2ban"],
            env={"DEBIAN_FRONTEND": "noninteractive"},
            timeout=AppConfig.APT_TIMEOUT,
        )

        jail = host_path(self.root, AppConfig.FAIL2BAN_JAIL)
        result = self.writer.write(jail, render_jail(ports))

        self.runner(["systemctl", "enable", "fail2ban"])
        self.runner(["systemctl", "restart", "fail2ban"])

        return StepResult(result.status, f"Fail2ban protecting ports {ports}", paths=[jail])
