"""
Command-line entry point for vps_init.
"""

import ipaddress
import re
import signal
import sys
from typing import Optional, Tuple

import click
from rich.prompt import Prompt

from .bootstrap import VPSBootstrap
from .config import AppConfig, BootstrapConfig, DNSServers, NetworkMode, SwapDirective
from .console import console, logger, print_error, print_warning, setup_logging
from .errors import ConfigurationError


def parse_dns_pair(value: Optional[str], version: int, default: Tuple[str, str]) -> Tuple[str, str]:
    """
    Parse a "PRIMARY SECONDARY" resolver pair.

    Raises:
        ConfigurationError: If the pair is incomplete or not of the given IP version
    """
    if not value:
        return default
    parts = value.split()
    if len(parts) != 2:
        raise ConfigurationError(
            f"Expected two IPv{version} addresses separated by a space, got '{value}'"
        )
    for address in parts:
        try:
            parsed = ipaddress.ip_address(address)
        except ValueError as e:
            raise ConfigurationError(f"Invalid DNS address '{address}': {e}") from e
        if parsed.version != version:
            raise ConfigurationError(f"'{address}' is not an IPv{version} address")
    return parts[0], parts[1]


def parse_packages(value: Optional[str]) -> Tuple[str, ...]:
    if value is None:
        return AppConfig.DEFAULT_PACKAGES
    return tuple(p for p in re.split(r"[\s,]+", value) if p)


def network_mode(bbr_optimized: bool, no_bbr: bool) -> NetworkMode:
    if bbr_optimized and no_bbr:
        raise ConfigurationError("--bbr-optimized and --no-bbr are mutually exclusive")
    if no_bbr:
        return NetworkMode.DISABLED
    if bbr_optimized:
        return NetworkMode.OPTIMIZED
    return NetworkMode.BASELINE


def build_config(
    hostname: Optional[str] = None,
    timezone: str = AppConfig.DEFAULT_TIMEZONE,
    swap: str = AppConfig.DEFAULT_SWAP,
    ip_dns: Optional[str] = None,
    ip6_dns: Optional[str] = None,
    bbr_optimized: bool = False,
    no_bbr: bool = False,
    fail2ban: bool = False,
    fail2ban_port: Optional[int] = None,
    packages: Optional[str] = None,
    non_interactive: bool = False,
    dry_run: bool = False,
    log_file: Optional[str] = None,
) -> BootstrapConfig:
    """
    Build the immutable run configuration from raw option values.

    Raises:
        ConfigurationError: If any value is invalid
    """
    primary4, secondary4 = parse_dns_pair(ip_dns, 4, AppConfig.DEFAULT_DNS_V4)
    primary6, secondary6 = parse_dns_pair(ip6_dns, 6, AppConfig.DEFAULT_DNS_V6)

    return BootstrapConfig(
        hostname=hostname or None,
        timezone=timezone,
        swap=SwapDirective.parse(swap),
        dns=DNSServers(primary4, secondary4, primary6, secondary6),
        network_mode=network_mode(bbr_optimized, no_bbr),
        packages=parse_packages(packages),
        enable_fail2ban=fail2ban or fail2ban_port is not None,
        fail2ban_port=fail2ban_port,
        non_interactive=non_interactive,
        dry_run=dry_run,
        log_file=log_file or AppConfig.default_log_file(),
    )


def signal_handler(signum, frame) -> None:
    sig_name = signal.Signals(signum).name
    console.print()
    print_warning(f"Process interrupted by {sig_name}")
    sys.exit(128 + signum)


# ----------------------------------------------------------------
# Main CLI Entry Point with Click
# ----------------------------------------------------------------
@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=AppConfig.VERSION, prog_name="vps-init")
@click.option("--hostname", help="New hostname (prompted for unless non-interactive)")
@click.option("--timezone", default=AppConfig.DEFAULT_TIMEZONE, show_default=True,
              help="Timezone name from /usr/share/zoneinfo")
@click.option("--swap", default=AppConfig.DEFAULT_SWAP, show_default=True,
              help="Swap size in MB, 'auto', or 0 to skip")
@click.option("--ip-dns", help='IPv4 resolvers as "PRIMARY SECONDARY"')
@click.option("--ip6-dns", help='IPv6 resolvers as "PRIMARY SECONDARY"')
@click.option("--bbr-optimized", is_flag=True, help="Apply memory-tiered BBR tuning")
@click.option("--no-bbr", is_flag=True, help="Remove BBR tuning instead of applying it")
@click.option("--fail2ban", is_flag=True, help="Install fail2ban for SSH")
@click.option("--fail2ban-port", type=int, help="Extra SSH port for the fail2ban jail")
@click.option("--packages", help='Packages to install (default "sudo wget zip vim")')
@click.option("--non-interactive", is_flag=True, help="Run without prompts")
@click.option("--dry-run", is_flag=True, help="Show changes without applying them")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", help="Log file path (default /var/log/vps-init-<timestamp>.log)")
def main(
    hostname: Optional[str],
    timezone: str,
    swap: str,
    ip_dns: Optional[str],
    ip6_dns: Optional[str],
    bbr_optimized: bool,
    no_bbr: bool,
    fail2ban: bool,
    fail2ban_port: Optional[int],
    packages: Optional[str],
    non_interactive: bool,
    dry_run: bool,
    debug: bool,
    log_file: Optional[str],
) -> None:
    """Bootstrap a fresh Debian or Ubuntu VPS."""
    signal.signal(signal.SIGTERM, signal_handler)

    if hostname is None and not non_interactive:
        hostname = Prompt.ask("New hostname (leave empty to keep the current one)", default="")

    try:
        config = build_config(
            hostname=hostname,
            timezone=timezone,
            swap=swap,
            ip_dns=ip_dns,
            ip6_dns=ip6_dns,
            bbr_optimized=bbr_optimized,
            no_bbr=no_bbr,
            fail2ban=fail2ban,
            fail2ban_port=fail2ban_port,
            packages=packages,
            non_interactive=non_interactive,
            dry_run=dry_run,
            log_file=log_file,
        )
    except ConfigurationError as e:
        raise click.BadParameter(str(e)) from e

    try:
        setup_logging(config.log_file, debug=debug)
    except OSError as e:
        print_error(f"Could not open log file {config.log_file}: {e}")
        sys.exit(1)

    try:
        sys.exit(VPSBootstrap(config).run())
    except KeyboardInterrupt:
        print_warning("Process interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.exception("Unexpected error")
        print_error(f"Unexpected error: {e}")
        sys.exit(1)
