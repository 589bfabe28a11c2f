"""
VPSBootstrap - runs every setup step in order and reports the outcome.

Each step is wrapped by run_step, which shows a spinner, records the step in the
ordered status table and applies the error severity policy:

- FATAL errors abort the remaining sequence
- DEGRADED errors are reported and the run continues
- steps returning warnings are reported as degraded
"""

import datetime
import logging
import shutil
import socket
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.prompt import Confirm
from rich.style import Style
from rich.text import Text

from .config import AppConfig, BootstrapConfig, NetworkMode
from .console import (
    NordColors,
    console,
    create_header,
    print_error,
    print_message,
    print_section,
    print_step,
    print_success,
    print_warning,
    status_report,
    summary_table,
)
from .dns import BackendDetector, DNSApplier
from .errors import ConfigurationError, ExecutionError, SetupError, WriteError
from .profiler import HostProfile, HostProfiler
from .results import Status, StepResult
from .security import SecurityHardener, ssh_port_list
from .swap import SwapManager
from .system import IdentityManager, PreflightChecker, SystemUpdater
from .tuning import NetworkTuner
from .utils import CommandRunner, Utils
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.bootstrap")

STEPS = (
    ("preflight", "Preflight checks"),
    ("hostname", "Hostname"),
    ("timezone", "Timezone"),
    ("network", "Network tuning"),
    ("swap", "Swap"),
    ("dns", "DNS"),
    ("packages", "Packages"),
    ("vim", "Vim"),
    ("fail2ban", "Fail2ban"),
    ("update", "System update"),
)


class VPSBootstrap:
    """
    Main orchestration class for a bootstrap run.

    Args:
        config: Immutable run configuration
        runner: Command runner shared by every step
        writer: ConfigWriter shared by every step
        which: PATH lookup for optional tools
        preflight: Preflight checker (built from the profiler by default)
        profiler: Host profiler
        confirm: Yes/no prompt used in interactive runs
        current_hostname: Source of the hostname before the run
        free_space_mb: Free-space probe handed to SwapManager
    """

    def __init__(
        self,
        config: BootstrapConfig,
        runner: Optional[Callable] = None,
        writer: Optional[ConfigWriter] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        preflight: Optional[PreflightChecker] = None,
        profiler: Optional[HostProfiler] = None,
        confirm: Callable[..., bool] = Confirm.ask,
        current_hostname: Callable[[], str] = socket.gethostname,
        free_space_mb: Optional[Callable] = None,
    ) -> None:
        self.config = config
        self.runner = runner or CommandRunner(dry_run=config.dry_run)
        self.writer = writer or ConfigWriter(dry_run=config.dry_run)
        self.which = which
        self.confirm = confirm
        self.current_hostname = current_hostname
        self.start_time = time.time()

        root = config.root
        self.profiler = profiler or HostProfiler(root=root, runner=self.runner)
        self.preflight = preflight or PreflightChecker(self.profiler)
        self.identity = IdentityManager(self.writer, self.runner, root)
        self.tuner = NetworkTuner(self.writer, self.runner, root)
        self.swap = SwapManager(self.writer, self.runner, root, free_space_mb)
        self.detector = BackendDetector(root, self.runner, which)
        self.dns = DNSApplier(self.writer, self.runner, root)
        self.updater = SystemUpdater(self.writer, self.runner, root, which)
        self.security = SecurityHardener(self.writer, self.runner, root)

        self.status: Dict[str, Dict[str, str]] = OrderedDict(
            (key, {"status": "pending", "message": "Not started"}) for key, _ in STEPS
        )
        self.profile: Optional[HostProfile] = None

    # ----------------------------------------------------------------
    # Step execution
    # ----------------------------------------------------------------
    def record(self, name: str, status: str, message: str) -> None:
        self.status[name] = {"status": status, "message": message}

    def run_step(
        self,
        name: str,
        desc: str,
        func: Callable[..., Any],
        *args: Any,
        load_bearing: bool = False,
    ) -> Optional[StepResult]:
        """
        Run one step with a spinner and record its outcome.

        Args:
            name: Key in the status table
            desc: Description shown while the step runs
            func: Step callable, normally returning a StepResult
            *args: Arguments passed to func
            load_bearing: Escalate write failures to fatal

        Returns:
            The step's result, or None if it raised a non-fatal error

        Raises:
            SetupError: If the step failed fatally
        """
        start = time.time()
        progress = Progress(
            SpinnerColumn(spinner_name="dots", style=f"bold {NordColors.FROST_1}"),
            TextColumn(f"[bold {NordColors.FROST_2}]{{task.description}}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )

        try:
            with progress:
                progress.add_task(desc, total=None)
                result = func(*args)
        except SetupError as e:
            if load_bearing and isinstance(e, WriteError):
                e.escalate()
            elapsed = time.time() - start
            self.record(name, "failed", str(e))
            if e.is_fatal:
                print_error(f"{desc} failed in {elapsed:.2f}s: {e}")
                raise
            print_warning(f"{desc} failed in {elapsed:.2f}s: {e}")
            return None

        elapsed = time.time() - start
        if not isinstance(result, StepResult):
            self.record(name, "success", f"{desc} succeeded in {elapsed:.2f}s")
            print_success(f"{desc} completed in {elapsed:.2f}s")
            return result

        message = result.message or desc
        if result.status == Status.SKIPPED and not result.degraded:
            self.record(name, "skipped", message)
            print_message(message, NordColors.POLAR_NIGHT_4, "–")
        elif result.degraded:
            details = "; ".join(result.warnings)
            self.record(name, "degraded", f"{message} ({details})" if details else message)
            print_warning(f"{desc}: {message}")
            for warning in result.warnings:
                logger.warning(f"{desc}: {warning}")
        else:
            suffix = " (already up to date)" if result.status == Status.UNCHANGED else ""
            self.record(name, "success", message + suffix)
            print_success(f"{message}{suffix} [{elapsed:.2f}s]")
        return result

    # ----------------------------------------------------------------
    # Phases
    # ----------------------------------------------------------------
    def check_preflight(self) -> StepResult:
        """
        Raises:
            InsufficientPrivilegeError: If not running as root
        """
        self.preflight.check_root()
        supported, pretty = self.preflight.check_os_version()
        if supported:
            return StepResult(Status.APPLIED, f"Running as root on {pretty}")
        return StepResult(
            Status.APPLIED,
            f"Running as root on {pretty}",
            warnings=[f"{pretty} is not a tested release"],
        )

    def confirm_release(self, result: Optional[StepResult]) -> None:
        """
        Raises:
            ConfigurationError: If the user declines to continue on an
                unsupported release
        """
        if result is None or not result.warnings:
            return
        if self.config.non_interactive:
            logger.warning("Non-interactive run; continuing on an untested release")
            return
        if not self.confirm("Continue anyway?", default=False):
            self.record("preflight", "failed", "Cancelled on an untested release")
            raise ConfigurationError(result.warnings[0] + "; setup cancelled")

    def configure_network(self) -> StepResult:
        return self.tuner.apply(self.config.network_mode, self.profile)

    def configure_swap(self) -> StepResult:
        return self.swap.configure(self.config.swap, self.profile)

    def configure_dns(self) -> StepResult:
        backend = self.detector.detect()
        return self.dns.apply(backend, self.config.dns, self.profile.ipv6_capable)

    def configure_fail2ban(self) -> StepResult:
        if not self.config.enable_fail2ban:
            return StepResult(Status.SKIPPED, "Fail2ban not requested")
        return self.security.configure_fail2ban(self.config.fail2ban_port)

    def run(self) -> int:
        """
        Run the complete bootstrap sequence.

        Returns:
            int: Exit code (0 for success, 1 for a fatal failure)
        """
        now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        console.print(create_header())
        print_step(f"Starting VPS bootstrap at {now}")
        if self.config.dry_run:
            print_warning("Dry run: no files or system settings will be changed")

        try:
            self.run_sequence()
        except SetupError as e:
            logger.error(f"Fatal error, aborting: {e}")
            status_report(self.status, "Bootstrap Status")
            print_error(f"Setup aborted: {e}")
            print_message(f"Log file: {self.config.log_file}", NordColors.FROST_2)
            return 1

        status_report(self.status, "Bootstrap Status")
        self.print_summary()
        self.offer_reboot()
        return 0

    def run_sequence(self) -> None:
        """Run every step in order; a fatal SetupError propagates."""
        cfg = self.config

        print_section("Preflight")
        self.confirm_release(
            self.run_step("preflight", "Preflight checks", self.check_preflight)
        )
        self.profile = self.profiler.profile()
        print_step(
            f"Memory {self.profile.total_memory_mb}MB, kernel {self.profile.kernel_release}, "
            f"IPv6 {'yes' if self.profile.ipv6_capable else 'no'}"
        )

        print_section("Identity")
        self.run_step(
            "hostname",
            "Configuring hostname",
            self.identity.configure_hostname,
            cfg.hostname,
            self.current_hostname(),
        )
        self.run_step(
            "timezone", "Setting timezone", self.identity.configure_timezone, cfg.timezone
        )

        print_section("Kernel & Memory")
        self.run_step("network", "Configuring network tuning", self.configure_network)
        self.run_step("swap", "Configuring swap", self.configure_swap)

        print_section("DNS")
        self.run_step("dns", "Configuring DNS", self.configure_dns, load_bearing=True)

        print_section("Packages")
        self.run_step(
            "packages", "Installing packages", self.updater.install_packages, cfg.packages
        )
        self.run_step("vim", "Configuring vim", self.updater.configure_vim)
        self.run_step("fail2ban", "Configuring fail2ban", self.configure_fail2ban)
        self.run_step("update", "Upgrading system", self.updater.update_and_cleanup)

    # ----------------------------------------------------------------
    # Summary & reboot
    # ----------------------------------------------------------------
    def probe(self, cmd) -> str:
        try:
            result = self.runner(cmd, check=False, probe=True)
        except ExecutionError as e:
            logger.debug(f"Probe failed: {e}")
            return "unknown"
        return (result.stdout or "").strip() or "unknown"

    def summary_rows(self):
        cfg = self.config
        swap_mb = self.profiler.meminfo().get("SwapTotal", 0) // 1024
        if cfg.enable_fail2ban and self.status["fail2ban"]["status"] != "failed":
            fail2ban = ssh_port_list(cfg.fail2ban_port)
        else:
            fail2ban = "not configured"
        minutes, seconds = divmod(time.time() - self.start_time, 60)
        return [
            ("Hostname", self.current_hostname()),
            ("Timezone", self.probe(["timedatectl", "show", "--property=Timezone", "--value"])),
            (
                "Congestion control",
                self.probe(["sysctl", "-n", "net.ipv4.tcp_congestion_control"]),
            ),
            ("Network mode", cfg.network_mode.value),
            ("Swap", Utils.format_size_mb(swap_mb) if swap_mb else "none"),
            ("Fail2ban ports", fail2ban),
            ("Elapsed", f"{int(minutes)}m {int(seconds)}s"),
            ("Log file", cfg.log_file),
        ]

    def print_summary(self) -> None:
        print_section("Summary")
        summary_table(self.summary_rows(), title="System Summary")

        degraded = [k for k, v in self.status.items() if v["status"] in ("degraded", "failed")]
        if degraded:
            text = (
                f"[bold {NordColors.YELLOW}]Completed with issues in: "
                f"{', '.join(degraded)}[/]\nCheck the log for details."
            )
        else:
            text = f"[bold {NordColors.GREEN}]✓ System is ready for use![/]"
        if self.config.network_mode == NetworkMode.OPTIMIZED and self.status["network"][
            "status"
        ] == "degraded":
            text += "\nNetwork optimization was not applied; the kernel defaults remain."
        console.print(
            Panel(
                Text.from_markup(text),
                border_style=Style(color=NordColors.FROST_1),
                padding=(1, 2),
                title=f"[bold {NordColors.SNOW_STORM_2}]{AppConfig.APP_NAME}[/]",
            )
        )

    def offer_reboot(self) -> None:
        """Reboot to apply kernel and DNS changes (asks unless non-interactive)."""
        if self.config.dry_run:
            print_message("Dry run: reboot skipped", NordColors.FROST_2)
            return
        if not self.config.non_interactive and not self.confirm(
            "Reboot now to apply all changes?", default=True
        ):
            print_warning("Reboot skipped; some changes take effect after a reboot")
            return

        print_step("Rebooting now...")
        try:
            self.runner(["reboot"])
        except ExecutionError as e:
            print_error(f"Reboot failed: {e}")
