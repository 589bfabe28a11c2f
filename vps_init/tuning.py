"""
Kernel network tuning.

TierSelector maps host memory to one of four fixed parameter tiers.
NetworkTuner renders the sysctl drop-in for the requested mode and writes it
through ConfigWriter:

- BASELINE:  fq queueing discipline + BBR congestion control
- OPTIMIZED: BBR plus memory-tiered buffers, backlogs and descriptor ceilings
- DISABLED:  remove any drop-in left by a previous run
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import AppConfig, NetworkMode, host_path
from .errors import ExecutionError, UnsupportedKernelError, WriteError
from .profiler import HostProfile
from .results import Status, StepResult
from .utils import CommandRunner, Utils
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.tuning")


@dataclass(frozen=True)
class TierParameters:
    """Kernel network parameters for one memory tier."""

    label: str
    rmem_max: int
    wmem_max: int
    tcp_rmem: Tuple[int, int, int]
    tcp_wmem: Tuple[int, int, int]
    somaxconn: int
    netdev_backlog: int
    file_max: int
    conntrack_max: int

    def numeric_values(self) -> List[int]:
        """Every numeric field flattened, in declaration order."""
        values: List[int] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                values.extend(value)
            elif isinstance(value, int):
                values.append(value)
        return values


class TierSelector:
    """Selects kernel network parameters from total host memory."""

    # (inclusive upper bound in MB, parameters); None means unbounded
    TIERS: Tuple[Tuple[Optional[int], TierParameters], ...] = (
        (
            512,
            TierParameters(
                label="classic (<=512MB)",
                rmem_max=8388608,
                wmem_max=8388608,
                tcp_rmem=(4096, 65536, 8388608),
                tcp_wmem=(4096, 65536, 8388608),
                somaxconn=32768,
                netdev_backlog=16384,
                file_max=262144,
                conntrack_max=131072,
            ),
        ),
        (
            1024,
            TierParameters(
                label="light (512MB-1GB)",
                rmem_max=16777216,
                wmem_max=16777216,
                tcp_rmem=(4096, 65536, 16777216),
                tcp_wmem=(4096, 65536, 16777216),
                somaxconn=49152,
                netdev_backlog=24576,
                file_max=524288,
                conntrack_max=262144,
            ),
        ),
        (
            2048,
            TierParameters(
                label="standard (1GB-2GB)",
                rmem_max=33554432,
                wmem_max=33554432,
                tcp_rmem=(4096, 87380, 33554432),
                tcp_wmem=(4096, 65536, 33554432),
                somaxconn=65535,
                netdev_backlog=32768,
                file_max=1048576,
                conntrack_max=524288,
            ),
        ),
        (
            None,
            TierParameters(
                label="performance (>2GB)",
                rmem_max=67108864,
                wmem_max=67108864,
                tcp_rmem=(4096, 131072, 67108864),
                tcp_wmem=(4096, 87380, 67108864),
                somaxconn=65535,
                netdev_backlog=65535,
                file_max=2097152,
                conntrack_max=1048576,
            ),
        ),
    )

    @classmethod
    def select(cls, total_memory_mb: int) -> TierParameters:
        """Return the first tier whose upper bound covers total_memory_mb."""
        for upper, params in cls.TIERS:
            if upper is None or total_memory_mb <= upper:
                return params
        return cls.TIERS[-1][1]

    @classmethod
    def check_monotonic(cls) -> None:
        """
        Verify each tier's numeric fields are >= the previous tier's.

        Raises:
            ValueError: If a tier shrinks any parameter
        """
        tiers = [params for _, params in cls.TIERS]
        for lower, higher in zip(tiers, tiers[1:]):
            for a, b in zip(lower.numeric_values(), higher.numeric_values()):
                if b < a:
                    raise ValueError(
                        f"Tier '{higher.label}' shrinks a parameter of '{lower.label}'"
                    )


TierSelector.check_monotonic()


# ----------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------
BBR_CORE = (
    "net.core.default_qdisc = fq\n"
    "net.ipv4.tcp_congestion_control = bbr\n"
)


def _triple(values: Tuple[int, int, int]) -> str:
    return " ".join(str(v) for v in values)


def render_baseline() -> str:
    return "# Generated by vps_init (baseline BBR)\n" + BBR_CORE


def render_optimized(tier: TierParameters, profile: HostProfile) -> str:
    """Render the full optimized sysctl block for a tier."""
    lines = [
        "# Generated by vps_init (optimized BBR)",
        f"# Optimized for {profile.total_memory_mb}MB RAM ({tier.label})",
        "",
        "# --- BBR Core ---",
        BBR_CORE.rstrip("\n"),
        "",
        "# --- Buffers ---",
        f"net.core.rmem_max = {tier.rmem_max}",
        f"net.core.wmem_max = {tier.wmem_max}",
        f"net.ipv4.tcp_rmem = {_triple(tier.tcp_rmem)}",
        f"net.ipv4.tcp_wmem = {_triple(tier.tcp_wmem)}",
        "",
        "# --- Backlogs ---",
        f"net.core.somaxconn = {tier.somaxconn}",
        f"net.core.netdev_max_backlog = {tier.netdev_backlog}",
        f"net.ipv4.tcp_max_syn_backlog = {tier.somaxconn}",
        "",
        "# --- Timeouts & Buckets ---",
        "net.ipv4.tcp_fin_timeout = 15",
        "net.ipv4.tcp_max_tw_buckets = 180000",
        "",
        "# --- File Descriptors ---",
        f"fs.file-max = {tier.file_max}",
        f"fs.nr_open = {tier.file_max}",
        "",
        "# --- Misc ---",
        "net.ipv4.tcp_slow_start_after_idle = 0",
        "vm.swappiness = 10",
    ]
    if profile.conntrack_available:
        lines.append(f"net.netfilter.nf_conntrack_max = {tier.conntrack_max}")
    return "\n".join(lines) + "\n"


# ----------------------------------------------------------------
# Network Tuner
# ----------------------------------------------------------------
class NetworkTuner:
    """
    Applies the requested network tuning mode.

    Args:
        writer: ConfigWriter used for every file change
        runner: Command runner for sysctl and modprobe
        root: Filesystem root the drop-ins are written beneath
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
        self.conf_path = host_path(self.root, AppConfig.SYSCTL_BBR_CONF)
        self.legacy_path = host_path(self.root, AppConfig.SYSCTL_LEGACY_CONF)

    def apply(self, mode: NetworkMode, profile: HostProfile) -> StepResult:
        """
        Apply a tuning mode.

        Args:
            mode: BASELINE, OPTIMIZED or DISABLED
            profile: Host facts (ignored by BASELINE and DISABLED)

        Returns:
            StepResult; UNSUPPORTED_KERNEL when OPTIMIZED is refused

        Raises:
            WriteError: If the drop-in cannot be written
        """
        if mode == NetworkMode.DISABLED:
            return self._disable()
        if mode == NetworkMode.BASELINE:
            return self._apply_baseline()
        return self._apply_optimized(profile)

    def _disable(self) -> StepResult:
        warnings = self._remove_stale(self.conf_path, self.legacy_path)
        return StepResult(
            Status.SKIPPED,
            "BBR configuration disabled; tuning drop-ins removed",
            warnings=warnings,
        )

    def _apply_baseline(self) -> StepResult:
        warnings = self._remove_stale(self.legacy_path)
        result = self.writer.write(self.conf_path, render_baseline())

        if result.status == Status.APPLIED:
            warnings.extend(self._reload(["sysctl", "-p", str(self.conf_path)]))

        return StepResult(
            result.status,
            "Standard BBR + FQ enabled",
            paths=[self.conf_path],
            warnings=warnings,
        )

    def _apply_optimized(self, profile: HostProfile) -> StepResult:
        try:
            self.check_kernel(profile)
        except UnsupportedKernelError as e:
            logger.warning(f"{e}; skipping optimization")
            return StepResult(Status.UNSUPPORTED_KERNEL, str(e))

        warnings = self._ensure_bbr_module()
        warnings.extend(self._remove_stale(self.legacy_path))

        tier = TierSelector.select(profile.total_memory_mb)
        logger.info(f"Matched tuning tier: {tier.label}")
        result = self.writer.write(self.conf_path, render_optimized(tier, profile))

        if result.status == Status.APPLIED:
            warnings.extend(self._reload(["sysctl", "--system"]))
        if not profile.conntrack_available:
            logger.info("Connection tracking not present; nf_conntrack_max not set")

        return StepResult(
            result.status,
            f"Dynamic BBR optimization for {profile.total_memory_mb}MB RAM",
            paths=[self.conf_path],
            warnings=warnings,
            detail=tier.label,
        )

    @staticmethod
    def check_kernel(profile: HostProfile) -> None:
        """
        Raises:
            UnsupportedKernelError: If the kernel predates BBR support
        """
        minimum = AppConfig.BBR_MIN_KERNEL
        if profile.kernel_version < minimum:
            release = profile.kernel_release or "{}.{}".format(*profile.kernel_version)
            raise UnsupportedKernelError(release, "{}.{}".format(*minimum))

    def _ensure_bbr_module(self) -> List[str]:
        available = Utils.read_text(host_path(self.root, AppConfig.AVAILABLE_CONGESTION))
        if available and "bbr" in available.split():
            return []

        logger.warning("BBR module not loaded, attempting to load tcp_bbr")
        try:
            self.runner(["modprobe", "tcp_bbr"])
        except ExecutionError as e:
            logger.warning(f"Unable to load BBR module: {e}")
            return ["tcp_bbr module could not be loaded"]
        return []

    def _remove_stale(self, *paths: Path) -> List[str]:
        warnings = []
        for path in paths:
            try:
                self.writer.remove(path)
            except WriteError as e:
                logger.warning(str(e))
                warnings.append(str(e))
        return warnings

    def _reload(self, cmd: List[str]) -> List[str]:
        try:
            self.runner(cmd)
        except ExecutionError as e:
            logger.warning(f"Failed to load sysctl settings: {e}")
            return [f"'{' '.join(cmd)}' failed"]
        return []
