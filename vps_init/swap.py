"""
SwapManager - Provisions a swap file sized from the swap directive.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig, SwapDirective, host_path
from .errors import ExecutionError, ValidationError
from .profiler import HostProfile
from .results import Status, StepResult
from .utils import CommandRunner, Utils
from .writer import ConfigWriter

logger = logging.getLogger("vps_init.swap")

FSTAB_ENTRY = f"{AppConfig.SWAPFILE} none swap sw 0 0"


class SwapManager:
    """
    Creates and enables /swapfile.

    Args:
        writer: ConfigWriter for the fstab entry
        runner: Command runner for fallocate/mkswap/swapon
        root: Filesystem root the swap file and fstab live beneath
        free_space_mb: Free-space probe (defaults to shutil.disk_usage on root)
    """

    def __init__(
        self,
        writer: Optional[ConfigWriter] = None,
        runner: Optional[Callable] = None,
        root: Path = Path("/"),
        free_space_mb: Optional[Callable[[Path], int]] = None,
    ):
        self.writer = writer or ConfigWriter()
        self.runner = runner or CommandRunner()
        self.root = Path(root)
        self.free_space_mb = free_space_mb or (
            lambda path: shutil.disk_usage(path).free // (1024 * 1024)
        )

    def configure(self, directive: SwapDirective, profile: HostProfile) -> StepResult:
        """
        Provision swap according to the directive.

        Raises:
            ValidationError: If there is not enough free disk space
            ExecutionError: If the swap file cannot be created or enabled
        """
        if directive.disabled:
            return StepResult(Status.SKIPPED, "Swap size set to 0; skipped")
        if profile.swap_total_mb > 0:
            return StepResult(
                Status.SKIPPED,
                f"Swap already present ({Utils.format_size_mb(profile.swap_total_mb)}); skipped",
            )

        size_mb = directive.resolve(profile.total_memory_mb)
        if size_mb <= 0:
            return StepResult(Status.SKIPPED, "Computed swap size is 0; skipped")
        if directive.auto:
            logger.info(f"Automatic swap size: {size_mb}MB")

        required = size_mb + AppConfig.SWAP_DISK_HEADROOM_MB
        available = self.free_space_mb(self.root)
        if available < required:
            raise ValidationError(
                f"Insufficient disk space: need {required}MB, {available}MB available"
            )

        swapfile = host_path(self.root, AppConfig.SWAPFILE)
        self._remove_existing(swapfile)
        self._create(swapfile, size_mb)

        self.runner(["chmod", "600", str(swapfile)])
        self.runner(["mkswap", str(swapfile)])
        self.runner(["swapon", str(swapfile)])

        fstab = host_path(self.root, AppConfig.FSTAB)
        current = Utils.read_text(fstab) or ""
        if AppConfig.SWAPFILE not in current:
            if current and not current.endswith("\n"):
                current += "\n"
            self.writer.write(fstab, current + FSTAB_ENTRY + "\n")

        return StepResult(
            Status.APPLIED, f"{size_mb}MB swap configured", paths=[swapfile, fstab]
        )

    def _remove_existing(self, swapfile: Path) -> None:
        if not swapfile.exists():
            return
        try:
            self.runner(["swapoff", str(swapfile)], check=False)
        except ExecutionError as e:
            logger.debug(f"swapoff failed: {e}")
        self.writer.remove(swapfile)

    def _create(self, swapfile: Path, size_mb: int) -> None:
        try:
            self.runner(["fallocate", "-l", f"{size_mb}M", str(swapfile)])
        except ExecutionError as e:
            logger.info(f"fallocate unavailable ({e}); falling back to dd")
            self.runner(
                [
                    "dd", "if=/dev/zero", f"of={swapfile}",
                    "bs=1M", f"count={size_mb}", "status=none",
                ]
            )
