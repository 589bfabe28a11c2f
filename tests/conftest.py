"""Shared fixtures: a recording command runner and a scratch host root."""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from vps_init.config import host_path
from vps_init.errors import ExecutionError
from vps_init.profiler import HostProfile
from vps_init.writer import ConfigWriter


class FakeRunner:
    """Records commands instead of running them.

    Every command succeeds with empty output unless a response or failure
    has been registered for its exact argument list.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.responses: Dict[Tuple[str, ...], Tuple[int, str]] = {}
        self.failures: Set[Tuple[str, ...]] = set()
        self.timeouts: Dict[Tuple[str, ...], Optional[int]] = {}

    def respond(self, cmd: List[str], returncode: int = 0, stdout: str = "") -> None:
        self.responses[tuple(cmd)] = (returncode, stdout)

    def fail(self, cmd: List[str]) -> None:
        self.failures.add(tuple(cmd))

    def __call__(self, cmd, check=True, probe=False, env=None, timeout=None):
        self.calls.append(list(cmd))
        key = tuple(cmd)
        self.timeouts[key] = timeout
        if key in self.failures:
            raise ExecutionError(f"Command failed: {' '.join(cmd)}")
        returncode, stdout = self.responses.get(key, (0, ""))
        if check and returncode != 0:
            raise ExecutionError(f"Command failed (code {returncode}): {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[: len(prefix)] == list(prefix))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def writer() -> ConfigWriter:
    return ConfigWriter()


def put(root: Path, absolute: str, content: str) -> Path:
    """Create a file at an absolute host path beneath root."""
    path = host_path(root, absolute)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """A minimal Debian 12 host with 1GB of memory and no swap."""
    put(tmp_path, "/proc/meminfo", "MemTotal:        1015808 kB\nSwapTotal:             0 kB\n")
    put(
        tmp_path,
        "/etc/os-release",
        'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\nID=debian\nVERSION_ID="12"\n',
    )
    put(tmp_path, "/etc/hosts", "127.0.0.1\tlocalhost\n127.0.1.1\told-host\n")
    put(tmp_path, "/usr/share/zoneinfo/Asia/Hong_Kong", "TZif")
    put(tmp_path, "/proc/sys/net/ipv4/tcp_available_congestion_control", "reno cubic bbr\n")
    return tmp_path


def make_profile(
    memory_mb: int = 1024,
    kernel: Tuple[int, int] = (6, 1),
    ipv6: bool = False,
    conntrack: bool = False,
    swap_mb: int = 0,
    release: Optional[str] = None,
) -> HostProfile:
    return HostProfile(
        total_memory_mb=memory_mb,
        ipv6_capable=ipv6,
        kernel_major=kernel[0],
        kernel_minor=kernel[1],
        kernel_release=release or f"{kernel[0]}.{kernel[1]}.0",
        swap_total_mb=swap_mb,
        conntrack_available=conntrack,
    )
