"""
vps_init - bootstrap a fresh Debian or Ubuntu VPS.

Sets hostname and timezone, tunes kernel networking (BBR), provisions swap,
configures DNS through whichever subsystem owns it, installs tools and fail2ban,
and upgrades the system.
"""

from .config import AppConfig, BootstrapConfig, DNSServers, NetworkMode, SwapDirective
from .errors import (
    ConfigurationError,
    ExecutionError,
    InsufficientPrivilegeError,
    SetupError,
    Severity,
    UnsupportedKernelError,
    ValidationError,
    WriteError,
)

__version__ = AppConfig.VERSION

__all__ = [
    "AppConfig",
    "BootstrapConfig",
    "ConfigurationError",
    "DNSServers",
    "ExecutionError",
    "InsufficientPrivilegeError",
    "NetworkMode",
    "SetupError",
    "Severity",
    "SwapDirective",
    "UnsupportedKernelError",
    "ValidationError",
    "WriteError",
    "__version__",
]
