"""Tests for preflight, identity, package, swap and fail2ban steps."""

import pytest

from conftest import make_profile, put
from vps_init.config import AppConfig, SwapDirective, host_path
from vps_init.errors import InsufficientPrivilegeError, ValidationError
from vps_init.profiler import HostProfiler
from vps_init.results import Status
from vps_init.security import SecurityHardener, render_jail, ssh_port_list
from vps_init.swap import FSTAB_ENTRY, SwapManager
from vps_init.system import (
    IdentityManager,
    PreflightChecker,
    SystemUpdater,
    render_hosts,
    validate_hostname,
)


# ----------------------------------------------------------------
# Preflight
# ----------------------------------------------------------------
def test_root_check(root, runner):
    profiler = HostProfiler(root=root, runner=runner)

    PreflightChecker(profiler, geteuid=lambda: 0).check_root()
    with pytest.raises(InsufficientPrivilegeError) as excinfo:
        PreflightChecker(profiler, geteuid=lambda: 1000).check_root()
    assert excinfo.value.is_fatal


def test_os_version_check(root, runner):
    checker = PreflightChecker(HostProfiler(root=root, runner=runner))
    assert checker.check_os_version() == (True, "Debian GNU/Linux 12 (bookworm)")

    put(root, AppConfig.OS_RELEASE, 'ID=ubuntu\nVERSION_ID="18.04"\n')
    supported, pretty = checker.check_os_version()
    assert not supported
    assert pretty == "ubuntu 18.04"


# ----------------------------------------------------------------
# Hostname & timezone
# ----------------------------------------------------------------
@pytest.mark.parametrize("name", ["a", "web-1", "Node42"])
def test_valid_hostnames(name):
    assert validate_hostname(name)


@pytest.mark.parametrize("name", ["", "-web", "web-", "web_1", "web.example"])
def test_invalid_hostnames(name):
    assert not validate_hostname(name)


def test_render_hosts_replaces_existing_entry():
    existing = "127.0.0.1\tlocalhost\n127.0.1.1\told-host\n::1\tlocalhost\n"
    assert render_hosts(existing, "web-1") == (
        "127.0.0.1\tlocalhost\n127.0.1.1\tweb-1\n::1\tlocalhost\n"
    )


def test_render_hosts_appends_and_is_stable():
    first = render_hosts("127.0.0.1 localhost", "web-1")
    assert first == "127.0.0.1 localhost\n127.0.1.1\tweb-1\n"
    assert render_hosts(first, "web-1") == first


def test_configure_hostname(root, runner, writer):
    identity = IdentityManager(writer, runner, root)

    result = identity.configure_hostname("web-1", "old-host")

    assert result.status == Status.APPLIED
    assert runner.ran("hostnamectl", "set-hostname", "web-1")
    assert "127.0.1.1\tweb-1" in host_path(root, AppConfig.HOSTS_FILE).read_text()


def test_invalid_hostname_is_not_applied(root, runner, writer):
    identity = IdentityManager(writer, runner, root)

    with pytest.raises(ValidationError):
        identity.configure_hostname("bad_name", "old-host")
    assert not runner.ran("hostnamectl")


def test_timezone(root, runner, writer):
    identity = IdentityManager(writer, runner, root)

    identity.configure_timezone("Asia/Hong_Kong")
    assert runner.ran("timedatectl", "set-timezone", "Asia/Hong_Kong")

    with pytest.raises(ValidationError):
        identity.configure_timezone("Mars/Olympus")


# ----------------------------------------------------------------
# Packages
# ----------------------------------------------------------------
def test_package_install_failure_degrades(root, runner, writer):
    runner.fail(["apt-get", "install", "-y", "sudo", "nosuchpkg"])
    updater = SystemUpdater(writer, runner, root, which=lambda name: None)

    result = updater.install_packages(("sudo", "nosuchpkg"))

    assert runner.ran("apt-get", "update")
    assert result.degraded


def test_vim_skipped_when_missing(root, runner, writer):
    updater = SystemUpdater(writer, runner, root, which=lambda name: None)

    assert updater.configure_vim().status == Status.SKIPPED


def test_vim_sources_local_config_once(root, runner, writer):
    updater = SystemUpdater(writer, runner, root, which=lambda name: "/usr/bin/vim")

    updater.configure_vim()
    updater.configure_vim()

    root_vimrc = host_path(root, AppConfig.ROOT_VIMRC).read_text()
    assert root_vimrc.count("source /etc/vim/vimrc.local") == 1
    assert "syntax on" in host_path(root, AppConfig.VIMRC_LOCAL).read_text()


def test_upgrade_failures_are_warnings(root, runner, writer):
    runner.fail(["apt-get", "clean"])
    updater = SystemUpdater(writer, runner, root)

    result = updater.update_and_cleanup()

    assert result.status == Status.APPLIED
    assert result.warnings == ["apt cache clean failed"]
    assert runner.ran("apt-get", "full-upgrade", "-y", "-o", "Dpkg::Options::=--force-confold")


# ----------------------------------------------------------------
# Swap
# ----------------------------------------------------------------
def swap_manager(root, runner, writer, free_mb=100000):
    return SwapManager(writer, runner, root, free_space_mb=lambda path: free_mb)


def test_swap_zero_is_skipped(root, runner, writer):
    result = swap_manager(root, runner, writer).configure(SwapDirective.parse("0"), make_profile())

    assert result.status == Status.SKIPPED
    assert runner.calls == []


def test_existing_swap_is_left_alone(root, runner, writer):
    result = swap_manager(root, runner, writer).configure(
        SwapDirective.parse("1024"), make_profile(swap_mb=512)
    )

    assert result.status == Status.SKIPPED
    assert not runner.ran("mkswap")


def test_swap_requires_headroom(root, runner, writer):
    manager = swap_manager(root, runner, writer, free_mb=1100)

    with pytest.raises(ValidationError):
        manager.configure(SwapDirective.parse("1024"), make_profile())
    assert not runner.ran("fallocate")


def test_auto_swap_created_and_persisted(root, runner, writer):
    manager = swap_manager(root, runner, writer)
    swapfile = str(host_path(root, AppConfig.SWAPFILE))

    result = manager.configure(SwapDirective.parse("auto"), make_profile(memory_mb=4096))
    manager.configure(SwapDirective.parse("auto"), make_profile(memory_mb=4096))

    assert result.status == Status.APPLIED
    assert runner.ran("fallocate", "-l", "2048M", swapfile)
    assert runner.ran("mkswap", swapfile)
    assert runner.ran("swapon", swapfile)
    fstab = host_path(root, AppConfig.FSTAB).read_text()
    assert fstab.count(FSTAB_ENTRY) == 1


def test_swap_falls_back_to_dd(root, runner, writer):
    swapfile = str(host_path(root, AppConfig.SWAPFILE))
    runner.fail(["fallocate", "-l", "1024M", swapfile])

    swap_manager(root, runner, writer).configure(SwapDirective.parse("1024"), make_profile())

    assert runner.ran("dd", "if=/dev/zero", f"of={swapfile}", "bs=1M", "count=1024")


# ----------------------------------------------------------------
# Fail2ban
# ----------------------------------------------------------------
def test_ssh_port_list():
    assert ssh_port_list(None) == "22"
    assert ssh_port_list(22) == "22"
    assert ssh_port_list(2222) == "22,2222"
    with pytest.raises(ValidationError):
        ssh_port_list(70000)
    with pytest.raises(ValidationError):
        ssh_port_list(0)


def test_jail_policy():
    jail = render_jail("22,2222")
    assert "bantime = -1" in jail
    assert "findtime = 300" in jail
    assert "maxretry = 3" in jail
    assert "port = 22,2222" in jail


def test_configure_fail2ban(root, runner, writer):
    result = SecurityHardener(writer, runner, root).configure_fail2ban(2222)

    assert result.status == Status.APPLIED
    assert "port = 22,2222" in host_path(root, AppConfig.FAIL2BAN_JAIL).read_text()
    assert runner.ran("apt-get", "install", "-y", "fail2ban")
    assert runner.ran("systemctl", "restart", "fail2ban")


def test_invalid_fail2ban_port_installs_nothing(root, runner, writer):
    with pytest.raises(ValidationError):
        SecurityHardener(writer, runner, root).configure_fail2ban(99999)
    assert runner.calls == []


def test_apt_install_and_upgrade_use_the_long_timeout(root, runner, writer):
    updater = SystemUpdater(writer, runner, root)

    updater.install_packages(("sudo",))
    updater.update_and_cleanup()

    assert runner.timeouts[("apt-get", "install", "-y", "sudo")] == AppConfig.APT_TIMEOUT
    upgrade = ("apt-get", "full-upgrade", "-y", "-o", "Dpkg::Options::=--force-confold")
    assert runner.timeouts[upgrade] == AppConfig.APT_TIMEOUT
    assert runner.timeouts[("apt-get", "update", "-qq")] is None
    assert runner.timeouts[("apt-get", "clean")] is None
    assert AppConfig.APT_TIMEOUT > AppConfig.COMMAND_TIMEOUT
