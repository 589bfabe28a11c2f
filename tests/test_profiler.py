"""Tests for host profiling."""

import pytest

from conftest import put
from vps_init.config import AppConfig
from vps_init.profiler import HostProfiler, parse_kernel_release


@pytest.mark.parametrize(
    "release, expected",
    [
        ("5.15.0-91-generic", (5, 15)),
        ("4.9.0", (4, 9)),
        ("4.19.0-26-amd64", (4, 19)),
        ("6.1", (6, 1)),
        ("garbage", (0, 0)),
        ("", (0, 0)),
    ],
)
def test_parse_kernel_release(release, expected):
    assert parse_kernel_release(release) == expected


def test_profile_reads_memory_and_kernel(root, runner):
    profile = HostProfiler(root=root, runner=runner, kernel_release="4.9.0-19-amd64").profile()

    assert profile.total_memory_mb == 992
    assert profile.swap_total_mb == 0
    assert profile.kernel_version == (4, 9)
    assert profile.kernel_release == "4.9.0-19-amd64"
    assert not profile.ipv6_capable
    assert not profile.conntrack_available


def test_conntrack_presence_detected(root, runner):
    put(root, AppConfig.CONNTRACK_MAX, "262144\n")

    profile = HostProfiler(root=root, runner=runner, kernel_release="6.1.0").profile()

    assert profile.conntrack_available


def test_ipv6_detected_from_default_route(root, runner):
    runner.respond(
        ["ip", "-6", "route", "show", "default"],
        stdout="default via fe80::1 dev eth0 proto ra metric 100\n",
    )

    assert HostProfiler(root=root, runner=runner).has_ipv6()


def test_ipv6_detected_from_global_address(root, runner):
    runner.respond(
        ["ip", "-6", "addr", "show"],
        stdout="    inet6 2001:db8::10/64 scope global \n    inet6 fe80::1/64 scope link\n",
    )

    assert HostProfiler(root=root, runner=runner).has_ipv6()


def test_link_local_only_is_not_ipv6_capable(root, runner):
    runner.respond(["ip", "-6", "addr", "show"], stdout="    inet6 fe80::1/64 scope link\n")

    assert not HostProfiler(root=root, runner=runner).has_ipv6()


def test_missing_meminfo_reports_zero(tmp_path, runner):
    profile = HostProfiler(root=tmp_path, runner=runner, kernel_release="6.1.0").profile()

    assert profile.total_memory_mb == 0


def test_os_release(root, runner):
    info = HostProfiler(root=root, runner=runner).os_release()

    assert info["ID"] == "debian"
    assert info["VERSION_ID"] == "12"
    assert info["PRETTY_NAME"] == "Debian GNU/Linux 12 (bookworm)"
