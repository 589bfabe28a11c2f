"""Tests for DNS backend detection and per-backend resolver configuration."""

import pytest
import yaml

from conftest import put
from vps_init.config import AppConfig, DNSServers, host_path
from vps_init.dns import BackendDetector, DNSApplier, DNSBackend
from vps_init.errors import ExecutionError
from vps_init.results import Status

RESOLVED_PROBE = ["systemctl", "is-active", "--quiet", "systemd-resolved"]

SERVERS = DNSServers("1.1.1.1", "8.8.8.8", "2606:4700:4700::1111", "2001:4860:4860::8888")


def detector(root, runner, resolved=False, resolvconf=False):
    runner.respond(RESOLVED_PROBE, returncode=0 if resolved else 3)
    which = lambda name: "/sbin/resolvconf" if resolvconf and name == "resolvconf" else None
    return BackendDetector(root=root, runner=runner, which=which)


def enable_cloud_init(root):
    put(root, "/etc/cloud/cloud.cfg.d/50-resolv.cfg", "manage_resolv_conf: true\n")


# ----------------------------------------------------------------
# Detection
# ----------------------------------------------------------------
def test_resolved_outranks_every_other_backend(tmp_path, runner):
    enable_cloud_init(tmp_path)
    det = detector(tmp_path, runner, resolved=True, resolvconf=True)

    assert det.detect() == DNSBackend.SYSTEMD_RESOLVED


def test_cloud_init_outranks_resolvconf(tmp_path, runner):
    enable_cloud_init(tmp_path)
    det = detector(tmp_path, runner, resolvconf=True)

    assert det.detect() == DNSBackend.CLOUD_INIT


def test_resolvconf_detected_when_installed(tmp_path, runner):
    assert detector(tmp_path, runner, resolvconf=True).detect() == DNSBackend.RESOLVCONF


def test_raw_file_is_the_fallback(tmp_path, runner):
    put(tmp_path, "/etc/cloud/cloud.cfg", "manage_resolv_conf: false\n")

    assert detector(tmp_path, runner).detect() == DNSBackend.RAW_FILE


def test_detection_never_raises(tmp_path):
    def broken(cmd, check=True, probe=False, env=None):
        raise ExecutionError("systemctl missing")

    det = BackendDetector(root=tmp_path, runner=broken, which=lambda name: None)

    assert det.detect() == DNSBackend.RAW_FILE


# ----------------------------------------------------------------
# Address ordering per backend
# ----------------------------------------------------------------
def configured_addresses(backend, path):
    content = path.read_text()
    if backend == DNSBackend.SYSTEMD_RESOLVED:
        values = {}
        for line in content.splitlines():
            key, _, value = line.partition("=")
            values[key] = value.split()
        addresses = []
        for address in values["DNS"] + values["FallbackDNS"]:
            if address not in addresses:
                addresses.append(address)
        return addresses
    if backend == DNSBackend.CLOUD_INIT:
        assert content.startswith("#cloud-config\n")
        document = yaml.safe_load(content)
        assert document["manage_resolv_conf"] is True
        return document["resolv_conf"]["nameservers"]
    return [line.split()[1] for line in content.splitlines() if line.startswith("nameserver")]


DNS_FILES = {
    DNSBackend.SYSTEMD_RESOLVED: AppConfig.RESOLVED_DROPIN,
    DNSBackend.CLOUD_INIT: AppConfig.CLOUD_DNS_CFG,
    DNSBackend.RESOLVCONF: AppConfig.RESOLVCONF_HEAD,
    DNSBackend.RAW_FILE: AppConfig.RESOLV_CONF,
}


@pytest.mark.parametrize("backend", list(DNSBackend))
@pytest.mark.parametrize("ipv6_capable", [True, False])
def test_every_backend_orders_addresses_ipv4_first(tmp_path, runner, backend, ipv6_capable):
    applier = DNSApplier(runner=runner, root=tmp_path)

    result = applier.apply(backend, SERVERS, ipv6_capable)

    path = host_path(tmp_path, DNS_FILES[backend])
    assert result.status == Status.APPLIED
    assert result.paths == [path]
    expected = ["1.1.1.1", "8.8.8.8"]
    if ipv6_capable:
        expected += ["2606:4700:4700::1111", "2001:4860:4860::8888"]
    assert configured_addresses(backend, path) == expected


def test_resolved_restarts_service_only_on_change(tmp_path, runner):
    applier = DNSApplier(runner=runner, root=tmp_path)

    applier.apply(DNSBackend.SYSTEMD_RESOLVED, SERVERS, False)
    second = applier.apply(DNSBackend.SYSTEMD_RESOLVED, SERVERS, False)

    assert second.status == Status.UNCHANGED
    assert runner.count("systemctl", "restart", "systemd-resolved") == 1
    assert runner.ran("resolvectl", "flush-caches")


def test_resolvconf_head_keeps_other_directives(tmp_path, runner):
    put(tmp_path, AppConfig.RESOLVCONF_HEAD, "# head\nnameserver 9.9.9.9\nsearch example.org\n")
    applier = DNSApplier(runner=runner, root=tmp_path)

    applier.apply(DNSBackend.RESOLVCONF, SERVERS, False)

    content = host_path(tmp_path, AppConfig.RESOLVCONF_HEAD).read_text()
    assert content == (
        "# head\nsearch example.org\nnameserver 1.1.1.1\nnameserver 8.8.8.8\n"
    )
    assert runner.ran("resolvconf", "-u")


def test_resolvconf_regeneration_failure_degrades(tmp_path, runner):
    runner.fail(["resolvconf", "-u"])
    applier = DNSApplier(runner=runner, root=tmp_path)

    result = applier.apply(DNSBackend.RESOLVCONF, SERVERS, True)

    assert result.degraded
    assert result.warnings == ["resolvconf regeneration failed"]


def test_raw_file_clears_immutable_flag_and_backs_up(tmp_path, runner):
    resolv = put(tmp_path, AppConfig.RESOLV_CONF, "nameserver 192.168.1.1\n")
    applier = DNSApplier(runner=runner, root=tmp_path)

    result = applier.apply(DNSBackend.RAW_FILE, SERVERS, False)

    assert runner.ran("chattr", "-i", str(resolv))
    assert "later" in result.message
    backups = list(resolv.parent.glob("resolv.conf.bak.*"))
    assert [b.read_text() for b in backups] == ["nameserver 192.168.1.1\n"]


def test_cloud_init_change_waits_for_reboot(tmp_path, runner):
    result = DNSApplier(runner=runner, root=tmp_path).apply(
        DNSBackend.CLOUD_INIT, SERVERS, False
    )

    assert "reboot" in result.message
    assert runner.calls == []
