"""Tests for dns module."""

from unittest import mock

import pytest

from ocp_libvirt.dns import NameResolutionSynchronizer
from ocp_libvirt.exceptions import ConfigurationError


@pytest.fixture
def dns(services, sleep, cluster_dirs):
    return NameResolutionSynchronizer(
        services,
        hosts_dir=str(cluster_dirs["hosts_dir"]),
        dns_dir=str(cluster_dirs["dns_dir"]),
        settle_seconds=5.0,
        sleep=sleep,
    )


def read_lines(path):
    with open(path) as f:
        return f.read().splitlines()


def test_publish_host_creates_file(dns, cluster_dirs):
    """Test publish_host creates the hosts file."""
    dns.publish_host("ocp4", "192.168.100.10", "lb.ocp4.local", "api.ocp4.local")

    path = cluster_dirs["hosts_dir"] / "hosts.ocp4"
    assert read_lines(path) == ["192.168.100.10 lb.ocp4.local api.ocp4.local"]


def test_publish_host_twice_appends_twice(dns):
    """Test publish_host appends duplicate lines."""
    dns.publish_host("ocp4", "192.168.100.11", "bootstrap.ocp4.local")
    dns.publish_host("ocp4", "192.168.100.11", "bootstrap.ocp4.local")

    assert read_lines(dns.hosts_file("ocp4")) == [
        "192.168.100.11 bootstrap.ocp4.local",
        "192.168.100.11 bootstrap.ocp4.local",
    ]


def test_publish_host_validates_input(dns):
    """Test publish_host requires an IP and a hostname."""
    with pytest.raises(ConfigurationError):
        dns.publish_host("ocp4", "", "lb.ocp4.local")
    with pytest.raises(ConfigurationError):
        dns.publish_host("ocp4", "192.168.100.10")


def test_upsert_host_replaces_stale_lines(dns):
    """Test upsert_host drops lines sharing a hostname."""
    dns.publish_host("ocp4", "192.168.100.11", "bootstrap.ocp4.local")
    dns.publish_host("ocp4", "192.168.100.12", "master-1.ocp4.local")

    dns.upsert_host("ocp4", "192.168.100.21", "bootstrap.ocp4.local")

    assert read_lines(dns.hosts_file("ocp4")) == [
        "192.168.100.12 master-1.ocp4.local",
        "192.168.100.21 bootstrap.ocp4.local",
    ]


def test_upsert_host_leaves_no_temp_file(dns, cluster_dirs):
    """Test upsert_host replaces the hosts file without leaving a temp file behind."""
    dns.upsert_host("ocp4", "192.168.100.11", "bootstrap.ocp4.local")
    dns.upsert_host("ocp4", "192.168.100.21", "bootstrap.ocp4.local")

    assert sorted(p.name for p in cluster_dirs["hosts_dir"].iterdir()) == ["hosts.ocp4"]


def test_upsert_host_failure_removes_temp_file(dns, cluster_dirs):
    """Test a failed replace removes the temp file and keeps the old hosts file."""
    dns.publish_host("ocp4", "192.168.100.11", "bootstrap.ocp4.local")

    with mock.patch("ocp_libvirt.dns.os.replace", side_effect=OSError("read-only file system")):
        with pytest.raises(OSError, match="read-only"):
            dns.upsert_host("ocp4", "192.168.100.21", "bootstrap.ocp4.local")

    assert sorted(p.name for p in cluster_dirs["hosts_dir"].iterdir()) == ["hosts.ocp4"]
    assert read_lines(dns.hosts_file("ocp4")) == ["192.168.100.11 bootstrap.ocp4.local"]


def test_read_entries(dns):
    """Test read_entries parses the hosts file."""
    dns.publish_host("ocp4", "192.168.100.10", "lb.ocp4.local", "api.ocp4.local")

    entries = dns.read_entries("ocp4")

    assert len(entries) == 1
    assert entries[0].ip == "192.168.100.10"
    assert entries[0].hostnames == ("lb.ocp4.local", "api.ocp4.local")
    assert dns.read_entries("missing") == []


def test_write_resolver_config(dns, cluster_dirs):
    """Test write_resolver_config content."""
    path = dns.write_resolver_config("ocp4", "local", "192.168.100.10")

    assert path == str(cluster_dirs["dns_dir"] / "ocp4.conf")
    assert read_lines(path) == [
        "local=/ocp4.local/",
        f"addn-hosts={cluster_dirs['hosts_dir'] / 'hosts.ocp4'}",
        "address=/apps.ocp4.local/192.168.100.10",
    ]


def test_reload_resolver_order(dns, services, sleep):
    """Test reload_resolver restarts the resolver, settles, then virtnetworkd."""
    dns.reload_resolver("NetworkManager")

    assert services.calls == [("restart", "NetworkManager"), ("restart", "virtnetworkd")]
    assert sleep.delays == [5.0]


def test_remove_cluster_records(dns):
    """Test remove_cluster_records deletes both cluster files."""
    dns.publish_host("ocp4", "192.168.100.10", "lb.ocp4.local")
    dns.write_resolver_config("ocp4", "local", "192.168.100.10")

    removed = dns.remove_cluster_records("ocp4")

    assert removed == [dns.hosts_file("ocp4"), dns.resolver_config_file("ocp4")]
    assert dns.remove_cluster_records("ocp4") == []
