"""Tests for systemd module."""

from unittest import mock

import pytest

from ocp_libvirt.exceptions import ExternalCommandError
from ocp_libvirt.systemd import DNSMASQ, NETWORK_MANAGER, ServiceState, SystemdService, dns_service_for


def completed(returncode=0, stdout=""):
    return mock.MagicMock(returncode=returncode, stdout=stdout)


@pytest.mark.parametrize(
    "dns_dir, expected",
    [
        ("/etc/NetworkManager/dnsmasq.d", NETWORK_MANAGER),
        ("/etc/NetworkManager/dnsmasq.d/", NETWORK_MANAGER),
        ("/etc/dnsmasq.d", DNSMASQ),
    ],
)
def test_dns_service_for(dns_dir, expected):
    """Test resolver service name for a dnsmasq directory."""
    assert dns_service_for(dns_dir) == expected


@mock.patch("subprocess.run")
def test_restart(mock_run):
    """Test restart runs systemctl restart."""
    mock_run.return_value = completed()

    SystemdService().restart("NetworkManager")

    assert mock_run.call_args[0][0] == ["systemctl", "restart", "NetworkManager"]


@mock.patch("subprocess.run")
def test_restart_failure_carries_output(mock_run):
    """Test restart failure carries command output."""
    mock_run.return_value = completed(1, "Job for dnsmasq.service failed")

    with pytest.raises(ExternalCommandError) as excinfo:
        SystemdService().restart("dnsmasq")

    assert excinfo.value.returncode == 1
    assert "Job for dnsmasq.service failed" in str(excinfo.value)


@mock.patch("subprocess.run")
def test_status_inactive_and_disabled(mock_run):
    """Test status of an inactive, disabled service."""
    mock_run.side_effect = [completed(3, "inactive\n"), completed(1, "disabled\n")]

    status = SystemdService().status("dnsmasq")

    assert status.state == ServiceState.INACTIVE
    assert status.enabled is False
    assert not status.is_active


@mock.patch("subprocess.run")
def test_start_skips_running_service(mock_run):
    """Test start skips a running service."""
    mock_run.side_effect = [completed(0, "active"), completed(0, "enabled")]

    SystemdService().start("virtnetworkd")

    commands = [call[0][0] for call in mock_run.call_args_list]
    assert ["systemctl", "start", "virtnetworkd"] not in commands


@mock.patch("subprocess.run")
def test_enable_disabled_service(mock_run):
    """Test enable on a disabled service."""
    mock_run.side_effect = [completed(3, "inactive"), completed(1, "disabled"), completed()]

    SystemdService().enable("haproxy")

    assert mock_run.call_args_list[-1][0][0] == ["systemctl", "enable", "haproxy"]


@mock.patch("subprocess.run", side_effect=FileNotFoundError)
def test_missing_systemctl(mock_run):
    """Test missing systemctl binary."""
    with pytest.raises(ExternalCommandError) as excinfo:
        SystemdService().status("dnsmasq")

    assert excinfo.value.returncode == 127
