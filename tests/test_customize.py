"""Tests for customize module."""

from unittest import mock

import pytest

from ocp_libvirt.customize import CustomizeParams, ImageCustomizer
from ocp_libvirt.exceptions import ExternalCommandError


@pytest.fixture
def params():
    return CustomizeParams(
        ssh_pub_key_path="/keys/sshkey.pub",
        packages=("haproxy", "bind-utils"),
        uninstall=("cloud-init",),
        copy_in=(("haproxy.cfg", "/etc/haproxy"), ("bootstrap.ign", "/opt/")),
        run_commands=("systemctl daemon-reload", "systemctl enable haproxy"),
        selinux_relabel=True,
    )


def test_build_command(params):
    """Test virt-customize command with every option set."""
    assert ImageCustomizer.build_command("/images/ocp4-lb.qcow2", params) == [
        "virt-customize", "-a", "/images/ocp4-lb.qcow2",
        "--ssh-inject", "root:file:/keys/sshkey.pub",
        "--install", "haproxy,bind-utils",
        "--uninstall", "cloud-init",
        "--copy-in", "haproxy.cfg:/etc/haproxy",
        "--copy-in", "bootstrap.ign:/opt/",
        "--selinux-relabel",
        "--run-command", "systemctl daemon-reload",
        "--run-command", "systemctl enable haproxy",
    ]


def test_build_command_minimal():
    """Test virt-customize command with only the required options."""
    params = CustomizeParams(ssh_pub_key_path="key.pub")

    assert ImageCustomizer.build_command("lb.qcow2", params) == [
        "virt-customize", "-a", "lb.qcow2", "--ssh-inject", "root:file:key.pub",
    ]


@mock.patch("subprocess.run")
def test_customize_sets_libguestfs_backend(mock_run, params):
    """Test customize runs with LIBGUESTFS_BACKEND=direct."""
    mock_run.return_value = mock.MagicMock(returncode=0, stdout="[   0.0] Examining the guest ...")

    ImageCustomizer().customize("/images/ocp4-lb.qcow2", params)

    env = mock_run.call_args[1]["env"]
    assert env["LIBGUESTFS_BACKEND"] == "direct"
    assert mock_run.call_args[0][0][0] == "virt-customize"


@mock.patch("subprocess.run")
def test_customize_failure(mock_run, params):
    """Test customize propagates command failures."""
    mock_run.return_value = mock.MagicMock(returncode=1, stdout="virt-customize: error: no operating systems")

    with pytest.raises(ExternalCommandError, match="no operating systems"):
        ImageCustomizer().customize("/images/ocp4-lb.qcow2", params)
