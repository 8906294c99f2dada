"""Tests for dhcp module."""

import pytest

from ocp_libvirt.dhcp import DHCPPinner, dhcp_host_xml
from ocp_libvirt.exceptions import HypervisorError


def test_dhcp_host_xml():
    """Test DHCP host XML rendering."""
    assert dhcp_host_xml("52:54:00:aa:bb:cc", "192.168.100.10") == (
        "<host mac='52:54:00:aa:bb:cc' ip='192.168.100.10'/>"
    )


def test_reserve(hypervisor):
    """Test reserve adds a host entry to the network."""
    DHCPPinner(hypervisor).reserve("ocp-100", "52:54:00:aa:bb:cc", "192.168.100.10")

    assert hypervisor.dhcp_hosts == [("ocp-100", "<host mac='52:54:00:aa:bb:cc' ip='192.168.100.10'/>")]


def test_reserve_twice_is_not_deduplicated(hypervisor):
    """Test reserving the same host twice adds it twice."""
    pinner = DHCPPinner(hypervisor)

    pinner.reserve("ocp-100", "52:54:00:aa:bb:cc", "192.168.100.10")
    pinner.reserve("ocp-100", "52:54:00:aa:bb:cc", "192.168.100.10")

    assert len(hypervisor.dhcp_hosts) == 2


def test_reserve_propagates_conflicts(hypervisor):
    """Test reserve propagates hypervisor conflicts."""
    xml = dhcp_host_xml("52:54:00:aa:bb:cc", "192.168.100.10")
    hypervisor.fail_on[("add_dhcp_host", "ocp-100", xml)] = HypervisorError("there is an existing dhcp host entry")

    with pytest.raises(HypervisorError, match="existing dhcp host"):
        DHCPPinner(hypervisor).reserve("ocp-100", "52:54:00:aa:bb:cc", "192.168.100.10")
