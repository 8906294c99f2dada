"""Libvirt virtual network setup."""

import ipaddress
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, Tuple

from ocp_libvirt.config import validate_octet
from ocp_libvirt.exceptions import ConfigurationError, HypervisorError
from ocp_libvirt.interfaces import Hypervisor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VirtualNetwork:
    """A libvirt network the cluster is attached to."""

    name: str
    bridge: str
    gateway: str

    @property
    def has_gateway(self) -> bool:
        return bool(self.gateway)


def network_name_for_octet(octet: str) -> str:
    return f"ocp-{octet}"


def dhcp_range_for_octet(octet: str) -> Tuple[str, str, str]:
    """Return (gateway, dhcp_start, dhcp_end) of the /24 anchored at the octet."""
    prefix = f"192.168.{validate_octet(octet)}"
    return f"{prefix}.1", f"{prefix}.2", f"{prefix}.254"


def build_network_xml(name: str, octet: str) -> str:
    """Network XML for an isolated /24 with DHCP on .2-.254."""
    gateway, start, end = dhcp_range_for_octet(octet)
    return f"""
<network>
  <name>{name}</name>
  <bridge name="{name}"/>
  <forward/>
  <ip address="{gateway}" netmask="255.255.255.0">
    <dhcp>
      <range start="{start}" end="{end}"/>
    </dhcp>
  </ip>
</network>"""


def parse_gateway(xml: str) -> Optional[str]:
    """Extract the first IPv4 ``<ip address=...>`` from a network description."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError:
        return None
    for ip_el in root.findall("ip"):
        address = ip_el.get("address")
        if not address:
            continue
        if ip_el.get("family", "ipv4") != "ipv4":
            continue
        try:
            ipaddress.IPv4Address(address)
        except ValueError:
            continue
        return address
    return None


class VirtualNetworkManager:
    """Ensures the cluster's libvirt network exists and is running."""

    def __init__(self, hypervisor: Hypervisor) -> None:
        self.hypervisor = hypervisor

    def ensure_network(self, octet: Optional[str] = None, existing_name: Optional[str] = None) -> VirtualNetwork:
        """
        Reuse or create the cluster network and resolve its bridge and gateway.

        Args:
            octet: Third octet of a 192.168.<octet>.0/24 network named ``ocp-<octet>``
            existing_name: Name of a pre-existing network to use as-is

        Returns:
            VirtualNetwork with bridge name and gateway ("" when none is defined)

        Raises:
            ConfigurationError: If both or neither of octet/existing_name are given
            HypervisorError: If the network is missing, stopped, or cannot be created
        """
        if octet and existing_name:
            raise ConfigurationError(
                "specify either a libvirt network name or a libvirt network octet, not both"
            )
        if not octet and not existing_name:
            raise ConfigurationError("either a libvirt network name or a libvirt network octet must be provided")

        if octet:
            validate_octet(octet)
            name = network_name_for_octet(octet)
            if self.hypervisor.network_exists(name):
                logger.info("Libvirt network %s already exists, reusing it", name)
                self._require_active(name)
            else:
                logger.info("Creating libvirt network %s", name)
                self.hypervisor.define_and_start_network(name, build_network_xml(name, octet))
                logger.info("Libvirt network %s created and started successfully", name)
        else:
            name = existing_name
            if not self.hypervisor.network_exists(name):
                raise HypervisorError(f"libvirt network {name} doesn't exist")
            logger.info("Using existing libvirt network: %s", name)
            self._require_active(name)

        bridge = self.hypervisor.network_bridge_name(name)
        gateway = parse_gateway(self.hypervisor.network_xml(name))
        if gateway is None:
            logger.warning("IP address not found in network XML for %s", name)
            gateway = ""

        logger.info("Libvirt bridge: %s, Gateway IP: %s", bridge, gateway or "<none>")
        return VirtualNetwork(name=name, bridge=bridge, gateway=gateway)

    def _require_active(self, name: str) -> None:
        if not self.hypervisor.network_is_active(name):
            raise HypervisorError(f"libvirt network {name} is defined but not started")
