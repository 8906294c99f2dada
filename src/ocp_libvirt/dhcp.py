"""Pin observed leases as DHCP host reservations."""

import logging

from ocp_libvirt.interfaces import Hypervisor

logger = logging.getLogger(__name__)


def dhcp_host_xml(mac: str, ip: str) -> str:
    return f"<host mac='{mac}' ip='{ip}'/>"


class DHCPPinner:
    """Adds static MAC/IP mappings to a libvirt network."""

    def __init__(self, hypervisor: Hypervisor) -> None:
        self.hypervisor = hypervisor

    def reserve(self, network_name: str, mac: str, ip: str) -> None:
        """Reserve ``ip`` for ``mac`` in both the live and persistent network config.

        Existing reservations for the same MAC are left alone; conflicts are
        reported by libvirt as a HypervisorError.
        """
        self.hypervisor.add_dhcp_host(network_name, dhcp_host_xml(mac, ip))
        logger.info("Added DHCP reservation on %s: MAC=%s, IP=%s", network_name, mac, ip)
