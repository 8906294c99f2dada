"""Thin wrapper around a libvirt connection."""

import logging
from typing import Any, Dict, List, Optional

from ocp_libvirt.exceptions import HypervisorError

logger = logging.getLogger(__name__)

# libvirt-python needs the libvirt C library; it is an optional install
try:
    import libvirt

    LIBVIRT_AVAILABLE = True
except ImportError:
    libvirt = None
    LIBVIRT_AVAILABLE = False


class LibvirtClient:
    """Wrapper around a libvirt connection opened by URI.

    Every libvirt call the provisioning code makes goes through this class,
    so ``libvirt.libvirtError`` is translated into ``HypervisorError`` in one
    place and callers never handle libvirt objects or constants.
    """

    def __init__(self, uri: str = "qemu:///system") -> None:
        self.uri = uri
        self._conn: Optional[Any] = None

    @property
    def conn(self) -> Any:
        """Lazy-initialize the libvirt connection."""
        if self._conn is None or not self._is_alive():
            if libvirt is None:
                raise HypervisorError("libvirt-python is not installed; install the 'libvirt' extra")
            try:
                self._conn = libvirt.open(self.uri)
            except libvirt.libvirtError as e:
                raise HypervisorError(f"failed to connect to libvirt at {self.uri}: {e}")
            if self._conn is None:
                raise HypervisorError(f"failed to connect to libvirt at {self.uri}")
            logger.debug("Connected to libvirt at %s", self.uri)
        return self._conn

    def _is_alive(self) -> bool:
        try:
            return bool(self._conn.isAlive())
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to check libvirt connection to {self.uri}: {e}")

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except libvirt.libvirtError as e:
            logger.warning("Error closing libvirt connection: %s", e)
        self._conn = None

    def __enter__(self) -> "LibvirtClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # === NETWORKS ===

    def _lookup_network(self, name: str) -> Optional[Any]:
        try:
            return self.conn.networkLookupByName(name)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_NETWORK:
                return None
            raise HypervisorError(f"failed to lookup network {name}: {e}")

    def _require_network(self, name: str) -> Any:
        network = self._lookup_network(name)
        if network is None:
            raise HypervisorError(f"libvirt network {name} doesn't exist")
        return network

    def network_exists(self, name: str) -> bool:
        return self._lookup_network(name) is not None

    def network_is_active(self, name: str) -> bool:
        network = self._require_network(name)
        try:
            return bool(network.isActive())
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to query state of network {name}: {e}")

    def define_and_start_network(self, name: str, xml: str) -> None:
        """Define a persistent network, mark it autostart and start it."""
        try:
            network = self.conn.networkDefineXML(xml)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to define network {name}: {e}")
        try:
            network.setAutostart(1)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to set autostart on network {name}: {e}")
        try:
            network.create()
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to start network {name}: {e}")

    def network_bridge_name(self, name: str) -> str:
        network = self._require_network(name)
        try:
            return network.bridgeName()
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to get bridge name for network {name}: {e}")

    def network_xml(self, name: str) -> str:
        network = self._require_network(name)
        try:
            return network.XMLDesc(0)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to get network XML description for {name}: {e}")

    def add_dhcp_host(self, network_name: str, host_xml: str) -> None:
        """Append a DHCP host entry to the live and persistent network config."""
        network = self._require_network(network_name)
        try:
            network.update(
                libvirt.VIR_NETWORK_UPDATE_COMMAND_ADD_LAST,
                libvirt.VIR_NETWORK_SECTION_IP_DHCP_HOST,
                -1,
                host_xml,
                libvirt.VIR_NETWORK_UPDATE_AFFECT_LIVE | libvirt.VIR_NETWORK_UPDATE_AFFECT_CONFIG,
            )
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to update network {network_name}: {e}")

    # === DOMAINS ===

    def _lookup_domain(self, name: str) -> Optional[Any]:
        try:
            return self.conn.lookupByName(name)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                return None
            raise HypervisorError(f"failed to lookup VM {name}: {e}")

    def _require_domain(self, name: str) -> Any:
        domain = self._lookup_domain(name)
        if domain is None:
            raise HypervisorError(f"failed to find VM {name}")
        return domain

    def domain_exists(self, name: str) -> bool:
        return self._lookup_domain(name) is not None

    def domain_is_active(self, name: str) -> bool:
        domain = self._require_domain(name)
        try:
            return bool(domain.isActive())
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to query state of VM {name}: {e}")

    def define_domain(self, name: str, xml: str) -> None:
        try:
            self.conn.defineXML(xml)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to define VM {name}: {e}")

    def start_domain(self, name: str) -> None:
        domain = self._require_domain(name)
        try:
            domain.create()
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to start VM {name}: {e}")

    def destroy_domain(self, name: str) -> None:
        """Hard power-off a running domain."""
        domain = self._require_domain(name)
        try:
            domain.destroy()
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to stop VM {name}: {e}")

    def undefine_domain(self, name: str) -> None:
        domain = self._require_domain(name)
        try:
            domain.undefine()
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to undefine VM {name}: {e}")

    def list_persistent_domain_names(self) -> List[str]:
        try:
            domains = self.conn.listAllDomains(libvirt.VIR_CONNECT_LIST_DOMAINS_PERSISTENT)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to list domains: {e}")
        return [domain.name() for domain in domains]

    def lease_addresses(self, name: str) -> List[Dict[str, Any]]:
        """Interface addresses of a domain as reported by the DHCP lease database.

        Returns:
            One dict per interface: ``{"hwaddr": str, "addrs": [{"type": "ipv4"|"ipv6", "addr": str}]}``
        """
        domain = self._require_domain(name)
        try:
            ifaces = domain.interfaceAddresses(libvirt.VIR_DOMAIN_INTERFACE_ADDRESSES_SRC_LEASE, 0)
        except libvirt.libvirtError as e:
            raise HypervisorError(f"failed to list network interfaces for VM {name}: {e}")

        result = []
        for iface in (ifaces or {}).values():
            addrs = []
            for addr in iface.get("addrs") or []:
                family = "ipv4" if addr.get("type") == libvirt.VIR_IP_ADDR_TYPE_IPV4 else "ipv6"
                addrs.append({"type": family, "addr": addr.get("addr", "")})
            result.append({"hwaddr": iface.get("hwaddr") or "", "addrs": addrs})
        return result
