"""Capability interfaces for the external systems the orchestrator drives.

``LibvirtClient``, ``SystemdService``, ``SSHProber`` and ``ImageCustomizer``
satisfy these structurally; tests substitute in-memory fakes.
"""

from typing import Any, Dict, List, Protocol


class Hypervisor(Protocol):
    def network_exists(self, name: str) -> bool: ...

    def network_is_active(self, name: str) -> bool: ...

    def define_and_start_network(self, name: str, xml: str) -> None: ...

    def network_bridge_name(self, name: str) -> str: ...

    def network_xml(self, name: str) -> str: ...

    def add_dhcp_host(self, network_name: str, host_xml: str) -> None: ...

    def domain_exists(self, name: str) -> bool: ...

    def domain_is_active(self, name: str) -> bool: ...

    def define_domain(self, name: str, xml: str) -> None: ...

    def start_domain(self, name: str) -> None: ...

    def destroy_domain(self, name: str) -> None: ...

    def undefine_domain(self, name: str) -> None: ...

    def list_persistent_domain_names(self) -> List[str]: ...

    def lease_addresses(self, name: str) -> List[Dict[str, Any]]: ...


class ServiceController(Protocol):
    def restart(self, name: str) -> None: ...

    def reload(self, name: str) -> None: ...


class HostProber(Protocol):
    def purge_host_key(self, host: str) -> None: ...

    def probe(self, ip: str, user: str, key_path: str) -> bool: ...
