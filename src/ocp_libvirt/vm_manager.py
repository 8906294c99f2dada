"""
src/ocp_libvirt/vm_manager.py

Create, start, stop and remove cluster VMs on libvirt, and read their DHCP leases.
"""

import ipaddress
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional
from xml.sax.saxutils import escape as xml_escape

from ocp_libvirt.commands import run_command
from ocp_libvirt.exceptions import HypervisorError
from ocp_libvirt.interfaces import Hypervisor
from ocp_libvirt.nodes import NodeSpec

logger = logging.getLogger(__name__)

_INSTALL_ROLES = r"bootstrap|master-\d+|worker-\d+"


@dataclass(frozen=True)
class LeaseRecord:
    """A leased (MAC, IPv4) pair observed for a VM."""

    vm_name: str
    mac: str
    ip: str


def _is_ipv4(addr: str) -> bool:
    try:
        ipaddress.IPv4Address(addr)
    except ValueError:
        return False
    return True


def build_domain_xml(spec: NodeSpec) -> str:
    """Generate libvirt domain XML for a node.

    Install-time nodes boot the installer kernel directly from
    ``<location>/vmlinuz`` and ``<location>/initramfs.img`` with the node's
    kernel arguments; everything else boots from disk.
    """
    if spec.is_install:
        location = spec.location.rstrip("/")
        boot_xml = f"""
    <kernel>{xml_escape(f"{location}/vmlinuz")}</kernel>
    <initrd>{xml_escape(f"{location}/initramfs.img")}</initrd>
    <cmdline>{xml_escape(spec.extra_args or "")}</cmdline>"""
    else:
        boot_xml = ""

    return f"""
<domain type='kvm'>
  <name>{xml_escape(spec.name)}</name>
  <metadata>
    <libosinfo:libosinfo xmlns:libosinfo="http://libosinfo.org/xmlns/libvirt/domain/1.0">
      <libosinfo:os id="http://redhat.com/rhel/9.0"/>
    </libosinfo:libosinfo>
  </metadata>
  <memory unit='MiB'>{int(spec.memory_mb)}</memory>
  <vcpu placement='static'>{int(spec.cpus)}</vcpu>
  <cpu mode='host-passthrough'>
    <model fallback='allow'/>
  </cpu>
  <os>
    <type arch='x86_64' machine='q35'>hvm</type>
    <boot dev='hd'/>{boot_xml}
  </os>
  <features>
    <acpi/>
    <apic/>
  </features>
  <on_reboot>restart</on_reboot>
  <devices>
    <disk type='file' device='disk'>
      <driver name='qemu' type='qcow2'/>
      <source file='{xml_escape(spec.disk_path)}'/>
      <target dev='vda' bus='virtio'/>
    </disk>
    <interface type='network'>
      <source network='{xml_escape(spec.network)}'/>
      <model type='virtio'/>
    </interface>
    <graphics type='vnc' autoport='yes'/>
  </devices>
</domain>"""


class VMLifecycleDriver:
    """Issues create/start/stop/destroy against libvirt for NodeSpecs.

    Creation is not idempotent: an existing domain name, or an existing disk
    for an install-time node, is a hard error. Existing VMs are never modified.
    """

    def __init__(self, hypervisor: Hypervisor, disk_timeout: float = 300) -> None:
        self.hypervisor = hypervisor
        self.disk_timeout = disk_timeout

    def create(self, spec: NodeSpec) -> None:
        """
        Define and boot a VM for ``spec``.

        Raises:
            HypervisorError: If the VM or its disk already exists, or libvirt refuses it
            ExternalCommandError: If the install disk cannot be created
        """
        if self.hypervisor.domain_exists(spec.name):
            raise HypervisorError(f"VM {spec.name} already exists")

        if spec.is_install:
            if os.path.exists(spec.disk_path):
                raise HypervisorError(f"disk {spec.disk_path} for VM {spec.name} already exists")
            self._create_disk(spec)
        elif not os.path.exists(spec.disk_path):
            raise HypervisorError(f"disk {spec.disk_path} for VM {spec.name} not found")

        logger.info(
            "Creating VM %s: %s CPUs, %sMB RAM, disk %s, network %s",
            spec.name,
            spec.cpus,
            spec.memory_mb,
            spec.disk_path,
            spec.network,
        )
        self.hypervisor.define_domain(spec.name, build_domain_xml(spec))
        self.hypervisor.start_domain(spec.name)
        logger.info("VM %s created successfully", spec.name)

    def _create_disk(self, spec: NodeSpec) -> None:
        cmd = ["qemu-img", "create", "-f", "qcow2", spec.disk_path, f"{spec.disk_size_gb}G"]
        run_command(cmd, timeout=self.disk_timeout)
        logger.info("Created disk %s (%sGB)", spec.disk_path, spec.disk_size_gb)

    def start(self, name: str) -> None:
        self.hypervisor.start_domain(name)
        logger.info("VM %s started", name)

    def is_running(self, name: str) -> bool:
        return self.hypervisor.domain_is_active(name)

    def stop(self, name: str) -> None:
        """Power off a VM (no guest shutdown)."""
        self.hypervisor.destroy_domain(name)
        logger.info("VM %s stopped", name)

    def destroy(self, name: str) -> None:
        """Power off the VM if running, then remove its definition. Disks are kept."""
        if self.hypervisor.domain_is_active(name):
            self.hypervisor.destroy_domain(name)
        self.hypervisor.undefine_domain(name)
        logger.info("VM %s destroyed", name)

    def lookup_lease(self, name: str) -> Optional[LeaseRecord]:
        """
        Return the VM's first leased IPv4 address, or None if it has none yet.

        Only entries from an interface with a non-empty MAC are considered.

        Raises:
            HypervisorError: If libvirt cannot be queried
        """
        for iface in self.hypervisor.lease_addresses(name):
            mac = iface.get("hwaddr") or ""
            if not mac:
                continue
            for addr in iface.get("addrs", []):
                if addr.get("type") == "ipv4" and _is_ipv4(addr.get("addr", "")):
                    return LeaseRecord(vm_name=name, mac=mac, ip=addr["addr"])
        return None

    def list_cluster_vms(self, cluster_name: str) -> List[str]:
        """Persistent VMs named like this cluster's load balancer or cohort nodes."""
        pattern = re.compile(rf"^{re.escape(cluster_name)}-(lb|{_INSTALL_ROLES})$")
        return sorted(name for name in self.hypervisor.list_persistent_domain_names() if pattern.match(name))

    def remove_install_disks(self, vm_dir: str, cluster_name: str) -> List[str]:
        """
        Delete the qcow2 disks of the cluster's bootstrap, master and worker nodes.

        The load balancer image is kept since it is the customized base image.

        Returns:
            Paths of the removed disks
        """
        if not os.path.isdir(vm_dir):
            return []
        pattern = re.compile(rf"^{re.escape(cluster_name)}-({_INSTALL_ROLES})\.qcow2$")
        removed = []
        for entry in sorted(os.listdir(vm_dir)):
            if not pattern.match(entry):
                continue
            path = os.path.join(vm_dir, entry)
            os.remove(path)
            removed.append(path)
            logger.info("Removed disk %s", path)
        return removed
