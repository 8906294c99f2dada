#!/usr/bin/env python3
"""
src/ocp_libvirt/orchestrator.py

Sequences network setup, VM creation, lease pinning, hosts publication and SSH
readiness for an OpenShift UPI cluster on libvirt.

Two tracks, each strictly forward and fail-fast:

1. Load balancer: NETWORK_READY -> LB_CREATED -> LB_ADDRESSED -> LB_REACHABLE
2. Cohort: NETWORK_READY -> NODES_CREATED -> NODES_ADDRESSED -> BOOTSTRAP_REACHABLE

The first error aborts the run. Nothing that was already created is rolled
back; ``destroy()`` is the explicit cleanup.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, TypeVar

from ocp_libvirt.config import ClusterConfig
from ocp_libvirt.customize import ImageCustomizer
from ocp_libvirt.dhcp import DHCPPinner
from ocp_libvirt.dns import NameResolutionSynchronizer
from ocp_libvirt.exceptions import ConfigurationError, HypervisorError, OcpLibvirtError, ProvisioningError
from ocp_libvirt.hypervisor import LibvirtClient
from ocp_libvirt.interfaces import HostProber, Hypervisor, ServiceController
from ocp_libvirt.network import VirtualNetwork, VirtualNetworkManager
from ocp_libvirt.nodes import NodeSpec, NodeSpecBuilder
from ocp_libvirt.readiness import ReadinessPoller, RetryPolicy
from ocp_libvirt.ssh import SSHProber
from ocp_libvirt.systemd import SystemdService, dns_service_for
from ocp_libvirt.vm_manager import LeaseRecord, VMLifecycleDriver

logger = logging.getLogger(__name__)

T = TypeVar("T")

LB_SSH_USER = "root"
NODE_SSH_USER = "core"


class ProvisioningStage(Enum):
    NETWORK_READY = "network-ready"
    LB_CREATED = "lb-created"
    LB_ADDRESSED = "lb-addressed"
    LB_REACHABLE = "lb-reachable"
    NODES_CREATED = "nodes-created"
    NODES_ADDRESSED = "nodes-addressed"
    BOOTSTRAP_REACHABLE = "bootstrap-reachable"


_PREREQUISITES = {
    ProvisioningStage.NETWORK_READY: None,
    ProvisioningStage.LB_CREATED: ProvisioningStage.NETWORK_READY,
    ProvisioningStage.LB_ADDRESSED: ProvisioningStage.LB_CREATED,
    ProvisioningStage.LB_REACHABLE: ProvisioningStage.LB_ADDRESSED,
    ProvisioningStage.NODES_CREATED: ProvisioningStage.NETWORK_READY,
    ProvisioningStage.NODES_ADDRESSED: ProvisioningStage.NODES_CREATED,
    ProvisioningStage.BOOTSTRAP_REACHABLE: ProvisioningStage.NODES_ADDRESSED,
}


@dataclass
class ProvisionedNode:
    spec: NodeSpec
    lease: LeaseRecord


@dataclass
class VMStatus:
    name: str
    running: bool
    lease: Optional[LeaseRecord] = None


@dataclass
class ClusterState:
    """In-memory record of one provisioning run."""

    cluster_name: str
    base_domain: str
    network: Optional[VirtualNetwork] = None
    load_balancer: Optional[ProvisionedNode] = None
    created: List[NodeSpec] = field(default_factory=list)
    nodes: List[ProvisionedNode] = field(default_factory=list)
    stages: List[ProvisioningStage] = field(default_factory=list)

    def reached(self, stage: ProvisioningStage) -> bool:
        return stage in self.stages


class ClusterOrchestrator:
    """Provisions the load balancer and the bootstrap/master/worker cohort."""

    def __init__(
        self,
        config: ClusterConfig,
        hypervisor: Hypervisor,
        services: ServiceController,
        prober: HostProber,
        customizer: Optional[ImageCustomizer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.networks = VirtualNetworkManager(hypervisor)
        self.driver = VMLifecycleDriver(hypervisor)
        self.pinner = DHCPPinner(hypervisor)
        self.poller = ReadinessPoller(
            self.driver,
            prober,
            lease_policy=RetryPolicy(config.poll_interval, config.lease_max_attempts),
            ssh_policy=RetryPolicy(config.poll_interval, config.ssh_max_attempts),
            sleep=sleep,
        )
        self.dns = NameResolutionSynchronizer(
            services,
            hosts_dir=config.hosts_dir,
            dns_dir=config.dns_dir,
            settle_seconds=config.dns_settle_seconds,
            sleep=sleep,
        )
        self.customizer = customizer or ImageCustomizer()
        self.state = ClusterState(cluster_name=config.cluster_name, base_domain=config.base_domain)

    @classmethod
    def from_config(cls, config: ClusterConfig) -> "ClusterOrchestrator":
        """Wire the orchestrator to libvirt, systemd and paramiko."""
        return cls(
            config,
            hypervisor=LibvirtClient(config.libvirt_uri),
            services=SystemdService(),
            prober=SSHProber(),
            customizer=ImageCustomizer(),
        )

    # === STAGE BOOKKEEPING ===

    def _run(self, stage: str, node: Optional[str], step: Callable[[], T]) -> T:
        try:
            return step()
        except ProvisioningError:
            raise
        except (OcpLibvirtError, OSError) as e:
            logger.error("%s failed%s: %s", stage, f" for {node}" if node else "", e)
            raise ProvisioningError(stage, node, e) from e

    def _advance(self, stage: ProvisioningStage) -> None:
        required = _PREREQUISITES[stage]
        if required is not None and not self.state.reached(required):
            raise ProvisioningError(stage.value, None, RuntimeError(f"{required.value} has not been reached"))
        if not self.state.reached(stage):
            self.state.stages.append(stage)
        logger.info("Stage reached: %s", stage.value)

    def _publish(self, ip: str, *hostnames: str) -> None:
        if self.config.dns_upsert:
            self.dns.upsert_host(self.config.cluster_name, ip, *hostnames)
        else:
            self.dns.publish_host(self.config.cluster_name, ip, *hostnames)

    def _reload_resolver(self) -> None:
        self.dns.reload_resolver(dns_service_for(self.config.dns_dir))

    def _address(self, spec: NodeSpec, network: VirtualNetwork, *hostnames: str) -> LeaseRecord:
        lease = self._run("wait for lease", spec.name, lambda: self.poller.wait_for_lease(spec.name))
        self._run("DHCP reservation", spec.name, lambda: self.pinner.reserve(network.name, lease.mac, lease.ip))
        self._run("hosts entry", spec.name, lambda: self._publish(lease.ip, *hostnames))
        return lease

    # === PIPELINE ===

    def preflight(self) -> None:
        """Fail if VMs from a previous run of this cluster are still defined."""
        existing = self._run("preflight", None, lambda: self.driver.list_cluster_vms(self.config.cluster_name))
        if existing:
            raise ProvisioningError(
                "preflight", None, HypervisorError(f"found existing VM(s): {', '.join(existing)}")
            )
        logger.info("No leftover VMs found for cluster %s", self.config.cluster_name)

    def ensure_network(self) -> VirtualNetwork:
        network = self._run(
            "network setup",
            None,
            lambda: self.networks.ensure_network(
                octet=self.config.network_octet, existing_name=self.config.network_name
            ),
        )
        self.state.network = network
        self._advance(ProvisioningStage.NETWORK_READY)
        return network

    def _network(self) -> VirtualNetwork:
        if self.state.network is None:
            return self.ensure_network()
        return self.state.network

    def provision_load_balancer(self) -> ProvisionedNode:
        """Customize, create, address and SSH-gate the load balancer VM."""
        network = self._network()
        builder = NodeSpecBuilder(self.config, network=network.name)
        spec = builder.load_balancer()

        if spec.customization is not None:
            self._run(
                "image customization",
                spec.name,
                lambda: self.customizer.customize(spec.disk_path, spec.customization),
            )

        self._run("VM creation", spec.name, lambda: self.driver.create(spec))
        self.state.created.append(spec)
        self._advance(ProvisioningStage.LB_CREATED)

        lease = self._address(spec, network, *builder.lb_hostnames())
        self.state.load_balancer = ProvisionedNode(spec, lease)
        self._advance(ProvisioningStage.LB_ADDRESSED)

        self._run(
            "resolver configuration",
            spec.name,
            lambda: self.dns.write_resolver_config(self.config.cluster_name, self.config.base_domain, lease.ip),
        )
        self._run("resolver reload", spec.name, self._reload_resolver)

        self._run(
            "SSH readiness",
            spec.name,
            lambda: self.poller.wait_for_ssh(lease.ip, spec.hostname, self.config.ssh_key_path, LB_SSH_USER),
        )
        self._advance(ProvisioningStage.LB_REACHABLE)
        return self.state.load_balancer

    def _lb_ip(self, network: VirtualNetwork) -> str:
        if self.state.load_balancer is not None:
            return self.state.load_balancer.lease.ip
        if self.config.lb_ip:
            return self.config.lb_ip

        lb_spec = NodeSpecBuilder(self.config, network=network.name).load_balancer()
        lease = self._run("load balancer lookup", lb_spec.name, lambda: self.driver.lookup_lease(lb_spec.name))
        if lease is None:
            raise ProvisioningError(
                "load balancer lookup", lb_spec.name, ConfigurationError("load balancer has no IP address")
            )
        return lease.ip

    def provision_cohort(self) -> List[ProvisionedNode]:
        """
        Create bootstrap, masters and workers, then address each in that order,
        then wait for SSH on the bootstrap node.
        """
        network = self._network()
        lb_ip = self._lb_ip(network)
        specs = self._run(
            "node definitions", None, lambda: NodeSpecBuilder(self.config, network.name, lb_ip).cohort()
        )

        logger.info("Creating Bootstrap, Master, and Worker nodes...")
        for spec in specs:
            self._run("VM creation", spec.name, lambda: self.driver.create(spec))
            self.state.created.append(spec)
        self._advance(ProvisioningStage.NODES_CREATED)

        logger.info("Waiting for VMs to obtain IP addresses")
        for spec in specs:
            lease = self._address(spec, network, spec.hostname)
            self.state.nodes.append(ProvisionedNode(spec, lease))
        self._advance(ProvisioningStage.NODES_ADDRESSED)

        self._run("resolver reload", None, self._reload_resolver)

        bootstrap = self.state.nodes[0]
        self._run(
            "SSH readiness",
            bootstrap.spec.name,
            lambda: self.poller.wait_for_ssh(
                bootstrap.lease.ip, bootstrap.spec.hostname, self.config.ssh_key_path, NODE_SSH_USER
            ),
        )
        self._advance(ProvisioningStage.BOOTSTRAP_REACHABLE)
        return list(self.state.nodes)

    def provision(self) -> ClusterState:
        """Preflight, network, load balancer, then the cohort."""
        self.preflight()
        self.ensure_network()
        self.provision_load_balancer()
        self.provision_cohort()
        return self.state

    def status(self) -> List[VMStatus]:
        """Power state and current lease of every VM belonging to the cluster."""
        result = []
        for name in self.driver.list_cluster_vms(self.config.cluster_name):
            running = self.driver.is_running(name)
            lease = self.driver.lookup_lease(name) if running else None
            result.append(VMStatus(name=name, running=running, lease=lease))
        return result

    def destroy(self, keep_disks: bool = False) -> List[str]:
        """
        Remove every VM of the cluster, its install disks and its hosts/resolver files.

        The load balancer image, DHCP reservations and the network are left in
        place. With ``keep_disks`` the bootstrap, master and worker disks are kept
        too, and the next ``provision`` refuses to overwrite them.

        Returns:
            Names of the destroyed VMs
        """
        names = self._run("teardown", None, lambda: self.driver.list_cluster_vms(self.config.cluster_name))
        for name in names:
            self._run("teardown", name, lambda: self.driver.destroy(name))
        if not keep_disks:
            self._run(
                "teardown",
                None,
                lambda: self.driver.remove_install_disks(self.config.vm_dir, self.config.cluster_name),
            )
        removed = self._run("teardown", None, lambda: self.dns.remove_cluster_records(self.config.cluster_name))
        if removed:
            self._run("resolver reload", None, self._reload_resolver)
        return names
