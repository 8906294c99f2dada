"""Per-role VM definitions derived from the cluster configuration."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ocp_libvirt.config import ClusterConfig
from ocp_libvirt.customize import CustomizeParams
from ocp_libvirt.exceptions import ConfigurationError


class NodeRole(Enum):
    BOOTSTRAP = "bootstrap"
    MASTER = "master"
    WORKER = "worker"
    LOAD_BALANCER = "load-balancer"


@dataclass(frozen=True)
class NodeSpec:
    """Immutable definition of one cluster VM."""

    role: NodeRole
    index: Optional[int]
    cluster_name: str
    base_domain: str
    cpus: int
    memory_mb: int
    disk_path: str
    network: str
    disk_size_gb: int = 0
    location: Optional[str] = None
    extra_args: Optional[str] = None
    customization: Optional[CustomizeParams] = None

    @property
    def short_name(self) -> str:
        """Role-level host label: ``bootstrap``, ``master-2``, ``lb``."""
        if self.role == NodeRole.LOAD_BALANCER:
            return "lb"
        if self.index is None:
            return self.role.value
        return f"{self.role.value}-{self.index}"

    @property
    def name(self) -> str:
        """libvirt domain name, unique within the hypervisor."""
        return f"{self.cluster_name}-{self.short_name}"

    @property
    def hostname(self) -> str:
        return f"{self.short_name}.{self.cluster_name}.{self.base_domain}"

    @property
    def is_install(self) -> bool:
        """True for roles that network-boot the installer onto a fresh disk."""
        return self.location is not None


def install_kernel_args(config: ClusterConfig, lb_ip: str, ignition: str) -> str:
    base_url = f"http://{lb_ip}:{config.ws_port}"
    return (
        "nomodeset rd.neednet=1 coreos.inst=yes coreos.inst.install_dev=vda "
        f"{config.rhcos_image_arg}={base_url}/{config.rhcos_image} "
        f"coreos.inst.ignition_url={base_url}/{ignition}"
    )


class NodeSpecBuilder:
    """Builds NodeSpecs for bootstrap, masters, workers and the load balancer."""

    def __init__(self, config: ClusterConfig, network: Optional[str] = None, lb_ip: Optional[str] = None) -> None:
        self.config = config
        self.network = network or config.libvirt_network
        self.lb_ip = lb_ip or config.lb_ip

    def _disk_path(self, short_name: str) -> str:
        return f"{self.config.vm_dir}/{self.config.cluster_name}-{short_name}.qcow2"

    def _install_spec(self, role: NodeRole, index: Optional[int], cpus: int, memory_mb: int) -> NodeSpec:
        if not self.lb_ip:
            raise ConfigurationError("load balancer IP is required to build install-time node definitions")
        short_name = role.value if index is None else f"{role.value}-{index}"
        return NodeSpec(
            role=role,
            index=index,
            cluster_name=self.config.cluster_name,
            base_domain=self.config.base_domain,
            cpus=cpus,
            memory_mb=memory_mb,
            disk_path=self._disk_path(short_name),
            disk_size_gb=self.config.disk_size_gb,
            network=self.network,
            location=self.config.install_location,
            extra_args=install_kernel_args(self.config, self.lb_ip, f"{role.value}.ign"),
        )

    def bootstrap(self) -> NodeSpec:
        return self._install_spec(NodeRole.BOOTSTRAP, None, self.config.bootstrap_cpu, self.config.bootstrap_mem)

    def master(self, index: int) -> NodeSpec:
        if not 1 <= index <= self.config.n_masters:
            raise ConfigurationError(f"master index {index} out of range 1..{self.config.n_masters}")
        return self._install_spec(NodeRole.MASTER, index, self.config.master_cpu, self.config.master_mem)

    def worker(self, index: int) -> NodeSpec:
        if not 1 <= index <= self.config.n_workers:
            raise ConfigurationError(f"worker index {index} out of range 1..{self.config.n_workers}")
        return self._install_spec(NodeRole.WORKER, index, self.config.worker_cpu, self.config.worker_mem)

    def masters(self) -> List[NodeSpec]:
        return [self.master(i) for i in range(1, self.config.n_masters + 1)]

    def workers(self) -> List[NodeSpec]:
        return [self.worker(i) for i in range(1, self.config.n_workers + 1)]

    def cohort(self) -> List[NodeSpec]:
        """Bootstrap, then masters, then workers."""
        return [self.bootstrap(), *self.masters(), *self.workers()]

    def load_balancer(self) -> NodeSpec:
        customization = None
        if self.config.customize_lb:
            customization = CustomizeParams(
                ssh_pub_key_path=self.config.ssh_pub_key_path,
                packages=("haproxy", "bind-utils"),
                uninstall=("cloud-init",),
                copy_in=(
                    (self.config.haproxy_cfg_path, "/etc/haproxy"),
                    (self.config.bootstrap_ign_path, "/opt/"),
                ),
                run_commands=("systemctl daemon-reload", "systemctl enable haproxy"),
                selinux_relabel=True,
            )
        return NodeSpec(
            role=NodeRole.LOAD_BALANCER,
            index=None,
            cluster_name=self.config.cluster_name,
            base_domain=self.config.base_domain,
            cpus=self.config.lb_cpu,
            memory_mb=self.config.lb_mem,
            disk_path=self.config.lb_disk_path,
            network=self.network,
            customization=customization,
        )

    def lb_hostnames(self) -> List[str]:
        domain = self.config.cluster_domain
        return [f"lb.{domain}", f"api.{domain}", f"api-int.{domain}"]
