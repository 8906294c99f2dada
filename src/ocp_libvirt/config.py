"""Cluster configuration.

A single immutable ``ClusterConfig`` is built once (from the environment, a
YAML file, or CLI overrides) and passed explicitly to every component.
"""

import dataclasses
import ipaddress
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from ocp_libvirt.exceptions import ConfigurationError

NETWORK_MANAGER_DNS_DIR = "/etc/NetworkManager/dnsmasq.d"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _env_int(name, 0)


@dataclass(frozen=True)
class ClusterConfig:
    """Cluster-wide provisioning parameters."""

    cluster_name: str = "ocp4"
    base_domain: str = "local"

    n_masters: int = 3
    n_workers: int = 2
    master_cpu: int = 4
    master_mem: int = 16000
    worker_cpu: int = 2
    worker_mem: int = 8000
    bootstrap_cpu: int = 4
    bootstrap_mem: int = 16000
    lb_cpu: int = 4
    lb_mem: int = 1536
    disk_size_gb: int = 50

    # Exactly one of these selects the libvirt network
    network_octet: Optional[str] = None
    network_name: Optional[str] = None

    libvirt_uri: str = "qemu:///system"
    vm_dir: str = "/var/lib/libvirt/images"
    dns_dir: str = NETWORK_MANAGER_DNS_DIR
    hosts_dir: str = "/etc"

    ws_port: int = 1234
    install_location: str = "rhcos-install"
    rhcos_image: str = "rhcos-metal.raw.gz"
    rhcos_image_arg: str = "coreos.inst.image_url"
    lb_ip: Optional[str] = None

    ssh_key_path: str = "sshkey"
    ssh_pub_key_path: str = "sshkey.pub"
    haproxy_cfg_path: str = "haproxy.cfg"
    bootstrap_ign_path: str = "bootstrap.ign"
    customize_lb: bool = True

    poll_interval: float = 5.0
    lease_max_attempts: Optional[int] = None
    ssh_max_attempts: Optional[int] = None
    dns_settle_seconds: float = 5.0
    dns_upsert: bool = False

    @property
    def libvirt_network(self) -> str:
        """Name of the libvirt network the cluster attaches to."""
        if self.network_octet:
            return f"ocp-{self.network_octet}"
        return self.network_name or ""

    @property
    def cluster_domain(self) -> str:
        return f"{self.cluster_name}.{self.base_domain}"

    @property
    def lb_disk_path(self) -> str:
        return os.path.join(self.vm_dir, f"{self.cluster_name}-lb.qcow2")

    def validate(self) -> "ClusterConfig":
        """Check parameter ranges and mutually exclusive options.

        Returns:
            The same config, to allow chaining.

        Raises:
            ConfigurationError: If any parameter is invalid.
        """
        if not self.cluster_name:
            raise ConfigurationError("cluster name must not be empty")
        if not self.base_domain:
            raise ConfigurationError("base domain must not be empty")
        if self.n_masters <= 0:
            raise ConfigurationError("masters must be > 0")
        if self.n_workers < 0:
            raise ConfigurationError("workers cannot be < 0")

        for name in (
            "master_cpu",
            "master_mem",
            "worker_cpu",
            "worker_mem",
            "bootstrap_cpu",
            "bootstrap_mem",
            "lb_cpu",
            "lb_mem",
            "disk_size_gb",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"invalid value for {name}: {getattr(self, name)}")

        if self.network_octet and self.network_name:
            raise ConfigurationError(
                "specify either a libvirt network name or a libvirt network octet, not both"
            )
        if not self.network_octet and not self.network_name:
            raise ConfigurationError("either a libvirt network name or a libvirt network octet is required")
        if self.network_octet:
            validate_octet(self.network_octet)

        if self.lb_ip:
            try:
                ipaddress.IPv4Address(self.lb_ip)
            except ValueError:
                raise ConfigurationError(f"load balancer IP is not an IPv4 address: {self.lb_ip}")

        if self.poll_interval < 0:
            raise ConfigurationError("poll interval cannot be negative")
        for name in ("lease_max_attempts", "ssh_max_attempts"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ConfigurationError(f"{name} must be at least 1 (unset to wait forever), got {value}")
        return self

    def with_overrides(self, **overrides: Any) -> "ClusterConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_environment(cls) -> "ClusterConfig":
        """Build a config from ``OCP_*`` environment variables (and ``.env``)."""
        load_dotenv()

        octet = os.getenv("OCP_LIBVIRT_OCT") or None
        network = os.getenv("OCP_LIBVIRT_NETWORK") or None
        if octet is None and network is None:
            octet = "100"

        defaults = cls()
        return cls(
            cluster_name=os.getenv("OCP_CLUSTER_NAME", defaults.cluster_name),
            base_domain=os.getenv("OCP_CLUSTER_DOMAIN", defaults.base_domain),
            n_masters=_env_int("OCP_MASTERS", defaults.n_masters),
            n_workers=_env_int("OCP_WORKERS", defaults.n_workers),
            master_cpu=_env_int("OCP_MASTER_CPU", defaults.master_cpu),
            master_mem=_env_int("OCP_MASTER_MEM", defaults.master_mem),
            worker_cpu=_env_int("OCP_WORKER_CPU", defaults.worker_cpu),
            worker_mem=_env_int("OCP_WORKER_MEM", defaults.worker_mem),
            bootstrap_cpu=_env_int("OCP_BOOTSTRAP_CPU", defaults.bootstrap_cpu),
            bootstrap_mem=_env_int("OCP_BOOTSTRAP_MEM", defaults.bootstrap_mem),
            lb_cpu=_env_int("OCP_LB_CPU", defaults.lb_cpu),
            lb_mem=_env_int("OCP_LB_MEM", defaults.lb_mem),
            disk_size_gb=_env_int("OCP_DISK_SIZE_GB", defaults.disk_size_gb),
            network_octet=octet,
            network_name=network,
            libvirt_uri=os.getenv("OCP_LIBVIRT_URI", defaults.libvirt_uri),
            vm_dir=os.getenv("OCP_VM_DIR", defaults.vm_dir),
            dns_dir=os.getenv("OCP_DNS_DIR", defaults.dns_dir),
            hosts_dir=os.getenv("OCP_HOSTS_DIR", defaults.hosts_dir),
            ws_port=_env_int("OCP_WS_PORT", defaults.ws_port),
            install_location=os.getenv("OCP_INSTALL_LOCATION", defaults.install_location),
            rhcos_image=os.getenv("OCP_RHCOS_IMAGE", defaults.rhcos_image),
            rhcos_image_arg=os.getenv("OCP_RHCOS_IMAGE_ARG", defaults.rhcos_image_arg),
            lb_ip=os.getenv("OCP_LB_IP") or None,
            ssh_key_path=os.path.expanduser(os.getenv("OCP_SSH_KEY_PATH", defaults.ssh_key_path)),
            ssh_pub_key_path=os.path.expanduser(os.getenv("OCP_SSH_PUB_KEY_PATH", defaults.ssh_pub_key_path)),
            haproxy_cfg_path=os.getenv("OCP_HAPROXY_CFG", defaults.haproxy_cfg_path),
            bootstrap_ign_path=os.getenv("OCP_BOOTSTRAP_IGN", defaults.bootstrap_ign_path),
            customize_lb=_env_bool("OCP_CUSTOMIZE_LB", defaults.customize_lb),
            poll_interval=_env_float("OCP_POLL_INTERVAL", defaults.poll_interval),
            lease_max_attempts=_env_optional_int("OCP_LEASE_MAX_ATTEMPTS"),
            ssh_max_attempts=_env_optional_int("OCP_SSH_MAX_ATTEMPTS"),
            dns_settle_seconds=_env_float("OCP_DNS_SETTLE_SECONDS", defaults.dns_settle_seconds),
            dns_upsert=_env_bool("OCP_DNS_UPSERT", defaults.dns_upsert),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterConfig":
        """Load a config from a YAML mapping of field names to values.

        Raises:
            ConfigurationError: If the file is missing, malformed, or has unknown keys.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"config file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping")

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown config keys in {path}: {', '.join(unknown)}")

        if "network_octet" in data and data["network_octet"] is not None:
            data["network_octet"] = str(data["network_octet"])
        return cls(**data)


def validate_octet(octet: str) -> int:
    """Parse a network octet, raising ConfigurationError outside 0..255."""
    try:
        value = int(octet)
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid libvirt network octet: {octet!r}")
    if value < 0 or value > 255:
        raise ConfigurationError(f"invalid libvirt network octet: {octet!r}")
    return value
