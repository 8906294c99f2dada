"""Per-cluster hosts records and dnsmasq configuration.

Records live in ``<hosts_dir>/hosts.<cluster>``, which dnsmasq serves through
an ``addn-hosts`` line in ``<dns_dir>/<cluster>.conf``.
"""

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ocp_libvirt.exceptions import ConfigurationError
from ocp_libvirt.interfaces import ServiceController
from ocp_libvirt.systemd import VIRTNETWORKD

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DNSEntry:
    """One hosts line: an IP and the names that resolve to it."""

    ip: str
    hostnames: Sequence[str]

    def to_line(self) -> str:
        return " ".join([self.ip, *self.hostnames])


class NameResolutionSynchronizer:
    """Maintains cluster host mappings and restarts the resolver."""

    def __init__(
        self,
        services: ServiceController,
        hosts_dir: str = "/etc",
        dns_dir: str = "/etc/NetworkManager/dnsmasq.d",
        settle_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.services = services
        self.hosts_dir = hosts_dir
        self.dns_dir = dns_dir
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    def hosts_file(self, cluster_name: str) -> str:
        return os.path.join(self.hosts_dir, f"hosts.{cluster_name}")

    def resolver_config_file(self, cluster_name: str) -> str:
        return os.path.join(self.dns_dir, f"{cluster_name}.conf")

    def publish_host(self, cluster_name: str, ip: str, *hostnames: str) -> DNSEntry:
        """
        Append ``ip hostname...`` to the cluster hosts file.

        Existing lines are never rewritten, so publishing the same host twice
        yields two lines.
        """
        entry = self._entry(ip, hostnames)
        path = self.hosts_file(cluster_name)
        with open(path, "a") as f:
            f.write(entry.to_line() + "\n")
        logger.info("Added hosts entry to %s: %s", path, entry.to_line())
        return entry

    def upsert_host(self, cluster_name: str, ip: str, *hostnames: str) -> DNSEntry:
        """Write ``ip hostname...``, dropping existing lines that share any hostname."""
        entry = self._entry(ip, hostnames)
        path = self.hosts_file(cluster_name)
        names = set(hostnames)

        kept: List[str] = []
        if os.path.exists(path):
            with open(path) as f:
                for line in f:
                    fields = line.split()
                    if len(fields) > 1 and not line.lstrip().startswith("#") and names & set(fields[1:]):
                        logger.info("Replacing stale hosts entry in %s: %s", path, line.strip())
                        continue
                    kept.append(line if line.endswith("\n") else line + "\n")

        kept.append(entry.to_line() + "\n")

        # Write to temporary file next to the hosts file, then replace atomically
        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", dir=self.hosts_dir, prefix=f"hosts.{cluster_name}.", suffix=".tmp", delete=False
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                tmp_file.writelines(kept)
            os.replace(tmp_path, path)
        except OSError:
            # Cleanup temp file
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise
        logger.info("Set hosts entry in %s: %s", path, entry.to_line())
        return entry

    def read_entries(self, cluster_name: str) -> List[DNSEntry]:
        path = self.hosts_file(cluster_name)
        if not os.path.exists(path):
            return []
        entries = []
        with open(path) as f:
            for line in f:
                fields = line.split()
                if len(fields) < 2 or fields[0].startswith("#"):
                    continue
                entries.append(DNSEntry(ip=fields[0], hostnames=tuple(fields[1:])))
        return entries

    def write_resolver_config(self, cluster_name: str, base_domain: str, lb_ip: str) -> str:
        """Point dnsmasq at the cluster hosts file and send ``*.apps`` to the load balancer."""
        domain = f"{cluster_name}.{base_domain}"
        content = (
            f"local=/{domain}/\n"
            f"addn-hosts={self.hosts_file(cluster_name)}\n"
            f"address=/apps.{domain}/{lb_ip}\n"
        )
        path = self.resolver_config_file(cluster_name)
        with open(path, "w") as f:
            f.write(content)
        logger.info("Wrote resolver configuration %s", path)
        return path

    def reload_resolver(self, service_name: str) -> None:
        """Restart the resolver, let it settle, then restart libvirt's network daemon."""
        self.services.restart(service_name)
        self.sleep(self.settle_seconds)
        self.services.restart(VIRTNETWORKD)

    def remove_cluster_records(self, cluster_name: str) -> List[str]:
        """Delete the cluster hosts file and resolver fragment; returns removed paths."""
        removed = []
        for path in (self.hosts_file(cluster_name), self.resolver_config_file(cluster_name)):
            if os.path.exists(path):
                os.remove(path)
                removed.append(path)
                logger.info("Removed %s", path)
        return removed

    @staticmethod
    def _entry(ip: str, hostnames: Sequence[str]) -> DNSEntry:
        if not ip:
            raise ConfigurationError("cannot publish a hosts entry without an IP")
        if not hostnames:
            raise ConfigurationError(f"no hostnames given for {ip}")
        return DNSEntry(ip=ip, hostnames=tuple(hostnames))
