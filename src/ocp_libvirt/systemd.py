"""systemd service control through systemctl."""

import logging
from dataclasses import dataclass
from enum import Enum

from ocp_libvirt.commands import run_command
from ocp_libvirt.config import NETWORK_MANAGER_DNS_DIR
from ocp_libvirt.exceptions import ExternalCommandError

logger = logging.getLogger(__name__)

NETWORK_MANAGER = "NetworkManager"
DNSMASQ = "dnsmasq"
VIRTNETWORKD = "virtnetworkd"


class ServiceState(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"


@dataclass
class ServiceStatus:
    """Observed state of a systemd unit."""

    name: str
    state: ServiceState
    enabled: bool

    @property
    def is_active(self) -> bool:
        return self.state == ServiceState.ACTIVE


def dns_service_for(dns_dir: str) -> str:
    """Pick the resolver service from the dnsmasq config directory convention."""
    if dns_dir.rstrip("/") == NETWORK_MANAGER_DNS_DIR:
        return NETWORK_MANAGER
    return DNSMASQ


class SystemdService:
    """Start, stop, restart and inspect units with systemctl."""

    def __init__(self, timeout: float = 120) -> None:
        self.timeout = timeout

    def _systemctl(self, *args: str) -> str:
        return run_command(["systemctl", *args], timeout=self.timeout)

    def _query(self, verb: str, name: str) -> str:
        # is-active/is-enabled exit non-zero for inactive or disabled units
        try:
            return self._systemctl(verb, name)
        except ExternalCommandError as e:
            if e.returncode == 127 or e.returncode < 0:
                raise
            return e.output.strip()

    def status(self, name: str) -> ServiceStatus:
        active = self._query("is-active", name)
        if active == ServiceState.ACTIVE.value:
            state = ServiceState.ACTIVE
        elif active == ServiceState.INACTIVE.value:
            state = ServiceState.INACTIVE
        else:
            state = ServiceState.FAILED
        enabled = self._query("is-enabled", name) == "enabled"
        return ServiceStatus(name=name, state=state, enabled=enabled)

    def start(self, name: str) -> None:
        if self.status(name).is_active:
            logger.info("%s is already running", name)
            return
        self._systemctl("start", name)
        logger.info("%s started successfully", name)

    def stop(self, name: str) -> None:
        if self.status(name).state == ServiceState.INACTIVE:
            logger.info("%s is already stopped", name)
            return
        self._systemctl("stop", name)
        logger.info("%s stopped successfully", name)

    def restart(self, name: str) -> None:
        self._systemctl("restart", name)
        logger.info("%s restarted successfully", name)

    def reload(self, name: str) -> None:
        self._systemctl("reload", name)
        logger.info("%s reloaded successfully", name)

    def enable(self, name: str) -> None:
        if self.status(name).enabled:
            logger.info("%s is already enabled", name)
            return
        self._systemctl("enable", name)
        logger.info("%s enabled successfully", name)

    def disable(self, name: str) -> None:
        if not self.status(name).enabled:
            logger.info("%s is already disabled", name)
            return
        self._systemctl("disable", name)
        logger.info("%s disabled successfully", name)
