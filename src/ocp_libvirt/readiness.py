"""Blocking readiness gates: lease acquisition and SSH reachability."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ocp_libvirt.exceptions import ReadinessTimeout
from ocp_libvirt.interfaces import HostProber
from ocp_libvirt.vm_manager import LeaseRecord, VMLifecycleDriver

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INTERVAL = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry; ``max_attempts=None`` waits forever."""

    interval: float = DEFAULT_INTERVAL
    max_attempts: Optional[int] = None


def poll_until(
    probe: Callable[[], Optional[T]],
    policy: RetryPolicy,
    what: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``probe`` every ``policy.interval`` seconds until it returns a truthy value.

    The delay happens before every attempt, including the first. A falsy
    result means "not ready yet" and is retried; an exception from the probe is
    a hard error and propagates immediately.

    Raises:
        ReadinessTimeout: If ``policy.max_attempts`` attempts all returned falsy
    """
    attempt = 0
    while policy.max_attempts is None or attempt < policy.max_attempts:
        sleep(policy.interval)
        attempt += 1
        result = probe()
        if result:
            return result
        logger.debug("%s not ready (attempt %d)", what, attempt)
    raise ReadinessTimeout(what, attempt)


class ReadinessPoller:
    """Waits for VMs to get a lease and for hosts to accept SSH."""

    def __init__(
        self,
        driver: VMLifecycleDriver,
        prober: HostProber,
        lease_policy: RetryPolicy = RetryPolicy(),
        ssh_policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.driver = driver
        self.prober = prober
        self.lease_policy = lease_policy
        self.ssh_policy = ssh_policy
        self.sleep = sleep

    def wait_for_lease(self, vm_name: str) -> LeaseRecord:
        """
        Block until the VM has a leased IPv4 address with a MAC.

        Raises:
            HypervisorError: On the first failed lease query (not retried)
            ReadinessTimeout: If the lease policy has a cap and it is reached
        """
        logger.info("Waiting for %s to obtain an IP address", vm_name)
        lease = poll_until(
            lambda: self.driver.lookup_lease(vm_name), self.lease_policy, f"lease for {vm_name}", self.sleep
        )
        logger.info("Obtained IP: %s (MAC %s) for VM: %s", lease.ip, lease.mac, vm_name)
        return lease

    def wait_for_ssh(self, ip: str, hostname: str, key_path: str, user: str) -> None:
        """
        Purge stale host keys for ``ip`` and ``hostname``, then block until SSH works.

        Raises:
            ExternalCommandError: If the host keys cannot be purged
            ReadinessTimeout: If the SSH policy has a cap and it is reached
        """
        self.prober.purge_host_key(ip)
        self.prober.purge_host_key(hostname)

        def _probe() -> bool:
            logger.info("Trying to establish SSH connection to %s (%s)", hostname, ip)
            if self.prober.probe(ip, user, key_path):
                return True
            logger.info("SSH access not available yet, retrying...")
            return False

        poll_until(_probe, self.ssh_policy, f"SSH on {hostname}", self.sleep)
        logger.info("SSH access to %s established", ip)
