"""SSH reachability probing and known_hosts maintenance."""

import logging
import os
import socket

import paramiko

from ocp_libvirt.commands import run_command
from ocp_libvirt.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class SSHProber:
    """Checks that a host accepts key-based SSH and runs a no-op command."""

    def __init__(self, connect_timeout: float = 10, known_hosts: str = "~/.ssh/known_hosts") -> None:
        self.connect_timeout = connect_timeout
        self.known_hosts = os.path.expanduser(known_hosts)

    def purge_host_key(self, host: str) -> None:
        """Remove cached host keys for ``host`` (``ssh-keygen -R``)."""
        logger.info("Removing old SSH host key for %s", host)
        if not os.path.exists(self.known_hosts):
            return
        run_command(["ssh-keygen", "-f", self.known_hosts, "-R", host], timeout=30)

    def probe(self, ip: str, user: str, key_path: str) -> bool:
        """Return True if ``true`` runs successfully over SSH on ``ip``."""
        key_filename = os.path.expanduser(key_path)
        if not os.path.isfile(key_filename):
            raise ConfigurationError(f"SSH private key not found: {key_filename}")

        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            ssh.connect(
                hostname=ip,
                username=user,
                key_filename=key_filename,
                timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            stdin, stdout, stderr = ssh.exec_command("true", timeout=self.connect_timeout)
            return stdout.channel.recv_exit_status() == 0
        except (paramiko.SSHException, socket.error) as e:
            logger.debug("SSH probe of %s@%s failed: %s", user, ip, e)
            return False
        finally:
            ssh.close()
