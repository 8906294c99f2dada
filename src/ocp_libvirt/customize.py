"""Offline disk image customization with virt-customize."""

import logging
from dataclasses import dataclass
from typing import List, Tuple

from ocp_libvirt.commands import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomizeParams:
    """Changes to apply to a disk image before first boot."""

    ssh_pub_key_path: str
    packages: Tuple[str, ...] = ()
    uninstall: Tuple[str, ...] = ()
    copy_in: Tuple[Tuple[str, str], ...] = ()
    run_commands: Tuple[str, ...] = ()
    selinux_relabel: bool = False


class ImageCustomizer:
    """Runs virt-customize against an image file in place."""

    def __init__(self, libguestfs_backend: str = "direct", timeout: float = 1800) -> None:
        self.libguestfs_backend = libguestfs_backend
        self.timeout = timeout

    @staticmethod
    def build_command(image_path: str, params: CustomizeParams) -> List[str]:
        args = ["virt-customize", "-a", image_path]
        args += ["--ssh-inject", f"root:file:{params.ssh_pub_key_path}"]
        if params.packages:
            args += ["--install", ",".join(params.packages)]
        if params.uninstall:
            args += ["--uninstall", ",".join(params.uninstall)]
        for source, destination in params.copy_in:
            args += ["--copy-in", f"{source}:{destination}"]
        if params.selinux_relabel:
            args.append("--selinux-relabel")
        for command in params.run_commands:
            args += ["--run-command", command]
        return args

    def customize(self, image_path: str, params: CustomizeParams) -> None:
        """
        Customize ``image_path`` in place.

        Raises:
            ExternalCommandError: With virt-customize's combined output on failure
        """
        logger.info("Customizing VM image at %s", image_path)
        run_command(
            self.build_command(image_path, params),
            timeout=self.timeout,
            env={"LIBGUESTFS_BACKEND": self.libguestfs_backend},
        )
        logger.info("VM customization of %s completed successfully", image_path)
