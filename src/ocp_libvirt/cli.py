#!/usr/bin/env python3
"""
Command-line interface for OpenShift UPI clusters on libvirt.

    ocp-libvirt network          # Create or reuse the cluster network
    ocp-libvirt create-lb        # Customize and boot the load balancer
    ocp-libvirt create-nodes     # Boot bootstrap, masters and workers
    ocp-libvirt provision        # All of the above
    ocp-libvirt status           # Show cluster VMs and their addresses
    ocp-libvirt destroy          # Remove cluster VMs, install disks and DNS records

Configuration comes from OCP_* environment variables (and .env), or from a
YAML file given with --config; command-line options override both.
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ocp_libvirt.config import ClusterConfig
from ocp_libvirt.exceptions import OcpLibvirtError
from ocp_libvirt.orchestrator import ClusterOrchestrator, ProvisionedNode

# Initialize CLI app and console
app = typer.Typer(
    name="ocp-libvirt",
    help="OpenShift UPI on libvirt provisioning CLI",
    add_completion=False
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


class Settings:
    """Global options collected by the app callback."""

    def __init__(self, config_file: Optional[Path] = None, **overrides: object) -> None:
        self.config_file = config_file
        self.overrides = overrides

    def load(self, **overrides: object) -> ClusterConfig:
        if self.config_file:
            config = ClusterConfig.from_yaml(self.config_file)
        else:
            config = ClusterConfig.from_environment()
        # an explicit network choice on the command line replaces the other one
        merged = {**self.overrides, **overrides}
        if merged.get("network_name"):
            config = config.with_overrides(network_octet="")
        elif merged.get("network_octet"):
            config = config.with_overrides(network_name="")
        return config.with_overrides(**merged).validate()


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="YAML configuration file (default: OCP_* environment variables)"
    ),
    cluster_name: Optional[str] = typer.Option(None, "--cluster-name", help="OpenShift cluster name"),
    base_domain: Optional[str] = typer.Option(None, "--cluster-domain", help="Base DNS domain"),
    network_octet: Optional[str] = typer.Option(
        None, "--libvirt-oct", help="Create or reuse network ocp-<octet> (192.168.<octet>.0/24)"
    ),
    network_name: Optional[str] = typer.Option(None, "--libvirt-network", help="Use an existing libvirt network"),
    vm_dir: Optional[str] = typer.Option(None, "--vm-dir", help="Directory for VM disk images"),
    dns_dir: Optional[str] = typer.Option(None, "--dns-dir", help="dnsmasq configuration directory"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level")
) -> None:
    """Provision OpenShift UPI clusters on a local libvirt hypervisor."""
    logging.getLogger().setLevel(log_level.upper())
    ctx.obj = Settings(
        config_file,
        cluster_name=cluster_name,
        base_domain=base_domain,
        network_octet=network_octet,
        network_name=network_name,
        vm_dir=vm_dir,
        dns_dir=dns_dir,
    )


def get_orchestrator(ctx: typer.Context, **overrides: object) -> ClusterOrchestrator:
    try:
        config = ctx.obj.load(**overrides)
    except OcpLibvirtError as e:
        console.print(f"[red]❌ Invalid configuration: {e}[/red]")
        raise typer.Exit(1)
    return ClusterOrchestrator.from_config(config)


def print_nodes(title: str, nodes: List[ProvisionedNode]) -> None:
    table = Table(title=title)
    table.add_column("VM", style="cyan")
    table.add_column("Hostname")
    table.add_column("IP", style="green")
    table.add_column("MAC")
    for node in nodes:
        table.add_row(node.spec.name, node.spec.hostname, node.lease.ip, node.lease.mac)
    console.print(table)


@app.command("network")
def network_command(ctx: typer.Context) -> None:
    """Create (or reuse) the libvirt network for the cluster."""
    orchestrator = get_orchestrator(ctx)
    try:
        network = orchestrator.ensure_network()
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Libvirt Network")
    table.add_column("Name", style="cyan")
    table.add_column("Bridge")
    table.add_column("Gateway", style="green")
    table.add_row(network.name, network.bridge, network.gateway or "-")
    console.print(table)


@app.command("create-lb")
def create_lb(
    ctx: typer.Context,
    skip_customize: bool = typer.Option(
        False, "--skip-customize", help="Boot the load balancer image without virt-customize"
    )
) -> None:
    """Customize, boot and address the load balancer VM."""
    orchestrator = get_orchestrator(ctx, customize_lb=False if skip_customize else None)
    console.print("🚀 Creating load balancer...")
    try:
        orchestrator.ensure_network()
        node = orchestrator.provision_load_balancer()
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    print_nodes("Load Balancer", [node])
    console.print(f"✅ Load balancer reachable at {node.lease.ip}")


@app.command("create-nodes")
def create_nodes(
    ctx: typer.Context,
    masters: Optional[int] = typer.Option(None, "--masters", "-m", help="Number of master nodes"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Number of worker nodes"),
    lb_ip: Optional[str] = typer.Option(
        None, "--lb-ip", help="Load balancer IP serving images and ignition files"
    )
) -> None:
    """Create bootstrap, master and worker VMs and wait for the bootstrap node."""
    orchestrator = get_orchestrator(ctx, n_masters=masters, n_workers=workers, lb_ip=lb_ip)
    console.print("🚀 Creating Bootstrap, Master, and Worker nodes...")
    try:
        orchestrator.ensure_network()
        nodes = orchestrator.provision_cohort()
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    print_nodes("Cluster Nodes", nodes)
    console.print("✅ Bootstrap node is reachable over SSH")


@app.command("provision")
def provision(
    ctx: typer.Context,
    masters: Optional[int] = typer.Option(None, "--masters", "-m", help="Number of master nodes"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Number of worker nodes")
) -> None:
    """Run the whole pipeline: network, load balancer, then cluster nodes."""
    orchestrator = get_orchestrator(ctx, n_masters=masters, n_workers=workers)
    console.print(f"🚀 Provisioning cluster {orchestrator.config.cluster_domain}...")
    try:
        state = orchestrator.provision()
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        console.print("Created resources were left in place; run 'ocp-libvirt destroy' to clean up")
        raise typer.Exit(1)

    print_nodes("Cluster Nodes", [state.load_balancer, *state.nodes])
    console.print(f"✅ Cluster {orchestrator.config.cluster_domain} provisioned")


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show the cluster's VMs, power state and leased addresses."""
    orchestrator = get_orchestrator(ctx)
    try:
        vms = orchestrator.status()
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    if not vms:
        console.print(f"No VMs found for cluster {orchestrator.config.cluster_name}")
        return

    table = Table(title=f"Cluster {orchestrator.config.cluster_domain}")
    table.add_column("VM", style="cyan")
    table.add_column("State")
    table.add_column("IP", style="green")
    table.add_column("MAC")
    for vm in vms:
        state = "[green]running[/green]" if vm.running else "[yellow]shut off[/yellow]"
        table.add_row(vm.name, state, vm.lease.ip if vm.lease else "-", vm.lease.mac if vm.lease else "-")
    console.print(table)


@app.command("destroy")
def destroy(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    keep_disks: bool = typer.Option(
        False, "--keep-disks", help="Keep bootstrap, master and worker disk images"
    )
) -> None:
    """Remove every VM of the cluster, its install disks and its hosts/dnsmasq files."""
    orchestrator = get_orchestrator(ctx)
    cluster = orchestrator.config.cluster_name
    if not yes:
        typer.confirm(f"Destroy all VMs of cluster {cluster}?", abort=True)

    try:
        names = orchestrator.destroy(keep_disks=keep_disks)
    except OcpLibvirtError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    for name in names:
        console.print(f"🗑️  {name}")
    console.print(f"✅ Destroyed {len(names)} VM(s) of cluster {cluster}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
