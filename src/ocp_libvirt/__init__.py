"""Provision OpenShift UPI clusters on a local libvirt/KVM hypervisor."""

__version__ = "0.1.0"
