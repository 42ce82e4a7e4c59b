"""Devices placed on a StratoVirt VM, each rendered as hypervisor command-line arguments."""