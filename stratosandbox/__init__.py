"""Build, launch and control StratoVirt micro-VM sandboxes: configuration, devices, QMP and lifecycle."""

__version__ = "0.1.0"