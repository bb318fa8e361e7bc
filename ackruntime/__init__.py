"""Caches, resource-aware logging and an adoption reconciler for Kubernetes resource controllers."""

__version__ = "0.1.0"