"""Ping and lease controllers, node status patches, stats types, pod filters and TLS settings for a virtual Kubernetes node."""

__version__ = "0.1.0"