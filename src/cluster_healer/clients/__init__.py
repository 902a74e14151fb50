"""Typed clients for the Cluster API and the Node Control API."""

from .cluster import ClusterClient
from .node_control import NodeControlClient

__all__ = ["ClusterClient", "NodeControlClient"]
