"""
Broker module.
Contains TLS setup, the broker connection and queue topology provisioning.
"""

from filepuller.broker.connection import connect, open_jetstream
from filepuller.broker.tls import load_tls_context
from filepuller.broker.topology import Topology, provision_topology

__all__ = [
    "load_tls_context",
    "connect",
    "open_jetstream",
    "provision_topology",
    "Topology",
]
