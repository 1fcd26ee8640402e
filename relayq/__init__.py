"""relayq: durable job queue with fire/collect HTTP dispatch over PostgreSQL."""

__version__ = "0.1.0"
