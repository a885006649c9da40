"""RouterOS subnet discovery module."""

from .scanner import (
    Candidate,
    DiscoveryEngine,
    enumerate_hosts,
    iter_candidates,
    parse_subnet,
)

__all__ = [
    "Candidate",
    "DiscoveryEngine",
    "enumerate_hosts",
    "iter_candidates",
    "parse_subnet",
]
