"""Simulated swarm communication channel."""

from .link import LinkFailure, LinkResult, LinkSimulator

__all__ = [
    "LinkFailure",
    "LinkResult",
    "LinkSimulator",
]
