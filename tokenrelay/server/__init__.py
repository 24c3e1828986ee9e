"""Relay server bounded context for tokenrelay."""

from tokenrelay.server.app import RelayApp
from tokenrelay.server.session import RelaySession

__all__ = [
    "RelayApp",
    "RelaySession",
]
