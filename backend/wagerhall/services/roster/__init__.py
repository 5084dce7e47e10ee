"""Roster export service."""

from .client import RosterClient, create_roster_client
from .config import RosterConfig
from .exceptions import RosterConfigError, RosterError, RosterFetchError
from .models import RosterExport, RosterRow, RosterUpdate

__all__ = [
    "RosterClient",
    "create_roster_client",
    "RosterConfig",
    "RosterError",
    "RosterFetchError",
    "RosterConfigError",
    "RosterExport",
    "RosterRow",
    "RosterUpdate",
]
