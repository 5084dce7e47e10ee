"""Roster export service config."""

from pydantic import BaseModel


class RosterConfig(BaseModel):
    """Roster export config."""

    export_url: str = ""
    post_secret: str = ""
    timeout_seconds: float = 30.0
