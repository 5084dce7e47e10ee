"""Roster export service exceptions."""


class RosterError(Exception):
    """Base roster exception."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RosterFetchError(RosterError):
    """Export could not be fetched or reported an error."""

    pass


class RosterConfigError(RosterError):
    """Export is missing required configuration (e.g. token mint)."""

    pass
