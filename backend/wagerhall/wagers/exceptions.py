class WagerError(Exception):
    """Base exception for wager escrow errors."""

    pass


class WagerRejected(WagerError):
    """A wager request or response was refused; the message is user-facing."""

    pass


class ParticipantBusyError(WagerRejected):
    """A participant already belongs to a live wager or match."""

    def __init__(self, message: str, identities: tuple[str, ...] = ()):
        super().__init__(message)
        self.identities = identities


class SessionNotFoundError(WagerError):
    """No live session matches the lookup."""

    pass


class InvalidTransitionError(WagerError):
    """The session is not in a state that allows the requested transition."""

    pass
