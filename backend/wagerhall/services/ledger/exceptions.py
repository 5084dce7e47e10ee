class LedgerError(Exception):
    """Base exception for ledger RPC errors."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class LedgerRPCError(LedgerError):
    """Transport failure or JSON-RPC error response."""

    pass


class LedgerNotFoundError(LedgerError):
    """Account or transaction does not exist."""

    pass


class LedgerTimeoutError(LedgerError):
    """Submitted transaction was not confirmed in time."""

    pass


class LedgerTransferError(LedgerError):
    """Token transfer was rejected or failed on-chain."""

    pass
