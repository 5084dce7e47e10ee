from .client import LedgerClient, create_ledger_client
from .config import LedgerConfig
from .exceptions import (
    LedgerError,
    LedgerNotFoundError,
    LedgerRPCError,
    LedgerTimeoutError,
    LedgerTransferError,
)
from .keys import load_keypair
from .models import BalanceDelta, MintInfo, TransactionDetail, TransactionRef
from .token import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

__all__ = [
    "LedgerClient",
    "create_ledger_client",
    "LedgerConfig",
    "LedgerError",
    "LedgerNotFoundError",
    "LedgerRPCError",
    "LedgerTimeoutError",
    "LedgerTransferError",
    "load_keypair",
    "BalanceDelta",
    "MintInfo",
    "TransactionDetail",
    "TransactionRef",
    "TOKEN_2022_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
]
