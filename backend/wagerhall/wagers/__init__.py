"""Two-party token wager escrow."""

from .desk import WagerDesk, create_wager_desk, load_escrow_tables
from .detector import DepositDetection, DepositExpectation, DepositVerdict, detect_deposit
from .exceptions import (
    InvalidTransitionError,
    ParticipantBusyError,
    SessionNotFoundError,
    WagerError,
    WagerRejected,
)
from .match import MatchController, MatchHandle
from .models import (
    EscrowTable,
    MatchResult,
    Party,
    SessionStatus,
    SettlementReport,
    TransferRecord,
    WagerTerms,
)
from .registry import SessionRegistry
from .session import WagerSession
from .settlement import SettlementEngine

__all__ = [
    "WagerDesk",
    "create_wager_desk",
    "load_escrow_tables",
    "DepositDetection",
    "DepositExpectation",
    "DepositVerdict",
    "detect_deposit",
    "InvalidTransitionError",
    "ParticipantBusyError",
    "SessionNotFoundError",
    "WagerError",
    "WagerRejected",
    "MatchController",
    "MatchHandle",
    "EscrowTable",
    "MatchResult",
    "Party",
    "SessionStatus",
    "SettlementReport",
    "TransferRecord",
    "WagerTerms",
    "SessionRegistry",
    "WagerSession",
    "SettlementEngine",
]
