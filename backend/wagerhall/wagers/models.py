"""Data models for wager sessions and their settlement."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from solders.keypair import Keypair

from wagerhall.amounts import whole_tokens_to_base_units


class SessionStatus(str, Enum):
    PENDING_ACCEPT = "pending_accept"
    FUNDING = "funding"
    ACTIVE_MATCH = "active_match"
    SETTLED = "settled"
    EXPIRED = "expired"
    DECLINED = "declined"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.SETTLED, SessionStatus.EXPIRED, SessionStatus.DECLINED}
)


class Party(BaseModel):
    """A wager participant: chat identity plus linked wallet."""

    identity: str
    wallet: str


class WagerTerms(BaseModel):
    """Economic terms; every derived amount is in integer base units."""

    amount_tokens: int = Field(gt=0)
    decimals: int = Field(ge=0)
    fee_bps: int = Field(ge=0, le=10_000)

    @property
    def amount_base(self) -> int:
        return whole_tokens_to_base_units(self.amount_tokens, self.decimals)

    @property
    def pot_base(self) -> int:
        return 2 * self.amount_base

    @property
    def fee_base(self) -> int:
        return (self.pot_base * self.fee_bps) // 10_000

    @property
    def winner_payout_base(self) -> int:
        return self.pot_base - self.fee_base

    @property
    def fee_percent(self) -> str:
        return f"{self.fee_bps / 100:g}%"


class EscrowTable(BaseModel):
    """A wager channel and the escrow keypair that custodies its funds."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    number: int  # 1-based, as shown to players
    channel_id: str
    keypair: Keypair

    @property
    def owner(self) -> str:
        return str(self.keypair.pubkey())


class MatchResult(BaseModel):
    """Outcome reported by the match controller."""

    winner_identity: str | None = None
    ended_by_admin: bool = False


class TransferRecord(BaseModel):
    purpose: str  # payout, fee or refund
    recipient: str
    amount_base: int
    signature: str | None = None
    error: str | None = None
    attempts: int = 1
    # Submitted but never confirmed; it may still land
    unconfirmed: bool = False

    @property
    def ok(self) -> bool:
        return self.signature is not None and self.error is None


class SettlementReport(BaseModel):
    """What a terminal transition did with the escrowed funds."""

    reason: str
    transfers: list[TransferRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def transfers_for(self, purpose: str) -> list[TransferRecord]:
        return [t for t in self.transfers if t.purpose == purpose]

    @property
    def failed_refunds(self) -> list[TransferRecord]:
        return [t for t in self.transfers_for("refund") if not t.ok]
