"""Data models for fee distribution runs."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .allocation import Allocation


class TransferOutcome(BaseModel):
    """Result of one recipient transfer."""

    wallet: str
    amount_base: int
    ok: bool
    signature: str | None = None
    error: str | None = None


class DistributionReport(BaseModel):
    """Summary of one distribution run."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    token_mint: str = ""
    decimals: int = 0
    recipients: int = 0
    previous_balance_base: int = 0
    current_balance_base: int = 0
    delta_base: int = 0
    pool_base: int = 0
    allocations: list[Allocation] = Field(default_factory=list)
    transfers: list[TransferOutcome] = Field(default_factory=list)
    baseline_advanced: bool = False
    skipped_reason: str | None = None

    @property
    def sent_base(self) -> int:
        return sum(t.amount_base for t in self.transfers if t.ok)

    @property
    def failed(self) -> list[TransferOutcome]:
        return [t for t in self.transfers if not t.ok]

    def summary(self) -> str:
        if self.skipped_reason:
            return (
                f"Fee distribution skipped ({self.skipped_reason}); "
                f"baseline {'advanced' if self.baseline_advanced else 'unchanged'}"
            )
        return (
            f"Fee distribution: delta {self.delta_base}, pool {self.pool_base}, "
            f"sent {self.sent_base} to {len(self.transfers) - len(self.failed)} wallets, "
            f"{len(self.failed)} failed"
        )
