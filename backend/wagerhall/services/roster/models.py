"""Roster export models."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .exceptions import RosterConfigError

TOKEN_MINT_PLACEHOLDER = "YOUR_TOKEN_MINT"


class RosterRow(BaseModel):
    """One participant row: chat identity, wallet and token balance."""

    identity: str = ""
    wallet: str = ""
    balance: Decimal = Decimal(0)
    player_ok: bool = False
    elite_ok: bool = False

    @field_validator("identity", "wallet", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("balance", mode="before")
    @classmethod
    def parse_balance(cls, v: Any) -> Decimal:
        if v is None or v == "":
            return Decimal(0)
        if isinstance(v, Decimal):
            return v
        try:
            # str() first: never build a Decimal from a binary float
            return Decimal(str(v).strip())
        except InvalidOperation:
            return Decimal(0)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RosterRow:
        balance = data.get("balance")
        if balance is None:
            balance = data.get("hold", data.get("tokenBalance"))
        return cls(
            identity=data.get("discordId", data.get("identity", "")),
            wallet=data.get("wallet", ""),
            balance=balance,
            player_ok=bool(data.get("playerOk", False)),
            elite_ok=bool(data.get("eliteOk", False)),
        )


class RosterExport(BaseModel):
    """Full roster export payload."""

    token_mint: str = ""
    roster: list[RosterRow] = Field(default_factory=list)
    locks: dict[str, list[str]] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RosterExport:
        config = data.get("config") or {}
        return cls(
            token_mint=str(config.get("tokenMint") or "").strip(),
            roster=[RosterRow.from_api(row) for row in data.get("roster") or [] if row],
            locks={
                str(wallet): [str(s) for s in streams or []]
                for wallet, streams in (data.get("locks") or {}).items()
            },
        )

    @property
    def token_mint_set(self) -> bool:
        return bool(self.token_mint) and TOKEN_MINT_PLACEHOLDER not in self.token_mint

    def require_token_mint(self) -> str:
        if not self.token_mint_set:
            raise RosterConfigError("Token mint is not set in the roster export")
        return self.token_mint

    def wallet_map(self) -> dict[str, str]:
        """Identity to wallet for rows carrying both."""
        return {row.identity: row.wallet for row in self.roster if row.identity and row.wallet}


class RosterUpdate(BaseModel):
    """Write-back row for the identity-sync collaborator."""

    wallet: str
    locked: Decimal = Decimal(0)
    total: Decimal = Decimal(0)
    manager_total_ok: bool = False

    def to_api(self) -> dict[str, Any]:
        return {
            "wallet": self.wallet,
            "locked": str(self.locked),
            "total": str(self.total),
            "managerTotalOk": self.manager_total_ok,
        }
