"""Shared fakes for the ledger, roster, match controller and announcer."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from solders.keypair import Keypair

from wagerhall.announcer import ChannelRef
from wagerhall.config import DistributionConfig, WagerConfig
from wagerhall.services.ledger import (
    BalanceDelta,
    LedgerNotFoundError,
    LedgerTimeoutError,
    LedgerTransferError,
    MintInfo,
    TransactionDetail,
    TransactionRef,
)
from wagerhall.services.ledger.token import TOKEN_2022_PROGRAM_ID
from wagerhall.services.roster import RosterExport, RosterRow
from wagerhall.wagers import EscrowTable, WagerDesk

MINT = "MintAddress1111111111111111111111111111111"
DECIMALS = 6
CHANNEL_ID = "table-channel-1"


class FakeLedger:
    def __init__(self) -> None:
        self.sol_balance = Decimal("1")
        self.mint_info = MintInfo(
            address=MINT, decimals=DECIMALS, token_program=str(TOKEN_2022_PROGRAM_ID)
        )
        self.slot = 1_000
        self.slot_error: Exception | None = None
        self.signatures: dict[str, list[TransactionRef]] = {}
        self.details: dict[str, TransactionDetail] = {}
        self.detail_calls: list[str] = []
        self.token_balances: dict[str, int] = {}
        self.transfers: list[dict] = []
        self.failing_recipients: set[str] = set()
        self.failures: dict[str, int] = {}
        # Transfers that land but then time out waiting for confirmation
        self.unconfirmed_recipients: set[str] = set()
        # One-shot errors raised by get_transaction_detail
        self.detail_errors: dict[str, Exception] = {}

    async def get_balance(self, address: str) -> Decimal:
        return self.sol_balance

    async def get_mint_info(self, mint: str) -> MintInfo:
        return self.mint_info

    def associated_token_address(self, owner: str, mint: str, token_program: str = "") -> str:
        return f"ata:{owner}"

    async def resolve_token_accounts(self, owner: str, mint: str, token_program: str = "") -> list[str]:
        return [self.associated_token_address(owner, mint, token_program)]

    async def get_ledger_position(self) -> int:
        if self.slot_error:
            raise self.slot_error
        return self.slot

    async def list_recent_transactions(self, address: str, limit: int = 25) -> list[TransactionRef]:
        return list(self.signatures.get(address, []))[:limit]

    async def get_transaction_detail(self, signature: str) -> TransactionDetail | None:
        self.detail_calls.append(signature)
        if signature in self.detail_errors:
            raise self.detail_errors.pop(signature)
        return self.details.get(signature)

    async def get_token_account_balance(self, account: str) -> int:
        if account not in self.token_balances:
            raise LedgerNotFoundError(f"could not find account {account}")
        return self.token_balances[account]

    async def transfer_token(
        self,
        sender: Keypair,
        recipient_owner: str,
        mint: str,
        amount_base: int,
        decimals: int,
        token_program: str = "",
    ) -> str:
        if recipient_owner in self.failing_recipients:
            self.failures[recipient_owner] = self.failures.get(recipient_owner, 0) + 1
            raise LedgerTransferError(f"transfer to {recipient_owner} failed")
        self.transfers.append(
            {
                "sender": str(sender.pubkey()),
                "recipient": recipient_owner,
                "amount": amount_base,
                "decimals": decimals,
            }
        )
        signature = f"sig-{len(self.transfers)}"
        if recipient_owner in self.unconfirmed_recipients:
            raise LedgerTimeoutError(f"Transaction {signature} not confirmed in time")
        return signature

    def add_transaction(self, account: str, detail: TransactionDetail, failed: bool = False) -> None:
        self.signatures.setdefault(account, []).insert(
            0, TransactionRef(signature=detail.signature, slot=detail.slot, failed=failed)
        )
        self.details[detail.signature] = detail

    def transfers_to(self, recipient: str) -> list[dict]:
        return [t for t in self.transfers if t["recipient"] == recipient]


class FakeRoster:
    def __init__(self, rows: list[RosterRow] | None = None, token_mint: str = MINT) -> None:
        self.export = RosterExport(token_mint=token_mint, roster=rows or [])
        self.error: Exception | None = None

    async def fetch_export(self) -> RosterExport:
        if self.error:
            raise self.error
        return self.export


class FakeMatchController:
    def __init__(self) -> None:
        self.started: list[tuple] = []
        self.ended: list[tuple] = []
        self.handles = []
        self.start_error: Exception | None = None

    async def start_match(self, channel, party_a, party_b, handle) -> None:
        if self.start_error:
            raise self.start_error
        self.started.append((channel.channel_id, party_a, party_b))
        self.handles.append(handle)

    async def end_match(self, channel, party_a, party_b) -> None:
        self.ended.append((channel.channel_id, party_a, party_b))


class RecordingAnnouncer:
    def __init__(self) -> None:
        self.messages: list[str] = []
        self.alerts: list[str] = []

    async def announce(self, channel: ChannelRef, message: str) -> None:
        self.messages.append(message)

    async def alert_operators(self, message: str) -> None:
        self.alerts.append(message)


def deposit_tx(
    signature: str,
    escrow_account: str,
    payer_wallet: str,
    amount: int,
    slot: int = 2_000,
    signers: list[str] | None = None,
    memo: bool = False,
    success: bool = True,
    payer_account: str | None = None,
    extra: list[BalanceDelta] | None = None,
) -> TransactionDetail:
    """A token transfer of ``amount`` from ``payer_wallet`` into ``escrow_account``."""
    deltas = [
        BalanceDelta(
            account_index=1,
            account=payer_account or f"ata:{payer_wallet}",
            mint=MINT,
            owner=payer_wallet,
            pre=10 * amount,
            post=9 * amount,
        ),
        BalanceDelta(account_index=2, account=escrow_account, mint=MINT, owner="escrow", pre=0, post=amount),
    ]
    return TransactionDetail(
        signature=signature,
        slot=slot,
        success=success,
        memo_present=memo,
        signers=signers if signers is not None else [payer_wallet],
        balance_deltas=deltas + (extra or []),
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def roster() -> FakeRoster:
    return FakeRoster(
        [
            RosterRow(identity="alice", wallet="wallet-alice", balance=Decimal("500")),
            RosterRow(identity="bob", wallet="wallet-bob", balance=Decimal("300")),
            RosterRow(identity="carol", wallet="wallet-carol", balance=Decimal("200")),
        ]
    )


@pytest.fixture
def controller() -> FakeMatchController:
    return FakeMatchController()


@pytest.fixture
def announcer() -> RecordingAnnouncer:
    return RecordingAnnouncer()


@pytest.fixture
def escrow_table() -> EscrowTable:
    return EscrowTable(number=1, channel_id=CHANNEL_ID, keypair=Keypair())


@pytest.fixture
def channel() -> ChannelRef:
    return ChannelRef(guild_id="guild", channel_id=CHANNEL_ID)


@pytest.fixture
def make_desk(ledger, roster, controller, announcer, escrow_table):
    """Desk factory; long windows by default so tests drive ticks themselves."""

    def make(**overrides) -> WagerDesk:
        values = {
            "accept_window_seconds": 60.0,
            "fund_window_seconds": 60.0,
            "expiry_grace_seconds": 0.0,
            "poll_interval_seconds": 60.0,
        }
        values.update(overrides)
        return WagerDesk(
            ledger=ledger,
            roster=roster,
            tables=[escrow_table],
            fee_wallet="wallet-fees",
            config=WagerConfig(enabled=True, **values),
            match_controller=controller,
            announcer=announcer,
        )

    return make


@pytest.fixture
def treasury() -> Keypair:
    return Keypair()


@pytest.fixture
def distribution_config() -> DistributionConfig:
    return DistributionConfig(enabled=True, min_pool_tokens=Decimal("0.000001"))


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "distribution-state.json"
