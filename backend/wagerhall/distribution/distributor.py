"""Pro-rata fee distributor.

Each run reads the fee wallet's token balance, distributes a share of the
growth since the last run to roster holders weighted by balance, and persists
the observed balance as the new baseline.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import logfire
from solders.keypair import Keypair

from wagerhall.amounts import format_base_units, to_base_units
from wagerhall.announcer import Announcer
from wagerhall.config import (
    ConfigurationError,
    DistributionConfig,
    Settings,
    validate_distribution_settings,
)
from wagerhall.services.ledger import LedgerClient, LedgerNotFoundError, load_keypair
from wagerhall.services.roster import RosterClient
from wagerhall.storage import (
    FeeDistributionState,
    load_distribution_state,
    save_distribution_state,
)

from .allocation import (
    Allocation,
    allocate_pro_rata,
    assert_within_pool,
    build_recipients,
    compute_pool,
)
from .models import DistributionReport, TransferOutcome

logger = logging.getLogger(__name__)


class FeeDistributor:
    def __init__(
        self,
        ledger: LedgerClient,
        roster: RosterClient,
        treasury: Keypair,
        fee_wallet: str,
        config: DistributionConfig,
        state_path: Path,
        announcer: Announcer | None = None,
    ):
        if str(treasury.pubkey()) != fee_wallet:
            raise ConfigurationError(
                f"Treasury key {treasury.pubkey()} does not control fee wallet {fee_wallet}"
            )
        self.ledger = ledger
        self.roster = roster
        self.treasury = treasury
        self.fee_wallet = fee_wallet
        self.config = config
        self.state_path = state_path
        self.announcer = announcer
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> DistributionReport | None:
        """Run one distribution cycle; ``None`` if a cycle is already running."""
        if self._lock.locked():
            logger.info("Fee distribution already running, skipping")
            return None

        async with self._lock:
            with logfire.span("fee distribution run"):
                report = await self._run()

        logger.info(report.summary())
        if self.announcer and not report.skipped_reason:
            await self.announcer.alert_operators(report.summary())
        return report

    async def _run(self) -> DistributionReport:
        report = DistributionReport()

        export = await self.roster.fetch_export()
        mint = export.require_token_mint()
        mint_info = await self.ledger.get_mint_info(mint)
        report.token_mint = mint
        report.decimals = mint_info.decimals

        recipients = build_recipients(export.roster, mint_info.decimals)
        report.recipients = len(recipients)
        if not recipients:
            # Fees stay pending until someone is eligible
            report.skipped_reason = "no_recipients"
            return report

        state = load_distribution_state(self.state_path)
        fee_account = self.ledger.associated_token_address(
            self.fee_wallet, mint, mint_info.token_program
        )
        try:
            current = await self.ledger.get_token_account_balance(fee_account)
        except LedgerNotFoundError:
            current = 0

        report.previous_balance_base = state.last_fee_balance_base
        report.current_balance_base = current
        report.delta_base = current - state.last_fee_balance_base

        if report.delta_base <= 0:
            self._advance(state, current, report)
            report.skipped_reason = "no_new_fees"
            return report

        report.pool_base = compute_pool(
            report.delta_base, self.config.pool_numerator, self.config.pool_denominator
        )
        min_pool = to_base_units(self.config.min_pool_tokens, mint_info.decimals)
        if report.pool_base < min_pool:
            if self.config.advance_baseline_on_dust:
                self._advance(state, current, report)
            report.skipped_reason = "pool_below_minimum"
            return report

        allocations = allocate_pro_rata(report.pool_base, recipients)
        if not allocations:
            self._advance(state, current, report)
            report.skipped_reason = "allocations_zero"
            return report

        assert_within_pool(allocations, report.pool_base)
        report.allocations = allocations

        logger.info(
            f"Distributing {format_base_units(report.pool_base, mint_info.decimals)} "
            f"of {report.delta_base} new base units to {len(allocations)} wallets"
        )

        try:
            report.transfers = await self._send_all(
                allocations, mint, mint_info.decimals, mint_info.token_program
            )
        finally:
            self._advance(state, current, report)

        return report

    async def _send_all(
        self, allocations: list[Allocation], mint: str, decimals: int, token_program: str
    ) -> list[TransferOutcome]:
        outcomes: list[TransferOutcome] = []
        size = self.config.concurrency

        for start in range(0, len(allocations), size):
            batch = allocations[start : start + size]
            outcomes.extend(
                await asyncio.gather(
                    *(self._send(a, mint, decimals, token_program) for a in batch)
                )
            )
        return outcomes

    async def _send(
        self, allocation: Allocation, mint: str, decimals: int, token_program: str
    ) -> TransferOutcome:
        try:
            signature = await self.ledger.transfer_token(
                self.treasury,
                allocation.wallet,
                mint,
                allocation.amount,
                decimals,
                token_program,
            )
        except Exception as e:
            logger.error(f"Fee transfer of {allocation.amount} to {allocation.wallet} failed: {e}")
            return TransferOutcome(
                wallet=allocation.wallet, amount_base=allocation.amount, ok=False, error=str(e)
            )

        return TransferOutcome(
            wallet=allocation.wallet,
            amount_base=allocation.amount,
            ok=True,
            signature=signature,
        )

    def _advance(
        self, state: FeeDistributionState, balance_base: int, report: DistributionReport
    ) -> None:
        save_distribution_state(state.advanced_to(balance_base), self.state_path)
        report.baseline_advanced = True
        logger.info(f"Fee baseline advanced to {balance_base}")


def create_fee_distributor(
    settings: Settings,
    ledger: LedgerClient,
    roster: RosterClient,
    announcer: Announcer | None = None,
) -> FeeDistributor:
    """Build a distributor from settings, failing fast on missing configuration."""
    validate_distribution_settings(settings)
    try:
        treasury = load_keypair(settings.treasury_secret)
    except ValueError as e:
        raise ConfigurationError(f"Treasury secret is invalid: {e}") from e

    return FeeDistributor(
        ledger=ledger,
        roster=roster,
        treasury=treasury,
        fee_wallet=settings.fee_wallet,
        config=settings.distribution,
        state_path=settings.state_path,
        announcer=announcer,
    )
