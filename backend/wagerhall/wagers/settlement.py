"""Payout and refund transfers for wager sessions reaching a terminal state."""

from __future__ import annotations

import logging

from wagerhall.amounts import format_base_units
from wagerhall.services.ledger import LedgerClient, LedgerTransferError

from .models import MatchResult, SettlementReport, TransferRecord
from .session import WagerSession

logger = logging.getLogger(__name__)


class SettlementEngine:
    """Moves escrowed funds out of a session's escrow table.

    Transfer errors never propagate: every outcome is recorded on the
    returned report so the caller can always finish the session. Only a
    transfer the ledger rejected is retried; any other failure may have
    landed and is left for an operator.
    """

    def __init__(self, ledger: LedgerClient, fee_wallet: str, refund_attempts: int = 2):
        self.ledger = ledger
        self.fee_wallet = fee_wallet
        self.refund_attempts = max(1, refund_attempts)

    async def _transfer(
        self, session: WagerSession, purpose: str, recipient: str, amount_base: int, attempts: int = 1
    ) -> TransferRecord:
        record = TransferRecord(purpose=purpose, recipient=recipient, amount_base=amount_base)

        for attempt in range(1, attempts + 1):
            record.attempts = attempt
            try:
                record.signature = await self.ledger.transfer_token(
                    session.table.keypair,
                    recipient,
                    session.token_mint,
                    amount_base,
                    session.terms.decimals,
                    session.token_program,
                )
                record.error = None
                logger.info(
                    f"Session {session.id} {purpose} of "
                    f"{format_base_units(amount_base, session.terms.decimals)} to {recipient}: "
                    f"{record.signature}"
                )
                return record
            except LedgerTransferError as e:
                record.error = str(e) or e.__class__.__name__
                logger.warning(
                    f"Session {session.id} {purpose} to {recipient} failed "
                    f"(attempt {attempt}/{attempts}): {record.error}"
                )
            except Exception as e:
                record.error = str(e) or e.__class__.__name__
                record.unconfirmed = True
                logger.error(
                    f"Session {session.id} {purpose} to {recipient} has unknown outcome, "
                    f"not retrying: {record.error}"
                )
                return record

        return record

    async def refund(self, session: WagerSession, sides: list[str], report: SettlementReport) -> None:
        for side in sides:
            party = session.party(side)
            record = await self._transfer(
                session, "refund", party.wallet, session.terms.amount_base, self.refund_attempts
            )
            report.transfers.append(record)
            if not record.ok:
                outcome = "is unconfirmed, check before resending" if record.unconfirmed else "failed"
                message = (
                    f"Refund of {session.terms.amount_tokens} tokens to {party.identity} "
                    f"({party.wallet}) from table {session.table.number} {outcome}: {record.error}"
                )
                logger.error(f"Session {session.id}: {message}")
                report.errors.append(message)

    async def refund_funded(self, session: WagerSession, reason: str) -> SettlementReport:
        """Refund exactly the sides that funded; nothing moves if neither did."""
        report = SettlementReport(reason=reason)
        await self.refund(session, session.funded_sides(), report)
        return report

    async def refund_both(self, session: WagerSession, reason: str) -> SettlementReport:
        report = SettlementReport(reason=reason)
        await self.refund(session, ["a", "b"], report)
        return report

    async def settle_match(self, session: WagerSession, result: MatchResult) -> SettlementReport:
        if result.ended_by_admin:
            return await self.refund_both(session, "ended_by_admin")
        if not result.winner_identity:
            return await self.refund_both(session, "tie")

        winner_wallet = session.roster_wallets.get(result.winner_identity)
        if not winner_wallet:
            report = await self.refund_both(session, "winner_not_on_roster")
            report.errors.insert(
                0, f"Winner {result.winner_identity} has no wallet on the roster"
            )
            return report

        report = SettlementReport(reason="payout")
        payout = await self._transfer(
            session, "payout", winner_wallet, session.terms.winner_payout_base
        )
        report.transfers.append(payout)

        if payout.unconfirmed:
            # Outcome unknown; refunds wait for an operator
            report.reason = "payout_unconfirmed"
            report.errors.append(
                f"Payout to {result.winner_identity} ({winner_wallet}) is unconfirmed: "
                f"{payout.error}. Check before refunding."
            )
            return report

        if not payout.ok:
            report.reason = "payout_failed"
            report.errors.append(f"Payout to {result.winner_identity} failed: {payout.error}")
            await self.refund(session, ["a", "b"], report)
            return report

        if session.terms.fee_base > 0:
            fee = await self._transfer(session, "fee", self.fee_wallet, session.terms.fee_base)
            report.transfers.append(fee)
            if not fee.ok:
                # Fee stays in escrow; the winner has been paid
                logger.error(f"Session {session.id} fee transfer failed: {fee.error}")
                report.errors.append(f"Fee transfer failed: {fee.error}")

        return report
