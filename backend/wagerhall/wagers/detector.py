"""Deposit detection for wager escrow accounts.

A transaction counts as a deposit only when the escrow's token balance for the
wager mint grew by exactly the expected amount. The payer is attributed from a
matching outgoing balance change owned by one party, falling back to the
transaction signers. Anything ambiguous is reported but never credited.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from wagerhall.services.ledger import TransactionDetail

logger = logging.getLogger(__name__)


class DepositVerdict(str, Enum):
    FAILED = "failed"
    MEMO = "memo"
    BEFORE_BASELINE = "before_baseline"
    AMOUNT_MISMATCH = "amount_mismatch"
    UNATTRIBUTED = "unattributed"
    ATTRIBUTED = "attributed"


class DepositExpectation(BaseModel):
    """What a valid deposit for one wager side looks like."""

    custodial_accounts: list[str]
    mint: str
    party_a_wallet: str
    party_b_wallet: str
    amount_base: int
    baseline_slot: int = 0


class DepositDetection(BaseModel):
    verdict: DepositVerdict
    payer: str | None = None  # "a" or "b"
    method: str | None = None  # "balance" or "signer"

    @property
    def detected(self) -> bool:
        return self.verdict in (DepositVerdict.ATTRIBUTED, DepositVerdict.UNATTRIBUTED)

    @property
    def attributed(self) -> bool:
        return self.verdict is DepositVerdict.ATTRIBUTED


def _attribute(a: bool, b: bool) -> str | None:
    if a and not b:
        return "a"
    if b and not a:
        return "b"
    return None


def detect_deposit(tx: TransactionDetail, expectation: DepositExpectation) -> DepositDetection:
    """Decide whether ``tx`` funded one side of the wager described by ``expectation``."""
    if not tx.success:
        return DepositDetection(verdict=DepositVerdict.FAILED)
    if tx.memo_present:
        return DepositDetection(verdict=DepositVerdict.MEMO)
    if tx.slot < expectation.baseline_slot:
        return DepositDetection(verdict=DepositVerdict.BEFORE_BASELINE)

    custodial = set(expectation.custodial_accounts)
    deltas = [d for d in tx.balance_deltas if d.mint == expectation.mint]

    received = sum(d.delta for d in deltas if d.account in custodial)
    if received != expectation.amount_base:
        return DepositDetection(verdict=DepositVerdict.AMOUNT_MISMATCH)

    a_paid = b_paid = False
    for d in deltas:
        if d.account in custodial or d.delta != -expectation.amount_base:
            continue
        if d.owner == expectation.party_a_wallet:
            a_paid = True
        if d.owner == expectation.party_b_wallet:
            b_paid = True

    payer = _attribute(a_paid, b_paid)
    if payer:
        return DepositDetection(verdict=DepositVerdict.ATTRIBUTED, payer=payer, method="balance")

    if not a_paid and not b_paid:
        signers = set(tx.signers)
        payer = _attribute(
            expectation.party_a_wallet in signers, expectation.party_b_wallet in signers
        )
        if payer:
            return DepositDetection(
                verdict=DepositVerdict.ATTRIBUTED, payer=payer, method="signer"
            )

    logger.debug(f"Deposit {tx.signature} matched amount but could not be attributed")
    return DepositDetection(verdict=DepositVerdict.UNATTRIBUTED)
