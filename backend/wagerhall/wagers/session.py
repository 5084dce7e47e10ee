"""Wager session state machine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from wagerhall.announcer import ChannelRef

from .detector import DepositExpectation
from .exceptions import InvalidTransitionError
from .match import MatchHandle
from .models import EscrowTable, Party, SessionStatus, SettlementReport, WagerTerms

logger = logging.getLogger(__name__)


class WagerSession:
    """One two-party wager.

    The session owns its background tasks (accept timer, funding poll loop,
    funding expiry timer, match wait). Status changes go through the methods
    below so the funding invariants hold: both sides funded is the only way
    into ``active_match``, and funding flags are frozen from then on.
    """

    def __init__(
        self,
        channel: ChannelRef,
        table: EscrowTable,
        party_a: Party,
        party_b: Party,
        terms: WagerTerms,
        token_mint: str,
        token_program: str,
        custodial_accounts: list[str],
        roster_wallets: dict[str, str],
        session_id: str | None = None,
    ):
        self.id = session_id or uuid4().hex[:12]
        self.channel = channel
        self.table = table
        self.party_a = party_a
        self.party_b = party_b
        self.terms = terms
        self.token_mint = token_mint
        self.token_program = token_program
        self.custodial_accounts = list(custodial_accounts)
        self.roster_wallets = dict(roster_wallets)

        self.status = SessionStatus.PENDING_ACCEPT
        self.funded_a = False
        self.funded_b = False
        self.baseline_slot: int | None = None
        self.processed: set[str] = set()

        self.created_at = datetime.now(timezone.utc)
        self.accepted_at: datetime | None = None
        self.funding_expires_at: datetime | None = None

        self.match_handle: MatchHandle | None = None
        self.settlement: SettlementReport | None = None
        self.tick_running = False

        self._closing = False
        self._tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return (
            f"WagerSession(id={self.id!r}, status={self.status.value}, "
            f"a={self.party_a.identity!r}, b={self.party_b.identity!r})"
        )

    @property
    def busy_key(self) -> str:
        return f"wager:{self.id}"

    @property
    def match_key(self) -> str:
        return f"match:{self.id}"

    @property
    def identities(self) -> tuple[str, str]:
        return self.party_a.identity, self.party_b.identity

    @property
    def both_funded(self) -> bool:
        return self.funded_a and self.funded_b

    @property
    def closing(self) -> bool:
        """True once a terminal transition has been claimed."""
        return self._closing

    def party(self, side: str) -> Party:
        if side == "a":
            return self.party_a
        if side == "b":
            return self.party_b
        raise ValueError(f"Unknown side: {side}")

    def funded_sides(self) -> list[str]:
        return [side for side, funded in (("a", self.funded_a), ("b", self.funded_b)) if funded]

    def involves(self, identity_a: str, identity_b: str) -> bool:
        return identity_a != identity_b and {identity_a, identity_b} == set(self.identities)

    def deposit_expectation(self) -> DepositExpectation:
        return DepositExpectation(
            custodial_accounts=self.custodial_accounts,
            mint=self.token_mint,
            party_a_wallet=self.party_a.wallet,
            party_b_wallet=self.party_b.wallet,
            amount_base=self.terms.amount_base,
            baseline_slot=self.baseline_slot or 0,
        )

    # Transitions

    def _require(self, *allowed: SessionStatus) -> None:
        if self._closing or self.status not in allowed:
            raise InvalidTransitionError(
                f"Session {self.id} is {self.status.value}, "
                f"expected {', '.join(s.value for s in allowed)}"
            )

    def accept(self, baseline_slot: int, fund_window_seconds: float) -> None:
        self._require(SessionStatus.PENDING_ACCEPT)
        now = datetime.now(timezone.utc)
        self.baseline_slot = baseline_slot
        self.accepted_at = now
        self.funding_expires_at = now + timedelta(seconds=fund_window_seconds)
        self.status = SessionStatus.FUNDING

    def funding_open(self, now: datetime | None = None) -> bool:
        if self._closing or self.status is not SessionStatus.FUNDING:
            return False
        if self.funding_expires_at is None:
            return True
        return (now or datetime.now(timezone.utc)) <= self.funding_expires_at

    def mark_funded(self, side: str) -> bool:
        """Set one side's funding flag; returns False if it was already set."""
        self._require(SessionStatus.FUNDING)
        if side == "a":
            if self.funded_a:
                return False
            self.funded_a = True
        elif side == "b":
            if self.funded_b:
                return False
            self.funded_b = True
        else:
            raise ValueError(f"Unknown side: {side}")
        return True

    def start_match(self) -> MatchHandle:
        self._require(SessionStatus.FUNDING)
        if not self.both_funded:
            raise InvalidTransitionError(f"Session {self.id} is not fully funded")
        self.status = SessionStatus.ACTIVE_MATCH
        self.match_handle = MatchHandle(self.id)
        return self.match_handle

    def claim_terminal(self, status: SessionStatus) -> bool:
        """Claim the single terminal transition; False if already claimed."""
        if not status.terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self._closing:
            return False
        self._closing = True
        self.status = status
        return True

    # Tasks

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self.busy_key}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Session {self.id} task {task.get_name()} failed: {task.exception()!r}"
            )

    def cancel_tasks(self) -> int:
        """Cancel outstanding tasks other than the one calling this."""
        current = asyncio.current_task()
        cancelled = 0
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
                cancelled += 1
        return cancelled
