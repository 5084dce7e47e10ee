"""Wager desk: the front-end facing side of the escrow.

The desk validates wager requests, runs each session's timers and deposit
polling, hands funded sessions to the match controller and routes every
terminal transition through the settlement engine exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import logfire

from wagerhall.amounts import format_base_units, parse_whole_tokens
from wagerhall.announcer import Announcer, ChannelRef, LoggingAnnouncer, TelegramAnnouncer
from wagerhall.config import ConfigurationError, Settings, WagerConfig, validate_wager_settings
from wagerhall.services.ledger import LedgerClient, LedgerError, TransactionRef, load_keypair
from wagerhall.services.roster import RosterClient, RosterConfigError, RosterError
from wagerhall.services.telegram import TelegramClient

from .detector import DepositVerdict, detect_deposit
from .exceptions import (
    InvalidTransitionError,
    ParticipantBusyError,
    SessionNotFoundError,
    WagerRejected,
)
from .match import MatchController, MatchHandle
from .models import (
    EscrowTable,
    MatchResult,
    Party,
    SessionStatus,
    SettlementReport,
    WagerTerms,
)
from .registry import SessionRegistry
from .session import WagerSession
from .settlement import SettlementEngine

logger = logging.getLogger(__name__)

RULES = "exact amount, linked wallet only, no memo, one active wager per player"


class WagerDesk:
    def __init__(
        self,
        ledger: LedgerClient,
        roster: RosterClient,
        tables: list[EscrowTable],
        fee_wallet: str,
        config: WagerConfig,
        match_controller: MatchController,
        announcer: Announcer | None = None,
        registry: SessionRegistry | None = None,
    ):
        self.ledger = ledger
        self.roster = roster
        self.tables = {table.channel_id: table for table in tables}
        self.config = config
        self.match_controller = match_controller
        self.announcer = announcer or LoggingAnnouncer()
        self.registry = registry or SessionRegistry()
        self.settlement = SettlementEngine(ledger, fee_wallet)

    def table_for(self, channel_id: str) -> EscrowTable | None:
        return self.tables.get(channel_id)

    async def _announce(self, session: WagerSession, message: str) -> None:
        try:
            await self.announcer.announce(session.channel, message)
        except Exception as e:
            logger.warning(f"Announcement for session {session.id} failed: {e}")

    async def _alert(self, message: str) -> None:
        try:
            await self.announcer.alert_operators(message)
        except Exception as e:
            logger.warning(f"Operator alert failed: {e}")

    # Requests

    async def create_wager(
        self, channel: ChannelRef, challenger: str, opponent: str, amount: str | int
    ) -> WagerSession:
        """Open a wager in ``channel``; raises WagerRejected with a user-facing reason."""
        table = self.table_for(channel.channel_id)
        if table is None:
            raise WagerRejected("Wagers are only allowed in the wager channels.")

        tokens = parse_whole_tokens(str(amount))
        if tokens is None:
            raise WagerRejected("Amount must be a whole number of tokens.")
        if not self.config.min_tokens <= tokens <= self.config.max_tokens:
            raise WagerRejected(
                f"Wager must be between {self.config.min_tokens} and "
                f"{self.config.max_tokens} tokens."
            )

        if challenger == opponent:
            raise WagerRejected("You can't wager yourself.")
        if self.registry.is_busy(challenger) or self.registry.is_busy(opponent):
            raise ParticipantBusyError(
                "One of the players is already in an active wager.",
                tuple(i for i in (challenger, opponent) if self.registry.is_busy(i)),
            )

        try:
            export = await self.roster.fetch_export()
            mint = export.require_token_mint()
        except RosterConfigError as e:
            raise WagerRejected("Token mint is not set yet in the roster export.") from e
        except RosterError as e:
            logger.error(f"Roster export unavailable: {e}")
            raise WagerRejected("Roster is unavailable right now, try again shortly.") from e

        wallets = export.wallet_map()
        if challenger not in wallets:
            raise WagerRejected("Your wallet isn't on the roster yet.")
        if opponent not in wallets:
            raise WagerRejected("That user's wallet isn't on the roster yet.")

        try:
            sol = await self.ledger.get_balance(table.owner)
            if sol < self.config.min_escrow_sol:
                raise WagerRejected(
                    f"Table {table.number} is paused (escrow low on SOL for fees)."
                )
            mint_info = await self.ledger.get_mint_info(mint)
            accounts = await self.ledger.resolve_token_accounts(
                table.owner, mint, mint_info.token_program
            )
        except LedgerError as e:
            logger.error(f"Ledger unavailable while opening wager: {e}")
            raise WagerRejected("The ledger is unavailable right now, try again shortly.") from e

        session = WagerSession(
            channel=channel,
            table=table,
            party_a=Party(identity=challenger, wallet=wallets[challenger]),
            party_b=Party(identity=opponent, wallet=wallets[opponent]),
            terms=WagerTerms(
                amount_tokens=tokens,
                decimals=mint_info.decimals,
                fee_bps=self.config.fee_bps,
            ),
            token_mint=mint,
            token_program=mint_info.token_program,
            custodial_accounts=accounts,
            roster_wallets=wallets,
        )

        # Awaits above may have let another wager claim a player
        self.registry.reserve(session.busy_key, *session.identities)
        self.registry.register(session)
        logger.info(
            f"Wager {session.id} created on table {table.number}: "
            f"{challenger} vs {opponent} for {tokens} tokens"
        )

        await self._announce(
            session,
            f"{challenger} challenged {opponent} to a {tokens} token wager "
            f"on table {table.number}. {opponent} has "
            f"{self.config.accept_window_seconds:g}s to accept or decline.",
        )
        session.spawn(self._accept_timer(session), "accept-timer")
        return session

    async def respond(self, session_id: str, responder: str, accept: bool) -> WagerSession:
        """Accept or decline a pending wager on behalf of the invited player."""
        session = self.registry.find(session_id)
        if session is None:
            raise WagerRejected("This wager no longer exists.")
        if responder != session.party_b.identity:
            raise WagerRejected("Only the invited player can accept or decline.")
        if session.closing or session.status is not SessionStatus.PENDING_ACCEPT:
            raise WagerRejected("This wager is no longer waiting for a response.")

        if not accept:
            await self._finish(session, SessionStatus.DECLINED, "declined", self._no_transfers)
            return session

        try:
            baseline = await self.ledger.get_ledger_position()
        except LedgerError as e:
            logger.error(f"Session {session.id}: could not read ledger position: {e}")
            raise WagerRejected("Could not start funding right now, try accepting again.") from e

        try:
            session.accept(baseline, self.config.fund_window_seconds)
        except InvalidTransitionError as e:
            raise WagerRejected("This wager is no longer waiting for a response.") from e

        logger.info(f"Session {session.id} accepted; funding baseline slot {baseline}")
        await self._announce(session, self._funding_instructions(session))

        session.spawn(self._poll_loop(session), "poll")
        session.spawn(self._funding_timer(session), "funding-timer")
        return session

    def _funding_instructions(self, session: WagerSession) -> str:
        terms = session.terms
        expires = "-"
        if session.funding_expires_at:
            expires = session.funding_expires_at.strftime("%H:%M:%S UTC")
        return (
            f"Wager accepted. Each player sends exactly {terms.amount_tokens} tokens to "
            f"{session.table.owner} (table {session.table.number}) before {expires}. "
            f"Pot {format_base_units(terms.pot_base, terms.decimals)}, "
            f"fee {terms.fee_percent}, "
            f"winner receives {format_base_units(terms.winner_payout_base, terms.decimals)}. "
            f"Rules: {RULES}."
        )

    async def force_end(self, identity_a: str, identity_b: str) -> SettlementReport | None:
        """Administrative end of the live wager between two players; refunds only."""
        session = self.registry.find_by_parties(identity_a, identity_b)
        if session is None:
            raise SessionNotFoundError("No active wager found for those two players.")

        in_match = session.status is SessionStatus.ACTIVE_MATCH

        async def settle() -> SettlementReport:
            if in_match:
                try:
                    await self.match_controller.end_match(
                        session.channel, session.party_a.identity, session.party_b.identity
                    )
                except Exception as e:
                    logger.error(f"Session {session.id}: ending match failed: {e}")
                return await self.settlement.refund_both(session, "admin_force_end")
            return await self.settlement.refund_funded(session, "admin_force_end")

        return await self._finish(session, SessionStatus.SETTLED, "admin_force_end", settle)

    async def shutdown(self) -> None:
        """Cancel all session tasks; no transfers are made."""
        sessions = self.registry.live_sessions()
        self.registry.close()
        if sessions:
            logger.info(f"Wager desk shut down with {len(sessions)} live sessions")

    # Timers

    async def _accept_timer(self, session: WagerSession) -> None:
        await asyncio.sleep(self.config.accept_window_seconds)
        if session.status is SessionStatus.PENDING_ACCEPT:
            await self._finish(session, SessionStatus.EXPIRED, "accept_timeout", self._no_transfers)

    async def _funding_timer(self, session: WagerSession) -> None:
        await asyncio.sleep(self.config.fund_window_seconds + self.config.expiry_grace_seconds)
        if session.status is SessionStatus.FUNDING:
            await self._finish(
                session,
                SessionStatus.EXPIRED,
                "funding_timeout",
                lambda: self.settlement.refund_funded(session, "funding_timeout"),
            )

    async def _poll_loop(self, session: WagerSession) -> None:
        while session.funding_open():
            try:
                await self.poll_once(session)
            except Exception as e:
                logger.error(f"Session {session.id}: deposit poll failed: {e!r}")
            if not session.funding_open():
                break
            await asyncio.sleep(self.config.poll_interval_seconds)

    # Deposit polling

    async def poll_once(self, session: WagerSession) -> None:
        """One deposit polling tick; overlapping ticks for a session are skipped."""
        if session.tick_running or not session.funding_open():
            return

        session.tick_running = True
        try:
            await self._poll(session)
        finally:
            session.tick_running = False

    async def _poll(self, session: WagerSession) -> None:
        refs: dict[str, TransactionRef] = {}
        for account in session.custodial_accounts:
            try:
                listed = await self.ledger.list_recent_transactions(
                    account, limit=self.config.signature_limit
                )
            except LedgerError as e:
                logger.warning(f"Session {session.id}: listing {account} failed: {e}")
                continue
            for ref in listed:
                if ref.signature and ref.signature not in session.processed:
                    refs.setdefault(ref.signature, ref)

        expectation = session.deposit_expectation()
        for ref in sorted(refs.values(), key=lambda r: r.slot):
            if not session.funding_open():
                return

            if ref.failed or (ref.slot and ref.slot < expectation.baseline_slot):
                session.processed.add(ref.signature)
                continue

            try:
                detail = await self.ledger.get_transaction_detail(ref.signature)
            except LedgerError as e:
                logger.warning(f"Session {session.id}: fetching {ref.signature} failed: {e}")
                continue
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(
                    f"Session {session.id}: malformed detail for {ref.signature}: {e!r}"
                )
                continue
            if detail is None:
                continue

            if not session.funding_open():
                return
            session.processed.add(ref.signature)

            detection = detect_deposit(detail, expectation)
            if detection.verdict is DepositVerdict.UNATTRIBUTED:
                logger.warning(
                    f"Session {session.id}: deposit {ref.signature} could not be attributed"
                )
                await self._alert(
                    f"Wager {session.id} (table {session.table.number}) received an "
                    f"unattributed deposit {ref.signature}; manual review needed."
                )
                continue
            if not detection.attributed:
                continue

            party = session.party(detection.payer)
            if session.mark_funded(detection.payer):
                logger.info(
                    f"Session {session.id}: {party.identity} funded via "
                    f"{detection.method} match ({ref.signature})"
                )
                await self._announce(session, f"{party.identity} has funded the wager.")

            if session.both_funded:
                await self._begin_match(session)
                return

    # Match handoff

    async def _begin_match(self, session: WagerSession) -> None:
        handle = session.start_match()
        session.cancel_tasks()
        a, b = session.identities

        # Hand the hold to the match with no await in between
        self.registry.release(session.busy_key, a, b)
        self.registry.reserve(session.match_key, a, b)
        await self._announce(session, "Both players paid. Match starting now.")

        try:
            await self.match_controller.start_match(session.channel, a, b, handle)
        except Exception as e:
            logger.error(f"Session {session.id}: match start failed: {e}")
            await self._finish(
                session,
                SessionStatus.SETTLED,
                "match_start_failed",
                lambda: self.settlement.refund_both(session, "match_start_failed"),
            )
            return

        session.spawn(self._await_match(session, handle), "match")

    async def _await_match(self, session: WagerSession, handle: MatchHandle) -> None:
        result = await handle.wait()
        await self.on_match_end(session.id, result)

    async def on_match_end(self, session_id: str, result: MatchResult) -> SettlementReport | None:
        session = self.registry.find(session_id)
        if session is None or session.status is not SessionStatus.ACTIVE_MATCH:
            logger.warning(f"Match result for inactive session {session_id} ignored")
            return None
        return await self._finish(
            session,
            SessionStatus.SETTLED,
            "match_end",
            lambda: self.settlement.settle_match(session, result),
        )

    # Terminal transitions

    @staticmethod
    async def _no_transfers() -> None:
        return None

    async def _finish(
        self,
        session: WagerSession,
        status: SessionStatus,
        reason: str,
        settle: Callable[[], Awaitable[SettlementReport | None]],
    ) -> SettlementReport | None:
        """Run the session's single terminal transition; repeats return the first report."""
        if not session.claim_terminal(status):
            return session.settlement

        session.cancel_tasks()
        if session.match_handle:
            session.match_handle.cancel()

        try:
            with logfire.span(
                "wager settlement", session_id=session.id, status=status.value, reason=reason
            ):
                report = await settle()
        finally:
            self.registry.release(session.busy_key, *session.identities)
            self.registry.release(session.match_key, *session.identities)
            self.registry.remove(session.id)

        session.settlement = report or SettlementReport(reason=reason)
        logger.info(
            f"Session {session.id} {status.value} ({session.settlement.reason}); "
            f"{len(session.settlement.transfers)} transfers"
        )
        await self._announce(session, self._outcome_message(session))

        if session.settlement.errors:
            await self._alert(
                f"Wager {session.id} on table {session.table.number} needs attention: "
                + "; ".join(session.settlement.errors)
            )
        return session.settlement

    def _outcome_message(self, session: WagerSession) -> str:
        report = session.settlement
        refunded = [t.recipient for t in report.transfers_for("refund") if t.ok]
        names = {party.wallet: party.identity for party in (session.party_a, session.party_b)}
        refunded_names = ", ".join(names.get(w, w) for w in refunded) or "nobody"

        if report.reason == "declined":
            return f"Wager declined by {session.party_b.identity}."
        if report.reason == "accept_timeout":
            return "Wager invite expired (no response)."
        if report.reason == "payout":
            payout = report.transfers_for("payout")[0]
            winner = next(
                (i for i, w in session.roster_wallets.items() if w == payout.recipient),
                payout.recipient,
            )
            return (
                f"Wager paid out to {winner}: "
                f"{format_base_units(payout.amount_base, session.terms.decimals)} tokens. "
                f"Fee: {session.terms.fee_percent}"
            )

        message = {
            "funding_timeout": "Funding expired.",
            "admin_force_end": "Wager ended by admin.",
            "ended_by_admin": "Match ended by admin.",
            "tie": "Tie game.",
            "winner_not_on_roster": "Winner wallet not found on roster.",
            "payout_failed": "Payout failed.",
            "payout_unconfirmed": "Payout could not be confirmed; operators have been notified.",
            "match_start_failed": "Failed to start match.",
        }.get(report.reason, f"Wager ended ({report.reason}).")

        message += f" Refunded: {refunded_names}."
        if report.failed_refunds:
            message += " Some refunds failed; operators have been notified."
        return message


def load_escrow_tables(settings: Settings) -> list[EscrowTable]:
    """Pair each wager channel with its escrow keypair (table N uses escrow N)."""
    validate_wager_settings(settings)

    tables = []
    for number, (channel_id, secret) in enumerate(
        zip(settings.wager_channel_ids, settings.escrow_keypairs), start=1
    ):
        try:
            keypair = load_keypair(secret)
        except ValueError as e:
            raise ConfigurationError(f"Escrow keypair {number} is invalid: {e}") from e
        tables.append(EscrowTable(number=number, channel_id=channel_id, keypair=keypair))
    return tables


def create_wager_desk(
    settings: Settings,
    ledger: LedgerClient,
    roster: RosterClient,
    match_controller: MatchController,
    announcer: Announcer | None = None,
    telegram_client: TelegramClient | None = None,
) -> WagerDesk:
    """Build a desk from settings, failing fast on missing configuration.

    Without an explicit announcer, a Telegram client (when given) is wrapped
    with operator alerts gated by ``telegram.send_wager_alerts``.
    """
    tables = load_escrow_tables(settings)
    if announcer is None and telegram_client is not None:
        announcer = TelegramAnnouncer(
            telegram_client, send_alerts=settings.telegram.send_wager_alerts
        )
    logger.info(f"Wager desk configured with {len(tables)} tables")
    return WagerDesk(
        ledger=ledger,
        roster=roster,
        tables=tables,
        fee_wallet=settings.fee_wallet,
        config=settings.wager,
        match_controller=match_controller,
        announcer=announcer,
    )
