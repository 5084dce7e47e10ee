"""Tests for the wager desk: creation, funding, match handoff and settlement."""

import asyncio
from decimal import Decimal

import pytest
from conftest import deposit_tx
from solders.keypair import Keypair

from wagerhall.announcer import ChannelRef, LoggingAnnouncer, TelegramAnnouncer
from wagerhall.config import Settings, TelegramConfig
from wagerhall.services.ledger import LedgerRPCError
from wagerhall.services.roster import RosterRow
from wagerhall.services.telegram import DeliveryResult
from wagerhall.wagers import (
    MatchResult,
    ParticipantBusyError,
    SessionNotFoundError,
    SessionStatus,
    WagerRejected,
    create_wager_desk,
)

STAKE = 100
STAKE_BASE = 100_000_000

FIRST_ESCROW = Keypair()
SECOND_ESCROW = Keypair()


async def _funding_session(desk, channel):
    session = await desk.create_wager(channel, "alice", "bob", STAKE)
    await desk.respond(session.id, "bob", accept=True)
    return session


def _escrow(escrow_table) -> str:
    return f"ata:{escrow_table.owner}"


# Creation


def test_create_wager_reserves_both_players(make_desk, channel, announcer) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await desk.create_wager(channel, "alice", "bob", "250")

        assert session.status is SessionStatus.PENDING_ACCEPT
        assert session.terms.amount_base == 250_000_000
        assert session.party_a.wallet == "wallet-alice"
        assert desk.registry.holder("alice") == session.busy_key
        assert desk.registry.holder("bob") == session.busy_key
        assert "challenged bob" in announcer.messages[0]
        await desk.shutdown()

    asyncio.run(run())


@pytest.mark.parametrize(
    "amount, message",
    [("12.5", "whole number"), ("50", "between 100 and"), ("2000000", "between 100 and"), ("abc", "whole number")],
)
def test_create_wager_rejects_bad_amounts(make_desk, channel, amount, message) -> None:
    desk = make_desk()

    async def run() -> None:
        with pytest.raises(WagerRejected, match=message):
            await desk.create_wager(channel, "alice", "bob", amount)

    asyncio.run(run())


def test_create_wager_only_in_table_channels(make_desk) -> None:
    desk = make_desk()

    async def run() -> None:
        with pytest.raises(WagerRejected, match="wager channels"):
            await desk.create_wager(ChannelRef(channel_id="general"), "alice", "bob", STAKE)

    asyncio.run(run())


def test_create_wager_rejects_self_and_busy_players(make_desk, channel) -> None:
    desk = make_desk()

    async def run() -> None:
        with pytest.raises(WagerRejected, match="yourself"):
            await desk.create_wager(channel, "alice", "alice", STAKE)

        await desk.create_wager(channel, "alice", "bob", STAKE)
        with pytest.raises(ParticipantBusyError):
            await desk.create_wager(channel, "carol", "bob", STAKE)
        assert not desk.registry.is_busy("carol")
        await desk.shutdown()

    asyncio.run(run())


def test_create_wager_requires_roster_data(make_desk, channel, roster) -> None:
    desk = make_desk()

    async def run() -> None:
        with pytest.raises(WagerRejected, match="wallet isn't on the roster"):
            await desk.create_wager(channel, "dave", "bob", STAKE)
        with pytest.raises(WagerRejected, match="That user's wallet"):
            await desk.create_wager(channel, "alice", "dave", STAKE)

        roster.export.token_mint = "YOUR_TOKEN_MINT"
        with pytest.raises(WagerRejected, match="Token mint"):
            await desk.create_wager(channel, "alice", "bob", STAKE)

        assert len(desk.registry) == 0

    asyncio.run(run())


def test_create_wager_pauses_table_low_on_sol(make_desk, channel, ledger) -> None:
    ledger.sol_balance = Decimal("0.01")
    desk = make_desk()

    async def run() -> None:
        with pytest.raises(WagerRejected, match="paused"):
            await desk.create_wager(channel, "alice", "bob", STAKE)

    asyncio.run(run())


# Accept / decline


def test_only_invited_player_can_respond(make_desk, channel) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await desk.create_wager(channel, "alice", "bob", STAKE)
        with pytest.raises(WagerRejected, match="Only the invited player"):
            await desk.respond(session.id, "alice", accept=True)
        assert session.status is SessionStatus.PENDING_ACCEPT
        await desk.shutdown()

    asyncio.run(run())


def test_decline_ends_session_and_frees_players(make_desk, channel, ledger) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await desk.create_wager(channel, "alice", "bob", STAKE)
        await desk.respond(session.id, "bob", accept=False)

        assert session.status is SessionStatus.DECLINED
        assert session.settlement.transfers == []
        assert not desk.registry.is_busy("alice")
        assert desk.registry.find(session.id) is None
        assert ledger.transfers == []

    asyncio.run(run())


def test_accept_captures_baseline(make_desk, channel, ledger, announcer) -> None:
    ledger.slot = 4_321
    desk = make_desk()

    async def run() -> None:
        session = await _funding_session(desk, channel)

        assert session.status is SessionStatus.FUNDING
        assert session.baseline_slot == 4_321
        assert session.funding_expires_at is not None
        assert any("sends exactly 100 tokens" in m for m in announcer.messages)
        await desk.shutdown()

    asyncio.run(run())


def test_accept_fails_when_baseline_unavailable(make_desk, channel, ledger) -> None:
    ledger.slot_error = LedgerRPCError("rpc down")
    desk = make_desk()

    async def run() -> None:
        session = await desk.create_wager(channel, "alice", "bob", STAKE)
        with pytest.raises(WagerRejected):
            await desk.respond(session.id, "bob", accept=True)

        assert session.status is SessionStatus.PENDING_ACCEPT
        assert session.baseline_slot is None
        await desk.shutdown()

    asyncio.run(run())


def test_unanswered_invite_expires(make_desk, channel, ledger, announcer) -> None:
    desk = make_desk(accept_window_seconds=0.02)

    async def run() -> None:
        session = await desk.create_wager(channel, "alice", "bob", STAKE)
        await asyncio.sleep(0.1)

        assert session.status is SessionStatus.EXPIRED
        assert not desk.registry.is_busy("bob")
        assert ledger.transfers == []
        assert "expired" in announcer.messages[-1]

    asyncio.run(run())


# Funding


def test_deposits_fund_each_side_and_start_match(
    make_desk, channel, ledger, controller, escrow_table
) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))
        await desk.poll_once(session)

        assert session.funded_a and not session.funded_b
        assert session.status is SessionStatus.FUNDING

        ledger.add_transaction(escrow, deposit_tx("dep-b", escrow, "wallet-bob", STAKE_BASE, slot=2_001))
        await desk.poll_once(session)

        assert session.both_funded
        assert session.status is SessionStatus.ACTIVE_MATCH
        assert controller.started == [(channel.channel_id, "alice", "bob")]
        assert desk.registry.holder("alice") == session.match_key
        assert desk.registry.holder("bob") == session.match_key
        assert desk.registry.find_by_parties("bob", "alice") is session
        await desk.shutdown()

    asyncio.run(run())


def test_each_transaction_is_evaluated_once(make_desk, channel, ledger, escrow_table) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))

        await desk.poll_once(session)
        await desk.poll_once(session)

        assert ledger.detail_calls == ["dep-a"]
        assert session.funded_a and not session.funded_b
        await desk.shutdown()

    asyncio.run(run())


def test_pre_baseline_deposit_never_funds(make_desk, channel, ledger, escrow_table) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("old", escrow, "wallet-alice", STAKE_BASE, slot=10))
        await desk.poll_once(session)

        assert not session.funded_a
        assert "old" in session.processed
        assert ledger.detail_calls == []
        await desk.shutdown()

    asyncio.run(run())


def test_memo_deposit_is_ignored(make_desk, channel, ledger, escrow_table) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("memo", escrow, "wallet-alice", STAKE_BASE, memo=True))
        await desk.poll_once(session)

        assert not session.funded_a
        assert "memo" in session.processed
        await desk.shutdown()

    asyncio.run(run())


def test_unavailable_detail_is_retried_next_tick(make_desk, channel, ledger, escrow_table) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        detail = deposit_tx("late", escrow, "wallet-bob", STAKE_BASE)
        ledger.add_transaction(escrow, detail)
        del ledger.details["late"]

        await desk.poll_once(session)
        assert "late" not in session.processed
        assert not session.funded_b

        ledger.details["late"] = detail
        await desk.poll_once(session)
        assert session.funded_b
        await desk.shutdown()

    asyncio.run(run())


def test_malformed_detail_does_not_stop_polling(make_desk, channel, ledger, escrow_table) -> None:
    desk = make_desk(poll_interval_seconds=0.01)
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.detail_errors["dep-a"] = TypeError("int() argument must be a number, not 'NoneType'")
        ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))

        await asyncio.sleep(0.1)

        assert ledger.detail_calls.count("dep-a") == 2
        assert session.funded_a
        assert session.status is SessionStatus.FUNDING
        await desk.shutdown()

    asyncio.run(run())


def test_unattributed_deposit_alerts_operators(make_desk, channel, ledger, escrow_table, announcer) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        tx = deposit_tx(
            "anon", escrow, "stranger", STAKE_BASE, signers=["wallet-alice", "wallet-bob"]
        )
        ledger.add_transaction(escrow, tx)
        await desk.poll_once(session)

        assert not session.funded_a and not session.funded_b
        assert any("unattributed" in a for a in announcer.alerts)
        await desk.shutdown()

    asyncio.run(run())


def test_funding_timeout_refunds_only_the_funded_side(
    make_desk, channel, ledger, escrow_table, announcer
) -> None:
    desk = make_desk(fund_window_seconds=0.05, poll_interval_seconds=0.01)
    escrow = _escrow(escrow_table)

    async def run() -> None:
        ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))
        session = await _funding_session(desk, channel)
        await asyncio.sleep(0.2)

        assert session.funded_a and not session.funded_b
        assert session.status is SessionStatus.EXPIRED
        assert ledger.transfers_to("wallet-alice") == [
            {
                "sender": escrow_table.owner,
                "recipient": "wallet-alice",
                "amount": STAKE_BASE,
                "decimals": 6,
            }
        ]
        assert ledger.transfers_to("wallet-bob") == []
        assert desk.registry.find(session.id) is None
        assert not desk.registry.is_busy("alice")
        assert "Funding expired" in announcer.messages[-1]

    asyncio.run(run())


def test_funding_timeout_with_no_deposits_moves_nothing(make_desk, channel, ledger) -> None:
    desk = make_desk(fund_window_seconds=0.02, poll_interval_seconds=0.01)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        await asyncio.sleep(0.1)

        assert session.status is SessionStatus.EXPIRED
        assert session.settlement.transfers == []
        assert ledger.transfers == []

    asyncio.run(run())


# Match settlement


async def _active_match(desk, channel, ledger, escrow_table):
    escrow = _escrow(escrow_table)
    session = await _funding_session(desk, channel)
    ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))
    ledger.add_transaction(escrow, deposit_tx("dep-b", escrow, "wallet-bob", STAKE_BASE, slot=2_001))
    await desk.poll_once(session)
    assert session.status is SessionStatus.ACTIVE_MATCH
    return session


def test_winner_is_paid_and_fee_collected(
    make_desk, channel, ledger, controller, escrow_table
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        assert controller.handles[0].resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)

        assert session.status is SessionStatus.SETTLED
        assert session.settlement.reason == "payout"
        assert [t["amount"] for t in ledger.transfers_to("wallet-alice")] == [198_000_000]
        assert [t["amount"] for t in ledger.transfers_to("wallet-fees")] == [2_000_000]
        assert ledger.transfers_to("wallet-bob") == []
        assert desk.registry.find(session.id) is None

    asyncio.run(run())


def test_players_stay_busy_during_match(make_desk, channel, ledger, controller, escrow_table) -> None:
    desk = make_desk()

    async def run() -> None:
        await _active_match(desk, channel, ledger, escrow_table)

        with pytest.raises(ParticipantBusyError):
            await desk.create_wager(channel, "alice", "carol", STAKE)
        assert not desk.registry.is_busy("carol")

        controller.handles[0].resolve(MatchResult(winner_identity="bob"))
        await asyncio.sleep(0.01)

        assert not desk.registry.is_busy("alice")
        second = await desk.create_wager(channel, "alice", "carol", STAKE)
        assert second.status is SessionStatus.PENDING_ACCEPT
        await desk.shutdown()

    asyncio.run(run())


def test_match_result_settles_only_once(make_desk, channel, ledger, controller, escrow_table) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        handle = controller.handles[0]

        assert handle.resolve(MatchResult(winner_identity="bob"))
        assert not handle.resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)
        assert await desk.on_match_end(session.id, MatchResult(winner_identity="alice")) is None

        assert len(ledger.transfers) == 2
        assert [t["amount"] for t in ledger.transfers_to("wallet-bob")] == [198_000_000]

    asyncio.run(run())


@pytest.mark.parametrize(
    "result, reason",
    [
        (MatchResult(winner_identity=None), "tie"),
        (MatchResult(winner_identity="alice", ended_by_admin=True), "ended_by_admin"),
        (MatchResult(winner_identity="mallory"), "winner_not_on_roster"),
    ],
)
def test_non_payout_results_refund_both(
    make_desk, channel, ledger, controller, escrow_table, result, reason
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        controller.handles[0].resolve(result)
        await asyncio.sleep(0.01)

        assert session.settlement.reason == reason
        assert [t["amount"] for t in ledger.transfers_to("wallet-alice")] == [STAKE_BASE]
        assert [t["amount"] for t in ledger.transfers_to("wallet-bob")] == [STAKE_BASE]
        assert ledger.transfers_to("wallet-fees") == []

    asyncio.run(run())


def test_failed_payout_falls_back_to_refunds(
    make_desk, channel, ledger, controller, escrow_table, announcer
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        ledger.failing_recipients.add("wallet-alice")
        controller.handles[0].resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)

        report = session.settlement
        assert report.reason == "payout_failed"
        # One payout attempt plus a refund and its single retry
        assert ledger.failures["wallet-alice"] == 3
        assert [t["amount"] for t in ledger.transfers_to("wallet-bob")] == [STAKE_BASE]
        assert ledger.transfers_to("wallet-fees") == []
        assert [r.recipient for r in report.failed_refunds] == ["wallet-alice"]
        assert session.status is SessionStatus.SETTLED
        assert announcer.alerts

    asyncio.run(run())


def test_unconfirmed_refund_is_not_resent(
    make_desk, channel, ledger, controller, escrow_table, announcer
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        ledger.unconfirmed_recipients.add("wallet-alice")
        controller.handles[0].resolve(MatchResult(winner_identity=None))
        await asyncio.sleep(0.01)

        report = session.settlement
        assert [t["amount"] for t in ledger.transfers_to("wallet-alice")] == [STAKE_BASE]
        assert [t["amount"] for t in ledger.transfers_to("wallet-bob")] == [STAKE_BASE]
        [refund] = report.failed_refunds
        assert refund.recipient == "wallet-alice"
        assert refund.unconfirmed
        assert refund.attempts == 1
        assert "unconfirmed" in announcer.alerts[0]

    asyncio.run(run())


def test_unconfirmed_payout_is_not_refunded(
    make_desk, channel, ledger, controller, escrow_table, announcer
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        ledger.unconfirmed_recipients.add("wallet-alice")
        controller.handles[0].resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)

        assert session.status is SessionStatus.SETTLED
        assert session.settlement.reason == "payout_unconfirmed"
        assert [(t["recipient"], t["amount"]) for t in ledger.transfers] == [
            ("wallet-alice", 198_000_000)
        ]
        assert announcer.alerts

    asyncio.run(run())


def test_fee_failure_does_not_block_settlement(
    make_desk, channel, ledger, controller, escrow_table
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        ledger.failing_recipients.add("wallet-fees")
        controller.handles[0].resolve(MatchResult(winner_identity="bob"))
        await asyncio.sleep(0.01)

        assert session.status is SessionStatus.SETTLED
        assert [t["amount"] for t in ledger.transfers_to("wallet-bob")] == [198_000_000]
        assert session.settlement.errors

    asyncio.run(run())


def test_match_start_failure_refunds_both(
    make_desk, channel, ledger, controller, escrow_table
) -> None:
    controller.start_error = RuntimeError("game engine offline")
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("dep-a", escrow, "wallet-alice", STAKE_BASE))
        ledger.add_transaction(escrow, deposit_tx("dep-b", escrow, "wallet-bob", STAKE_BASE, slot=2_001))
        await desk.poll_once(session)

        assert session.status is SessionStatus.SETTLED
        assert session.settlement.reason == "match_start_failed"
        assert session.both_funded
        assert len(ledger.transfers) == 2
        assert not desk.registry.is_busy("alice")
        assert not desk.registry.is_busy("bob")

    asyncio.run(run())


# Administrative end


def test_force_end_during_funding_refunds_what_was_paid(
    make_desk, channel, ledger, escrow_table
) -> None:
    desk = make_desk()
    escrow = _escrow(escrow_table)

    async def run() -> None:
        session = await _funding_session(desk, channel)
        ledger.add_transaction(escrow, deposit_tx("dep-b", escrow, "wallet-bob", STAKE_BASE))
        await desk.poll_once(session)

        report = await desk.force_end("bob", "alice")

        assert report.reason == "admin_force_end"
        assert session.status is SessionStatus.SETTLED
        assert [t["recipient"] for t in ledger.transfers] == ["wallet-bob"]

        with pytest.raises(SessionNotFoundError):
            await desk.force_end("alice", "bob")

    asyncio.run(run())


def test_force_end_during_match_preempts_result(
    make_desk, channel, ledger, controller, escrow_table
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        handle = controller.handles[0]

        await desk.force_end("alice", "bob")
        assert controller.ended == [(channel.channel_id, "alice", "bob")]
        assert not handle.resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)

        assert session.settlement.reason == "admin_force_end"
        assert sorted(t["recipient"] for t in ledger.transfers) == ["wallet-alice", "wallet-bob"]
        assert all(t["amount"] == STAKE_BASE for t in ledger.transfers)

    asyncio.run(run())


def test_roster_wallets_are_captured_at_creation(
    make_desk, channel, ledger, controller, escrow_table, roster
) -> None:
    desk = make_desk()

    async def run() -> None:
        session = await _active_match(desk, channel, ledger, escrow_table)
        roster.export.roster.append(RosterRow(identity="alice", wallet="wallet-new"))
        controller.handles[0].resolve(MatchResult(winner_identity="alice"))
        await asyncio.sleep(0.01)

        assert session.settlement.transfers_for("payout")[0].recipient == "wallet-alice"

    asyncio.run(run())


# Factory


class RecordingTelegramClient:
    def __init__(self) -> None:
        self.alerts: list[str] = []

    async def send_message(self, chat_id: str, message: str) -> DeliveryResult:
        return DeliveryResult(success=True, chat_id=chat_id)

    async def send_operator_alert(self, message: str) -> DeliveryResult:
        self.alerts.append(message)
        return DeliveryResult(success=True, chat_id="ops")


def _desk_settings(tmp_path, send_wager_alerts: bool = True) -> Settings:
    return Settings(
        data_dir=tmp_path,
        rpc_url="https://rpc.test",
        export_url="https://roster.test/export",
        fee_wallet="wallet-fees",
        wager_channel_ids=["c1", "c2"],
        escrow_keypairs=[str(FIRST_ESCROW), str(SECOND_ESCROW)],
        telegram=TelegramConfig(send_wager_alerts=send_wager_alerts),
        _env_file=None,
    )


def test_create_wager_desk_from_settings(tmp_path, ledger, roster, controller) -> None:
    client = RecordingTelegramClient()

    desk = create_wager_desk(
        _desk_settings(tmp_path), ledger, roster, controller, telegram_client=client
    )

    assert [(t.number, t.channel_id) for t in desk.tables.values()] == [(1, "c1"), (2, "c2")]
    assert desk.table_for("c2").owner == str(SECOND_ESCROW.pubkey())
    assert desk.settlement.fee_wallet == "wallet-fees"
    assert desk.config.fee_bps == 100

    asyncio.run(desk.announcer.alert_operators("refund failed"))
    assert client.alerts == ["refund failed"]


def test_wager_alerts_follow_telegram_setting(tmp_path, ledger, roster, controller) -> None:
    client = RecordingTelegramClient()

    desk = create_wager_desk(
        _desk_settings(tmp_path, send_wager_alerts=False),
        ledger,
        roster,
        controller,
        telegram_client=client,
    )
    asyncio.run(desk.announcer.alert_operators("refund failed"))

    assert isinstance(desk.announcer, TelegramAnnouncer)
    assert client.alerts == []


def test_create_wager_desk_without_telegram_logs_only(tmp_path, ledger, roster, controller) -> None:
    desk = create_wager_desk(_desk_settings(tmp_path), ledger, roster, controller)

    assert isinstance(desk.announcer, LoggingAnnouncer)
