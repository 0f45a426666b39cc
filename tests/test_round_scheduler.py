"""
tests/test_round_scheduler.py - Daily round lifecycle.

The vault is an in-memory fake that records every call, so the tests can
assert the exact order of external operations.
"""

import logging
from datetime import datetime, timezone

import pytest

from core.exceptions import InvalidStateTransition, VaultPermanentError, VaultTransientError
from core.points_ledger import PointsLedger
from core.position_book import PositionBook
from core.round_manager import RoundManager
from core.round_scheduler import RoundScheduler
from core.settlement_engine import SettlementEngine
from models import LeaderboardEntry, LeaderboardHistoryEntry, PayoutStatus, RoundPayout, RoundPhase
from factories import ALICE, BOB, BONK, WIF, FakeOracle, FakeVault, spec

CLOSE_TIME = datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)


@pytest.fixture
def vault():
    return FakeVault()


@pytest.fixture
def scheduler(session_factory, vault):
    engine = SettlementEngine(FakeOracle({BONK: 1.5, WIF: 3.0}), tokens=[BONK, WIF])
    return RoundScheduler(
        session_factory,
        vault,
        engine,
        retry_delay=0,
        sleep=lambda _: None,
        clock=lambda: CLOSE_TIME,
    )


@pytest.fixture
def open_round(scheduler, vault):
    scheduler.bootstrap()
    scheduler.open_deposits()
    vault.calls.clear()
    return scheduler


def _play(session_factory, round_id):
    db = session_factory()
    try:
        PointsLedger.allocate_deposit(db, ALICE, round_id)
        PointsLedger.allocate_deposit(db, BOB, round_id)
        PositionBook.open_position(db, ALICE, round_id, spec(token=BONK, points=50, leverage=2))
        PositionBook.open_position(db, BOB, round_id, spec(token=WIF, points=10))
    finally:
        db.close()


# ======================================================================
# Bootstrap
# ======================================================================


class TestBootstrap:
    def test_cold_start(self, scheduler, vault, session_factory):
        ctx = scheduler.bootstrap()

        assert len(ctx.round_id) == 10
        assert ctx.phase == RoundPhase.INACTIVE
        assert not scheduler.settlement_enabled
        assert vault.calls == ["get_state"]

    def test_resumes_active_round(self, scheduler, vault):
        vault.phase = RoundPhase.DEPOSITS_PAUSED

        ctx = scheduler.bootstrap()

        assert ctx.phase == RoundPhase.DEPOSITS_PAUSED
        assert scheduler.settlement_enabled

    def test_vault_down_uses_cached_phase(self, scheduler, vault, session_factory):
        db = session_factory()
        RoundManager.save_phase(db, RoundPhase.DEPOSITS_OPEN)
        db.close()
        vault.fail("get_state", *[VaultTransientError("timeout")] * 3)

        ctx = scheduler.bootstrap()

        assert ctx.phase == RoundPhase.DEPOSITS_OPEN
        assert vault.calls == ["get_state"] * 3


# ======================================================================
# Phase transitions
# ======================================================================


class TestTransitions:
    def test_open_deposits(self, scheduler, vault, session_factory):
        scheduler.bootstrap()

        ctx = scheduler.open_deposits()

        assert vault.calls == ["get_state", "activate_round", "resume_deposits"]
        assert ctx.phase == RoundPhase.DEPOSITS_OPEN
        assert scheduler.settlement_enabled
        db = session_factory()
        assert RoundManager.load_phase(db) == RoundPhase.DEPOSITS_OPEN
        db.close()

    def test_open_deposits_retries_transient(self, scheduler, vault):
        scheduler.bootstrap()
        vault.fail("activate_round", VaultTransientError("blockhash not found"),
                   VaultTransientError("blockhash not found"))

        scheduler.open_deposits()

        assert vault.calls.count("activate_round") == 3
        assert scheduler.context.phase == RoundPhase.DEPOSITS_OPEN

    def test_open_deposits_half_done_keeps_vault_phase(self, scheduler, vault):
        scheduler.bootstrap()
        vault.fail("resume_deposits", VaultPermanentError("resume_deposits", "403"))

        with pytest.raises(VaultPermanentError):
            scheduler.open_deposits()

        assert vault.calls.count("resume_deposits") == 1
        assert scheduler.context.phase == RoundPhase.DEPOSITS_PAUSED

    def test_pause_deposits(self, open_round, vault):
        ctx = open_round.pause_deposits()

        assert vault.calls == ["pause_deposits"]
        assert ctx.phase == RoundPhase.DEPOSITS_PAUSED
        assert open_round.settlement_enabled

    def test_pause_deposits_requires_active_round(self, scheduler, vault):
        scheduler.bootstrap()

        with pytest.raises(InvalidStateTransition):
            scheduler.pause_deposits()
        assert vault.calls == ["get_state"]

    def test_rotate_keeps_phase(self, open_round, session_factory):
        before = open_round.context

        after = open_round.rotate_round()

        assert after.round_id != before.round_id
        assert after.phase == before.phase
        db = session_factory()
        assert RoundManager.get_games_played(db) == 1
        db.close()

    def test_requires_bootstrap(self, scheduler):
        with pytest.raises(InvalidStateTransition):
            scheduler.open_deposits()


# ======================================================================
# Round end
# ======================================================================


class TestCloseRound:
    def test_full_sequence(self, open_round, vault, session_factory):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        open_round.pause_deposits()
        vault.calls.clear()

        ctx = open_round.close_round()

        assert vault.calls == [("payout_winner", ALICE), "pause_round"]
        assert ctx.phase == RoundPhase.INACTIVE
        assert not open_round.settlement_enabled

        db = session_factory()
        history = db.query(LeaderboardHistoryEntry).order_by(LeaderboardHistoryEntry.rank).all()
        assert [(h.rank, h.player_id, h.archive_date) for h in history] == [
            (1, ALICE, "2024-05-01"),
            (2, BOB, "2024-05-01"),
        ]
        assert db.query(LeaderboardEntry).filter(LeaderboardEntry.round_id == round_id).count() == 0
        payout = db.query(RoundPayout).one()
        assert (payout.player_id, payout.status) == (ALICE, PayoutStatus.PAID)
        db.close()

    def test_payout_failure_stops_sequence(self, open_round, vault, session_factory):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        vault.fail("payout_winner", VaultPermanentError("payout_winner", "400 rejected"))

        with pytest.raises(VaultPermanentError):
            open_round.close_round()

        assert vault.calls == [("payout_winner", ALICE)]
        db = session_factory()
        assert db.query(LeaderboardEntry).filter(LeaderboardEntry.round_id == round_id).count() == 2
        assert db.query(RoundPayout).count() == 0
        db.close()

        # Next attempt finishes the round without duplicating history
        open_round.close_round()

        assert vault.calls == [("payout_winner", ALICE), ("payout_winner", ALICE), "pause_round"]
        db = session_factory()
        assert db.query(LeaderboardHistoryEntry).count() == 2
        db.close()

    def test_lost_payout_record_is_not_paid_twice(self, open_round, vault, session_factory, monkeypatch):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        original = RoundManager.record_payout
        attempts = []

        def record_once_failing(db, round_id, player_id):
            attempts.append(round_id)
            if len(attempts) == 1:
                raise RuntimeError("database is locked")
            return original(db, round_id, player_id)

        monkeypatch.setattr(RoundManager, "record_payout", staticmethod(record_once_failing))

        with pytest.raises(RuntimeError):
            open_round.close_round()

        db = session_factory()
        assert db.query(RoundPayout).one().status == PayoutStatus.PENDING
        db.close()

        open_round.close_round()

        assert vault.calls == [("payout_winner", ALICE), "get_state", "pause_round"]
        db = session_factory()
        assert db.query(RoundPayout).one().status == PayoutStatus.PAID
        db.close()

    def test_unconfirmed_payout_retried_when_vault_has_no_winner(self, open_round, vault, session_factory):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        vault.fail("payout_winner", *[VaultTransientError("timeout")] * 3)

        with pytest.raises(VaultTransientError):
            open_round.close_round()

        db = session_factory()
        assert db.query(RoundPayout).one().status == PayoutStatus.PENDING
        db.close()

        open_round.close_round()

        assert vault.calls == [("payout_winner", ALICE)] * 3 + [
            "get_state", ("payout_winner", ALICE), "pause_round"
        ]
        db = session_factory()
        assert db.query(RoundPayout).one().status == PayoutStatus.PAID
        db.close()

    def test_already_paid_round_is_not_paid_twice(self, open_round, vault, session_factory):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        db = session_factory()
        RoundManager.record_payout(db, round_id, ALICE)
        db.close()

        open_round.close_round()

        assert vault.calls == ["pause_round"]

    def test_rotate_logs_unpaid_winner(self, open_round, vault, session_factory, caplog):
        round_id = open_round.context.round_id
        _play(session_factory, round_id)
        vault.fail("payout_winner", VaultPermanentError("payout_winner", "400 rejected"))
        with pytest.raises(VaultPermanentError):
            open_round.close_round()

        with caplog.at_level(logging.ERROR, logger="core.round_scheduler"):
            open_round.rotate_round()

        assert f"Round {round_id} (2024-05-01) rotated without a recorded payout to {ALICE}" in caplog.text

    def test_rotate_after_paid_round_is_quiet(self, open_round, session_factory, caplog):
        _play(session_factory, open_round.context.round_id)
        open_round.close_round()

        with caplog.at_level(logging.ERROR, logger="core.round_scheduler"):
            open_round.rotate_round()

        assert "manual payout required" not in caplog.text

    def test_no_players_no_payout(self, open_round, vault):
        open_round.close_round()

        assert vault.calls == ["pause_round"]
        assert open_round.context.phase == RoundPhase.INACTIVE

    def test_inactive_round_cannot_close(self, scheduler, vault):
        scheduler.bootstrap()

        with pytest.raises(InvalidStateTransition):
            scheduler.close_round()


# ======================================================================
# Settlement cadence and job selection
# ======================================================================


class TestSettle:
    def test_skipped_while_inactive(self, scheduler):
        scheduler.bootstrap()
        assert scheduler.settle() is None

    def test_updates_leaderboard_while_open(self, open_round, session_factory):
        _play(session_factory, open_round.context.round_id)

        entries = open_round.settle()

        assert [e.player_id for e in entries] == [ALICE, BOB]


class TestNextJob:
    def test_daily_job_wins_tie_with_cadence(self, scheduler):
        now = datetime(2024, 5, 1, 22, 58, tzinfo=timezone.utc)
        assert scheduler.next_job(now) == ("close_round", CLOSE_TIME)

    def test_cadence_between_daily_jobs(self, scheduler):
        now = datetime(2024, 5, 1, 10, 7, tzinfo=timezone.utc)
        assert scheduler.next_job(now) == ("settle", datetime(2024, 5, 1, 10, 10, tzinfo=timezone.utc))

    def test_rotation_at_midnight(self, scheduler):
        now = datetime(2024, 5, 1, 23, 57, tzinfo=timezone.utc)
        assert scheduler.next_job(now) == ("rotate_round", datetime(2024, 5, 2, 0, 0, tzinfo=timezone.utc))


def test_run_job_logs_failures(scheduler, vault, caplog):
    scheduler.bootstrap()

    scheduler.run_job("pause_deposits")

    assert "Scheduled job pause_deposits failed" in caplog.text
