"""
tests/test_points_ledger.py - Deposits and points reservation.
"""

import pytest

from config import MAX_POINTS
from core.exceptions import BalanceNotFound, DuplicateEntry, InsufficientPoints, ValidationError
from core.points_ledger import PointsLedger
from models import Deposit, PointsBalance
from factories import ALICE, BOB, ROUND


class TestAllocateDeposit:
    def test_creates_full_balance(self, db):
        deposit, balance = PointsLedger.allocate_deposit(db, ALICE, ROUND)

        assert deposit.player_id == ALICE
        assert deposit.round_id == ROUND
        assert balance.remaining == MAX_POINTS == 100
        assert db.query(PointsBalance).count() == 1

    def test_second_deposit_rejected(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)

        with pytest.raises(DuplicateEntry):
            PointsLedger.allocate_deposit(db, ALICE, ROUND)

        assert db.query(Deposit).count() == 1
        assert db.query(PointsBalance).count() == 1

    def test_same_player_new_round(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)
        PointsLedger.allocate_deposit(db, ALICE, "klmnopqrst")

        assert [d.round_id for d in PointsLedger.get_deposits(db, ALICE)] == [ROUND, "klmnopqrst"]

    def test_invalid_player_id(self, db):
        with pytest.raises(ValidationError):
            PointsLedger.allocate_deposit(db, "not-a-key", ROUND)
        assert db.query(Deposit).count() == 0


class TestReservePoints:
    def test_decrements_remaining(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)

        PointsLedger.reserve_points(db, ALICE, ROUND, 30)
        db.commit()

        assert PointsLedger.get_remaining(db, ALICE, ROUND) == 70

    def test_exact_remaining_allowed(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)

        PointsLedger.reserve_points(db, ALICE, ROUND, 100)
        db.commit()

        assert PointsLedger.get_remaining(db, ALICE, ROUND) == 0

    def test_insufficient_leaves_balance(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)
        PointsLedger.reserve_points(db, ALICE, ROUND, 80)
        db.commit()

        with pytest.raises(InsufficientPoints):
            PointsLedger.reserve_points(db, ALICE, ROUND, 21)

        assert PointsLedger.get_remaining(db, ALICE, ROUND) == 20

    def test_no_balance(self, db):
        with pytest.raises(BalanceNotFound):
            PointsLedger.reserve_points(db, BOB, ROUND, 1)

    @pytest.mark.parametrize("amount", [0, -5, None])
    def test_non_positive_amount(self, db, amount):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)
        with pytest.raises(ValidationError):
            PointsLedger.reserve_points(db, ALICE, ROUND, amount)

    def test_sequence_never_exceeds_budget(self, db):
        PointsLedger.allocate_deposit(db, ALICE, ROUND)

        reserved = 0
        for amount in [40, 35, 30, 20, 5, 1]:
            try:
                PointsLedger.reserve_points(db, ALICE, ROUND, amount)
                db.commit()
                reserved += amount
            except InsufficientPoints:
                db.rollback()

        assert reserved == 100
        assert PointsLedger.get_remaining(db, ALICE, ROUND) == 0


class TestQueries:
    def test_get_remaining_without_deposit(self, db):
        with pytest.raises(BalanceNotFound):
            PointsLedger.get_remaining(db, ALICE, ROUND)

    def test_has_deposit(self, db):
        assert not PointsLedger.has_deposit(db, ALICE, ROUND)
        PointsLedger.allocate_deposit(db, ALICE, ROUND)
        assert PointsLedger.has_deposit(db, ALICE, ROUND)

    def test_round_deposits_in_order(self, db):
        PointsLedger.allocate_deposit(db, BOB, ROUND)
        PointsLedger.allocate_deposit(db, ALICE, ROUND)

        assert [d.player_id for d in PointsLedger.get_round_deposits(db, ROUND)] == [BOB, ALICE]
