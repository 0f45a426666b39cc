"""
Points Ledger：管理玩家每個回合的點數與 deposit 資格

職責：
1. deposit：建立 Deposit + PointsBalance(remaining=MAX_POINTS)
2. 預扣點數（開倉時）
3. 查詢剩餘點數

並發安全：
- 預扣點數是「檢查 + 扣除」一次完成的條件式 UPDATE，
  不是先讀再寫，多個開倉請求同時進來也不會超額
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Tuple
import logging

from config import MAX_POINTS
from models import Deposit, PointsBalance, unix_now
from core.exceptions import (
    BalanceNotFound,
    DuplicateEntry,
    InsufficientPoints,
    ValidationError
)
from services.naming_service import validate_player_id
from database import transactional

logger = logging.getLogger(__name__)


class PointsLedger:
    """點數帳本"""

    @staticmethod
    def allocate_deposit(db: Session, player_id: str, round_id: str) -> Tuple[Deposit, PointsBalance]:
        """
        為玩家建立本回合的 deposit 與點數

        前置條件：
        1. player_id 必須是合法的公鑰
        2. 本回合尚未 deposit

        返回：
            (Deposit, PointsBalance) tuple

        異常：
            ValidationError: player_id 不合法
            DuplicateEntry: 本回合已經 deposit 過
        """
        player_id = validate_player_id(player_id)
        if not round_id:
            raise ValidationError("Missing round id")

        try:
            return PointsLedger._insert_deposit(db, player_id, round_id)
        except IntegrityError:
            # 兩個 deposit 同時通過存在檢查時，由 unique constraint 擋下第二筆
            raise DuplicateEntry(player_id, round_id)

    @staticmethod
    @transactional
    def _insert_deposit(db: Session, player_id: str, round_id: str) -> Tuple[Deposit, PointsBalance]:
        existing = db.query(Deposit).filter(
            Deposit.player_id == player_id,
            Deposit.round_id == round_id
        ).first()
        if existing:
            raise DuplicateEntry(player_id, round_id)

        deposit = Deposit(player_id=player_id, round_id=round_id, timestamp=unix_now())
        balance = PointsBalance(player_id=player_id, round_id=round_id, remaining=MAX_POINTS)
        db.add(deposit)
        db.add(balance)
        db.flush()

        logger.info(f"Deposit recorded for {player_id} in round {round_id}, {MAX_POINTS} points allocated")
        return deposit, balance

    @staticmethod
    def reserve_points(db: Session, player_id: str, round_id: str, amount: float) -> None:
        """
        預扣點數（不 commit，交由外層 transaction 處理）

        流程：
        1. 條件式 UPDATE：remaining >= amount 才扣
        2. 若沒有更新任何列 → 判斷是沒有紀錄還是點數不足

        異常：
            ValidationError: amount <= 0
            BalanceNotFound: 沒有點數紀錄
            InsufficientPoints: 剩餘點數不足
        """
        if amount is None or amount <= 0:
            raise ValidationError("Points to reserve should be greater than 0")

        updated = db.query(PointsBalance).filter(
            PointsBalance.player_id == player_id,
            PointsBalance.round_id == round_id,
            PointsBalance.remaining >= amount
        ).update(
            {PointsBalance.remaining: PointsBalance.remaining - amount},
            synchronize_session=False
        )
        if updated:
            return

        balance = db.query(PointsBalance).filter(
            PointsBalance.player_id == player_id,
            PointsBalance.round_id == round_id
        ).first()
        if not balance:
            raise BalanceNotFound(player_id, round_id)
        raise InsufficientPoints(amount, balance.remaining)

    @staticmethod
    def get_remaining(db: Session, player_id: str, round_id: str) -> float:
        """
        查詢剩餘點數

        異常：
            BalanceNotFound: 沒有點數紀錄
        """
        balance = db.query(PointsBalance).filter(
            PointsBalance.player_id == player_id,
            PointsBalance.round_id == round_id
        ).populate_existing().first()
        if not balance:
            raise BalanceNotFound(player_id, round_id)
        return balance.remaining

    @staticmethod
    def has_deposit(db: Session, player_id: str, round_id: str) -> bool:
        return db.query(Deposit).filter(
            Deposit.player_id == player_id,
            Deposit.round_id == round_id
        ).first() is not None

    @staticmethod
    def get_deposits(db: Session, player_id: str) -> List[Deposit]:
        """玩家所有回合的 deposit 紀錄（依時間排序）"""
        return db.query(Deposit).filter(
            Deposit.player_id == player_id
        ).order_by(Deposit.timestamp, Deposit.id).all()

    @staticmethod
    def get_round_deposits(db: Session, round_id: str) -> List[Deposit]:
        """本回合所有 deposit（依建立順序）"""
        return db.query(Deposit).filter(
            Deposit.round_id == round_id
        ).order_by(Deposit.id).all()
