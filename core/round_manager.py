"""
Round Manager：管理回合 ID 的完整生命週期

職責：
1. 取得或建立目前的回合 ID
2. 輪替回合 ID（每天 00:00 由 RoundScheduler 呼叫）
3. 快取 Vault 回傳的回合階段、記錄已付款的回合
4. 查詢回合資訊

原則：
- 單一職責：只管回合身分，不管點數和倉位
- 輪替一定產生不同的 ID；沒有舊 ID 時退回「建立」，冷啟動不會失敗
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models import (
    LeaderboardHistoryEntry,
    PayoutStatus,
    Round,
    RoundPayout,
    RoundPhase,
    VaultStateSnapshot,
    unix_now,
    utc_now
)
from core.locks import with_current_round_lock
from services.naming_service import generate_round_id
from database import transactional

logger = logging.getLogger(__name__)


class RoundManager:
    """回合身分生命週期管理器"""

    @staticmethod
    def fetch_or_create_round_id(db: Session) -> Round:
        """
        取得目前的回合；若不存在則建立一個（games_played = 0）

        參數：
            db: SQLAlchemy Session

        返回：
            Round object

        注意：
            - 兩個 process 同時冷啟動時，後寫入的一方會撞到 unique constraint，
              這時直接讀回先寫入的那一筆
        """
        round_obj = db.query(Round).order_by(Round.id).first()
        if round_obj:
            return round_obj

        round_obj = Round(
            id=1,
            round_id=generate_round_id(),
            games_played=0,
            last_updated_ts=unix_now()
        )
        db.add(round_obj)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("Round row created concurrently, reading it back")
            return db.query(Round).order_by(Round.id).first()

        db.refresh(round_obj)
        logger.info(f"Created round {round_obj.round_id}")
        return round_obj

    @staticmethod
    def rotate_round_id(db: Session) -> Round:
        """
        輪替回合 ID

        流程：
        1. 鎖定目前的回合列
        2. 若不存在 → 退回 fetch_or_create_round_id
        3. 生成與舊 ID 不同的新 ID
        4. games_played + 1，更新 last_updated_ts

        返回：
            更新後的 Round
        """
        round_obj = RoundManager._rotate_locked(db)
        if round_obj is None:
            return RoundManager.fetch_or_create_round_id(db)
        return round_obj

    @staticmethod
    @transactional
    def _rotate_locked(db: Session):
        round_obj = with_current_round_lock(db).first()
        if not round_obj:
            return None

        previous_id = round_obj.round_id
        new_id = generate_round_id()
        while new_id == previous_id:
            new_id = generate_round_id()
            logger.warning(f"Round id collision detected, regenerating: {new_id}")

        round_obj.round_id = new_id
        round_obj.games_played = (round_obj.games_played or 0) + 1
        round_obj.last_updated_ts = unix_now()

        logger.info(
            f"Rotated round {previous_id} -> {new_id} (games played: {round_obj.games_played})"
        )
        return round_obj

    @staticmethod
    def get_current_round(db: Session):
        """取得目前的回合（可能為 None）"""
        return db.query(Round).order_by(Round.id).first()

    @staticmethod
    def get_games_played(db: Session) -> int:
        round_obj = RoundManager.get_current_round(db)
        return round_obj.games_played if round_obj else 0

    @staticmethod
    @transactional
    def save_phase(db: Session, phase: RoundPhase) -> VaultStateSnapshot:
        """
        寫入 Vault 回傳的回合階段（本地快取）

        權威狀態在 Vault，這裡只是每次轉換後的鏡像
        """
        snapshot = db.query(VaultStateSnapshot).filter(VaultStateSnapshot.id == 1).first()
        if not snapshot:
            snapshot = VaultStateSnapshot(id=1)
            db.add(snapshot)
        snapshot.phase = phase
        snapshot.updated_at = utc_now()
        return snapshot

    @staticmethod
    def get_payout(db: Session, round_id: str):
        return db.query(RoundPayout).filter(RoundPayout.round_id == round_id).first()

    @staticmethod
    @transactional
    def begin_payout(db: Session, round_id: str, player_id: str) -> RoundPayout:
        """
        呼叫 Vault 付款「之前」寫入 pending 紀錄

        重跑回合結束流程時看到 pending，就要先向 Vault 確認是否已經付過
        """
        payout = db.query(RoundPayout).filter(RoundPayout.round_id == round_id).first()
        if payout:
            return payout
        payout = RoundPayout(round_id=round_id, player_id=player_id, status=PayoutStatus.PENDING)
        db.add(payout)
        return payout

    @staticmethod
    @transactional
    def record_payout(db: Session, round_id: str, player_id: str) -> RoundPayout:
        """記錄已付款的回合（同一回合只會有一筆；pending 紀錄轉為 paid）"""
        payout = db.query(RoundPayout).filter(RoundPayout.round_id == round_id).first()
        if not payout:
            payout = RoundPayout(round_id=round_id, player_id=player_id)
            db.add(payout)
        payout.status = PayoutStatus.PAID
        payout.paid_at = utc_now()
        logger.info(f"Payout recorded for round {round_id}: {player_id}")
        return payout

    @staticmethod
    @transactional
    def cancel_payout(db: Session, round_id: str) -> int:
        """Vault 明確拒絕付款時刪除 pending 紀錄（已付款的紀錄不動）"""
        return db.query(RoundPayout).filter(
            RoundPayout.round_id == round_id,
            RoundPayout.status == PayoutStatus.PENDING
        ).delete(synchronize_session=False)

    @staticmethod
    def find_unpaid_round(db: Session, round_id: str):
        """
        已歸檔、有第一名、但沒有 paid 紀錄的回合

        返回：
            (archive_date, winner)；沒有未付款的贏家時返回 None
        """
        payout = RoundManager.get_payout(db, round_id)
        if payout and payout.status == PayoutStatus.PAID:
            return None
        entry = db.query(LeaderboardHistoryEntry).filter(
            LeaderboardHistoryEntry.round_id == round_id,
            LeaderboardHistoryEntry.rank == 1
        ).order_by(LeaderboardHistoryEntry.archive_date.desc()).first()
        if not entry:
            return None
        return entry.archive_date, entry.player_id

    @staticmethod
    def load_phase(db: Session) -> RoundPhase:
        snapshot = db.query(VaultStateSnapshot).filter(VaultStateSnapshot.id == 1).first()
        if not snapshot:
            return RoundPhase.INACTIVE
        return snapshot.phase
