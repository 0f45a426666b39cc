"""
資料模型

所有查詢都以 round_id 為範圍；回合輪替後舊資料保留作為歷史紀錄
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    Integer,
    String,
    UniqueConstraint,
)

from config import MAX_POINTS
from database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def unix_now() -> int:
    return int(utc_now().timestamp())


class RoundPhase(str, enum.Enum):
    """回合階段（Vault 上的權威狀態在本地的鏡像）"""
    INACTIVE = "INACTIVE"
    DEPOSITS_OPEN = "DEPOSITS_OPEN"
    DEPOSITS_PAUSED = "DEPOSITS_PAUSED"


class PositionType(str, enum.Enum):
    LONG = "long"
    SHORT = "short"


class EligibilityMethod(str, enum.Enum):
    DEPOSIT = "deposit"
    NFT = "nft"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"  # 已送出 Vault 付款，尚未確認
    PAID = "paid"


class Round(Base):
    """目前的回合 ID（單列資料，只由 RoundScheduler 輪替）"""
    __tablename__ = "rounds"

    id = Column(Integer, primary_key=True)
    round_id = Column(String, unique=True, nullable=False, index=True)
    games_played = Column(Integer, nullable=False, default=0)
    last_updated_ts = Column(Integer, nullable=False, default=unix_now)


class VaultStateSnapshot(Base):
    """Vault 回合狀態的本地快取，每次狀態轉換後刷新"""
    __tablename__ = "vault_state"

    id = Column(Integer, primary_key=True)
    phase = Column(Enum(RoundPhase), nullable=False, default=RoundPhase.INACTIVE)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class Deposit(Base):
    __tablename__ = "deposits"
    __table_args__ = (
        UniqueConstraint("player_id", "round_id", name="uq_deposit_player_round"),
    )

    id = Column(Integer, primary_key=True)
    player_id = Column(String, nullable=False, index=True)
    round_id = Column(String, nullable=False, index=True)
    timestamp = Column(Integer, nullable=False, default=unix_now)


class PointsBalance(Base):
    __tablename__ = "points_balances"
    __table_args__ = (
        UniqueConstraint("player_id", "round_id", name="uq_points_player_round"),
        CheckConstraint(
            f"remaining >= 0 AND remaining <= {MAX_POINTS}",
            name="ck_points_remaining_range",
        ),
    )

    id = Column(Integer, primary_key=True)
    player_id = Column(String, nullable=False, index=True)
    round_id = Column(String, nullable=False, index=True)
    remaining = Column(Float, nullable=False, default=MAX_POINTS)


class Position(Base):
    """紙上倉位，建立後不可修改"""
    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint(
            "player_id", "round_id", "token_mint", name="uq_position_player_round_token"
        ),
    )

    id = Column(Integer, primary_key=True)
    player_id = Column(String, nullable=False, index=True)
    round_id = Column(String, nullable=False, index=True)
    token_name = Column(String, nullable=False)
    token_mint = Column(String, nullable=False)
    entry_price = Column(Float, nullable=False)
    leverage = Column(Float, nullable=False)
    points_allocated = Column(Float, nullable=False)
    position_type = Column(Enum(PositionType), nullable=False)
    liquidation_price = Column(Float, nullable=False)
    timestamp = Column(Integer, nullable=False, default=unix_now)


class NftEligibility(Base):
    """外部驗證過 NFT 持有後的替代參賽資格"""
    __tablename__ = "nft_eligibility"
    __table_args__ = (
        UniqueConstraint("owner", "collection_address", name="uq_nft_owner_collection"),
    )

    id = Column(Integer, primary_key=True)
    owner = Column(String, nullable=False, index=True)
    collection_address = Column(String, nullable=False)
    nft_name = Column(String, nullable=True)
    nft_symbol = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class LeaderboardEntry(Base):
    """即時排行榜（每次結算整批替換，最多 10 筆）"""
    __tablename__ = "leaderboard_entries"

    id = Column(Integer, primary_key=True)
    round_id = Column(String, nullable=False, index=True)
    player_id = Column(String, nullable=False)
    points_allocated = Column(Float, nullable=False)
    final_points = Column(Float, nullable=False)
    top3_positions = Column(String, nullable=False, default="")


class LeaderboardHistoryEntry(Base):
    """回合結束時歸檔的排行榜（只新增不修改）"""
    __tablename__ = "leaderboard_history"
    __table_args__ = (
        UniqueConstraint("round_id", "archive_date", "rank", name="uq_history_round_date_rank"),
    )

    id = Column(Integer, primary_key=True)
    round_id = Column(String, nullable=False, index=True)
    archive_date = Column(String, nullable=False, index=True)
    rank = Column(Integer, nullable=False)
    player_id = Column(String, nullable=False)
    points_allocated = Column(Float, nullable=False)
    final_points = Column(Float, nullable=False)
    top3_positions = Column(String, nullable=False, default="")


class LeaderboardState(Base):
    """
    每個回合排行榜的版本與最後更新時間

    結算替換、歸檔、清除都會先鎖這一列
    """
    __tablename__ = "leaderboard_states"

    round_id = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    last_updated_ts = Column(Integer, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)


class PriceQuote(Base):
    __tablename__ = "price_quotes"

    token_mint = Column(String, primary_key=True)
    token_name = Column(String, nullable=True)
    value = Column(Float, nullable=False)
    update_timestamp = Column(Integer, nullable=False)


class RoundPayout(Base):
    """回合付款紀錄（呼叫 Vault 之前先寫入 pending，避免重跑回合結束流程時重複付款）"""
    __tablename__ = "round_payouts"

    round_id = Column(String, primary_key=True)
    player_id = Column(String, nullable=False)
    status = Column(Enum(PayoutStatus), nullable=False, default=PayoutStatus.PAID)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    paid_at = Column(DateTime(timezone=True), nullable=True)
