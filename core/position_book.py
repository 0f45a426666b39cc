"""
Position Book：管理玩家在每個回合的紙上倉位

職責：
1. 開單一倉位（驗證 → 資格 → 重複檢查 → 預扣點數 → 寫入）
2. 批次開倉（全部成功或全部失敗）
3. 查詢倉位

原則：
- 預扣點數和寫入倉位在同一個 transaction：
  任何一步失敗都會 rollback，不會出現「點數扣了但倉位沒建立」
- 批次開倉在寫入任何倉位「之前」就檢查總點數
"""
from dataclasses import dataclass
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Sequence
import logging
import math

from config import token_name_for
from models import Position, PositionType, unix_now
from core.exceptions import (
    DuplicatePosition,
    InsufficientPoints,
    NotEligible,
    ValidationError
)
from core.points_ledger import PointsLedger
from services.eligibility_service import get_play_eligibility
from services.naming_service import validate_player_id
from database import transactional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionSpec:
    """開倉請求（尚未驗證）"""
    token_mint: Optional[str]
    entry_price: Optional[float]
    leverage: Optional[float]
    points_allocated: Optional[float]
    position_type: Optional[str]
    liquidation_price: Optional[float]
    token_name: Optional[str] = None


def parse_position_type(value) -> PositionType:
    """把字串轉成 PositionType，不認得的類型直接拒絕"""
    if isinstance(value, PositionType):
        return value
    try:
        return PositionType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown position type: {value}")


def validate_spec(spec: PositionSpec) -> PositionSpec:
    """
    驗證開倉請求

    規則：
    - 所有欄位都必須有值
    - 數值欄位必須是有限數字（拒絕 inf、nan）
    - leverage、points_allocated、entry_price、liquidation_price 必須 > 0
    - 代幣必須在可下注清單中
    - position_type 必須是 long 或 short

    返回：
        正規化後的 PositionSpec（補上代幣名稱、PositionType）
    """
    required = {
        "token_mint": spec.token_mint,
        "entry_price": spec.entry_price,
        "leverage": spec.leverage,
        "points_allocated": spec.points_allocated,
        "position_type": spec.position_type,
        "liquidation_price": spec.liquidation_price,
    }
    missing = [name for name, value in required.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")

    numeric = {
        "entry_price": spec.entry_price,
        "leverage": spec.leverage,
        "points_allocated": spec.points_allocated,
        "liquidation_price": spec.liquidation_price,
    }
    for name, value in numeric.items():
        try:
            finite = math.isfinite(value)
        except TypeError:
            raise ValidationError(f"{name} should be a number")
        if not finite:
            raise ValidationError(f"{name} should be a finite number")

    if spec.points_allocated <= 0:
        raise ValidationError("Points allocated should be greater than 0")
    if spec.leverage <= 0:
        raise ValidationError("Leverage should be greater than 0")
    if spec.entry_price <= 0:
        raise ValidationError("Entry price should be greater than 0")
    if spec.liquidation_price <= 0:
        raise ValidationError("Liquidation price should be greater than 0")

    token_name = token_name_for(spec.token_mint)
    if token_name is None:
        raise ValidationError(f"Token {spec.token_mint} is not playable")

    return PositionSpec(
        token_mint=spec.token_mint,
        token_name=token_name,
        entry_price=float(spec.entry_price),
        leverage=float(spec.leverage),
        points_allocated=float(spec.points_allocated),
        position_type=parse_position_type(spec.position_type),
        liquidation_price=float(spec.liquidation_price),
    )


class PositionBook:
    """倉位簿"""

    @staticmethod
    def open_position(db: Session, player_id: str, round_id: str, spec: PositionSpec) -> Position:
        """
        開單一倉位

        流程：
        1. 驗證欄位
        2. 驗證資格（deposit 或 NFT）
        3. 檢查是否已有同代幣倉位
        4. 預扣點數（條件式 UPDATE）
        5. 寫入倉位

        異常：
            ValidationError: 欄位不合法
            NotEligible: 沒有參賽資格
            DuplicatePosition: 已有同代幣倉位
            BalanceNotFound: 沒有點數紀錄
            InsufficientPoints: 點數不足
        """
        player_id = validate_player_id(player_id)
        spec = validate_spec(spec)

        try:
            return PositionBook._open_one(db, player_id, round_id, spec)
        except IntegrityError:
            # 同一代幣的兩個請求同時通過存在檢查 → unique constraint 擋下，預扣已 rollback
            raise DuplicatePosition(player_id, round_id, spec.token_mint)

    @staticmethod
    @transactional
    def _open_one(db: Session, player_id: str, round_id: str, spec: PositionSpec) -> Position:
        PositionBook._require_eligible(db, player_id, round_id)

        if PositionBook._position_exists(db, player_id, round_id, spec.token_mint):
            raise DuplicatePosition(player_id, round_id, spec.token_mint)

        PointsLedger.reserve_points(db, player_id, round_id, spec.points_allocated)

        position = PositionBook._build(player_id, round_id, spec)
        db.add(position)
        db.flush()

        logger.info(
            f"Position opened for {player_id} in round {round_id}: "
            f"{spec.position_type.value} {spec.token_name} x{spec.leverage} "
            f"({spec.points_allocated} points)"
        )
        return position

    @staticmethod
    def open_positions(
        db: Session,
        player_id: str,
        round_id: str,
        specs: Sequence[PositionSpec]
    ) -> List[Position]:
        """
        批次開倉（全部成功或全部失敗）

        流程：
        1. 驗證所有請求（包含批次內重複代幣）
        2. 驗證資格
        3. 檢查每個代幣是否已有倉位
        4. 在寫入之前比較「總點數」與剩餘點數
        5. 一次預扣總點數，寫入所有倉位

        異常：
            同 open_position；任一失敗則整批不寫入
        """
        player_id = validate_player_id(player_id)
        if not specs:
            raise ValidationError("No positions passed")

        validated = [validate_spec(spec) for spec in specs]

        seen = set()
        for spec in validated:
            if spec.token_mint in seen:
                raise DuplicatePosition(player_id, round_id, spec.token_mint)
            seen.add(spec.token_mint)

        try:
            return PositionBook._open_many(db, player_id, round_id, validated)
        except IntegrityError:
            raise DuplicatePosition(player_id, round_id, ",".join(sorted(seen)))

    @staticmethod
    @transactional
    def _open_many(db: Session, player_id: str, round_id: str, specs: List[PositionSpec]) -> List[Position]:
        PositionBook._require_eligible(db, player_id, round_id)

        for spec in specs:
            if PositionBook._position_exists(db, player_id, round_id, spec.token_mint):
                raise DuplicatePosition(player_id, round_id, spec.token_mint)

        total = sum(spec.points_allocated for spec in specs)
        remaining = PointsLedger.get_remaining(db, player_id, round_id)
        if total > remaining:
            raise InsufficientPoints(total, remaining)

        # 條件式 UPDATE 仍然保護並發的其他開倉請求
        PointsLedger.reserve_points(db, player_id, round_id, total)

        positions = [PositionBook._build(player_id, round_id, spec) for spec in specs]
        db.add_all(positions)
        db.flush()

        logger.info(
            f"{len(positions)} positions opened for {player_id} in round {round_id} "
            f"({total} points)"
        )
        return positions

    @staticmethod
    def list_positions(db: Session, player_id: str, round_id: str) -> List[Position]:
        """查詢玩家本回合的倉位（依建立順序）"""
        return db.query(Position).filter(
            Position.player_id == player_id,
            Position.round_id == round_id
        ).order_by(Position.id).all()

    @staticmethod
    def list_round_positions(db: Session, round_id: str) -> List[Position]:
        return db.query(Position).filter(
            Position.round_id == round_id
        ).order_by(Position.id).all()

    @staticmethod
    def _require_eligible(db: Session, player_id: str, round_id: str) -> None:
        if get_play_eligibility(player_id, round_id, db) is None:
            raise NotEligible(player_id, round_id)

    @staticmethod
    def _position_exists(db: Session, player_id: str, round_id: str, token_mint: str) -> bool:
        return db.query(Position).filter(
            Position.player_id == player_id,
            Position.round_id == round_id,
            Position.token_mint == token_mint
        ).first() is not None

    @staticmethod
    def _build(player_id: str, round_id: str, spec: PositionSpec) -> Position:
        return Position(
            player_id=player_id,
            round_id=round_id,
            token_name=spec.token_name,
            token_mint=spec.token_mint,
            entry_price=spec.entry_price,
            leverage=spec.leverage,
            points_allocated=spec.points_allocated,
            position_type=spec.position_type,
            liquidation_price=spec.liquidation_price,
            timestamp=unix_now()
        )
