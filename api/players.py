"""
Pool API Endpoints（玩家）

職責：
1. 玩家 deposit、查詢 deposit 紀錄
2. 開倉（單一 / 批次）、查詢倉位與即時分數
3. 查詢剩餘點數與參賽資格

所有操作都以排程器提供的 RoundContext 為準，不接受前端傳入回合 ID
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import Position
from schemas import (
    DepositHistoryItem,
    DepositRequest,
    DepositResponse,
    EligibilityResponse,
    PointsResponse,
    PositionCreate,
    PositionResponse,
    PositionsBatchCreate,
    PositionStatsResponse,
    PositionSubmit
)
from api.deps import get_engine, get_round_context
from core.exceptions import (
    ConflictError,
    NotEligible,
    NotFoundError,
    RoundClosed,
    ValidationError
)
from core.points_ledger import PointsLedger
from core.position_book import PositionBook, PositionSpec
from core.round_context import RoundContext
from core.settlement_engine import SettlementEngine
from services.eligibility_service import get_play_eligibility
from services.naming_service import validate_player_id

router = APIRouter(prefix="/api/pool", tags=["pool"])
logger = logging.getLogger(__name__)


def _to_spec(data: PositionCreate) -> PositionSpec:
    return PositionSpec(
        token_mint=data.token_mint,
        entry_price=data.entry_price,
        leverage=data.leverage,
        points_allocated=data.points_allocated,
        position_type=data.position_type,
        liquidation_price=data.liquidation_price
    )


def _to_response(position: Position) -> PositionResponse:
    return PositionResponse(
        id=position.id,
        player_id=position.player_id,
        round_id=position.round_id,
        token_name=position.token_name,
        token_mint=position.token_mint,
        entry_price=position.entry_price,
        leverage=position.leverage,
        points_allocated=position.points_allocated,
        position_type=position.position_type,
        liquidation_price=position.liquidation_price,
        timestamp=position.timestamp
    )


@router.post("/deposit", response_model=DepositResponse)
def create_deposit(
    data: DepositRequest,
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """
    記錄玩家本回合的 deposit，並給予 MAX_POINTS 點

    前置條件：
    - 回合必須在 DEPOSITS_OPEN
    - 本回合尚未 deposit
    """
    try:
        if not ctx.deposits_open:
            raise RoundClosed(ctx.round_id, ctx.phase.value, "deposits")

        deposit, balance = PointsLedger.allocate_deposit(db, data.player_id, ctx.round_id)

        return DepositResponse(
            player_id=deposit.player_id,
            round_id=deposit.round_id,
            remaining_points=balance.remaining,
            timestamp=deposit.timestamp
        )

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create deposit: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/deposits", response_model=List[DepositHistoryItem])
def get_deposits(player_id: str = Query(...), db: Session = Depends(get_db)):
    """玩家所有回合的 deposit 紀錄"""
    try:
        player_id = validate_player_id(player_id)
        deposits = PointsLedger.get_deposits(db, player_id)
        return [
            DepositHistoryItem(round_id=d.round_id, timestamp=d.timestamp)
            for d in deposits
        ]

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get deposits: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/positions", response_model=PositionResponse)
def create_position(
    data: PositionSubmit,
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """
    開單一倉位

    錯誤對應：
    - 400：欄位不合法
    - 403：沒有參賽資格
    - 404：沒有點數紀錄
    - 409：重複倉位、點數不足、回合未開始
    """
    try:
        if not ctx.is_active:
            raise RoundClosed(ctx.round_id, ctx.phase.value, "positions")

        position = PositionBook.open_position(db, data.player_id, ctx.round_id, _to_spec(data))
        return _to_response(position)

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotEligible as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create position: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/positions/batch", response_model=List[PositionResponse])
def create_positions(
    data: PositionsBatchCreate,
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """批次開倉：全部成功或全部失敗"""
    try:
        if not ctx.is_active:
            raise RoundClosed(ctx.round_id, ctx.phase.value, "positions")

        specs = [_to_spec(item) for item in data.positions]
        positions = PositionBook.open_positions(db, data.player_id, ctx.round_id, specs)
        return [_to_response(p) for p in positions]

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotEligible as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create positions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/positions", response_model=List[PositionResponse])
def get_positions(
    player_id: str = Query(...),
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    try:
        player_id = validate_player_id(player_id)
        positions = PositionBook.list_positions(db, player_id, ctx.round_id)
        return [_to_response(p) for p in positions]

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get positions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/positions/stats", response_model=PositionStatsResponse)
def get_position_stats(
    player_id: str = Query(...),
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context),
    engine: SettlementEngine = Depends(get_engine)
):
    """
    玩家倉位的即時分數（用目前價格計算，不寫入排行榜）
    """
    try:
        player_id = validate_player_id(player_id)
        stats = engine.position_stats(db, player_id, ctx)
        if stats is None:
            raise HTTPException(status_code=404, detail="No positions found")
        return PositionStatsResponse(**stats)

    except HTTPException:
        raise
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get position stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/points", response_model=PointsResponse)
def get_points(
    player_id: str = Query(...),
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    try:
        player_id = validate_player_id(player_id)
        remaining = PointsLedger.get_remaining(db, player_id, ctx.round_id)
        return PointsResponse(player_id=player_id, round_id=ctx.round_id, remaining_points=remaining)

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get points: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/eligibility", response_model=EligibilityResponse)
def get_eligibility(
    player_id: str = Query(...),
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """玩家本回合是否可以開倉（deposit 或 NFT）"""
    try:
        player_id = validate_player_id(player_id)
        method = get_play_eligibility(player_id, ctx.round_id, db)
        return EligibilityResponse(
            player_id=player_id,
            round_id=ctx.round_id,
            allowed=method is not None,
            method=method
        )

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get eligibility: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
