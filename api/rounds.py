"""
Round API Endpoints - 短輪詢版

重點：
1. 排行榜每 N 分鐘由排程器整批替換，前端用 last-updated 判斷是否要重新抓
2. 歷史排行榜可依日期與回合篩選
3. 價格是最後一次結算時的快照，不會在請求中呼叫外部價格服務
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import (
    HistoryItem,
    LastUpdatedResponse,
    LeaderboardItem,
    LeaderboardResponse,
    PriceItem,
    RoundInfoResponse
)
from api.deps import get_round_context
from core.round_context import RoundContext
from core.round_manager import RoundManager
from core.settlement_engine import SettlementEngine
from services.history_service import get_leaderboard_history
from services.price_oracle import get_price_last_updated, get_price_snapshot

router = APIRouter(prefix="/api/rounds", tags=["rounds"])
logger = logging.getLogger(__name__)


@router.get("/current", response_model=RoundInfoResponse)
def get_current_round(
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """
    取得當前回合資訊

    返回：
        - round_id: 回合 ID
        - phase: 回合階段（INACTIVE/DEPOSITS_OPEN/DEPOSITS_PAUSED）
        - games_played: 已輪替的回合數
    """
    try:
        return RoundInfoResponse(
            round_id=ctx.round_id,
            phase=ctx.phase,
            games_played=RoundManager.get_games_played(db)
        )

    except Exception as e:
        logger.error(f"Failed to get current round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    """
    取得本回合的即時排行榜（最多 10 名，依 final_points 由高到低）

    version 每次整批替換都會 +1
    """
    try:
        entries = SettlementEngine.get_live_leaderboard(db, ctx.round_id)
        state = SettlementEngine.get_state(db, ctx.round_id)

        return LeaderboardResponse(
            round_id=ctx.round_id,
            version=state.version if state else 0,
            last_updated_ts=state.last_updated_ts if state else None,
            entries=[
                LeaderboardItem(
                    player_id=e.player_id,
                    points_allocated=e.points_allocated,
                    final_points=e.final_points,
                    top3_positions=e.top3_positions
                )
                for e in entries
            ]
        )

    except Exception as e:
        logger.error(f"Failed to get leaderboard: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/leaderboard/last-updated", response_model=LastUpdatedResponse)
def get_leaderboard_last_updated(
    db: Session = Depends(get_db),
    ctx: RoundContext = Depends(get_round_context)
):
    state = SettlementEngine.get_state(db, ctx.round_id)
    return LastUpdatedResponse(last_updated_ts=state.last_updated_ts if state else None)


@router.get("/leaderboard/history", response_model=List[HistoryItem])
def get_history(
    date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    round_id: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """歸檔的排行榜（依日期、回合、名次排序）"""
    try:
        rows = get_leaderboard_history(db, archive_date=date, round_id=round_id)
        return [
            HistoryItem(
                round_id=row.round_id,
                archive_date=row.archive_date,
                rank=row.rank,
                player_id=row.player_id,
                points_allocated=row.points_allocated,
                final_points=row.final_points,
                top3_positions=row.top3_positions
            )
            for row in rows
        ]

    except Exception as e:
        logger.error(f"Failed to get leaderboard history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/prices", response_model=List[PriceItem])
def get_prices(db: Session = Depends(get_db)):
    quotes = get_price_snapshot(db)
    return [
        PriceItem(
            token_mint=q.token_mint,
            token_name=q.token_name,
            value=q.value,
            update_timestamp=q.update_timestamp
        )
        for q in quotes
    ]


@router.get("/prices/last-updated", response_model=LastUpdatedResponse)
def get_prices_last_updated(db: Session = Depends(get_db)):
    return LastUpdatedResponse(last_updated_ts=get_price_last_updated(db))
