"""
並發控制工具

提供兩層鎖定機制，防止競態條件（Race Condition）：
1. Database-level：PostgreSQL 的 SELECT ... FOR UPDATE（悲觀鎖）
2. Process-level：依 round_id 分配的 threading.Lock（固定數量），
   讓定期結算和回合結束流程不會交錯（SQLite 不支援 FOR UPDATE）

注意：鎖只能包住資料庫操作，不可以在持有鎖的期間呼叫外部網路服務
"""
import threading
import zlib
from contextlib import contextmanager
from typing import Iterator, List

from sqlalchemy.orm import Session, Query

from models import LeaderboardState, Round

# 固定數量的鎖，依 round_id 分配（不同回合可能共用同一把）
BOARD_GUARD_STRIPES = 16
_board_guards: List[threading.Lock] = [threading.Lock() for _ in range(BOARD_GUARD_STRIPES)]


def with_current_round_lock(db: Session) -> Query:
    """
    鎖定目前的回合列（行級鎖）

    使用場景：
    - 輪替回合 ID 時，避免兩個輪替請求同時寫入

    範例：
        round_obj = with_current_round_lock(db).first()
        round_obj.round_id = new_id
        db.commit()
    """
    return db.query(Round).order_by(Round.id).with_for_update(nowait=False)


def with_board_lock(round_id: str, db: Session) -> Query:
    """
    鎖定一個回合的排行榜狀態列（行級鎖）

    使用場景：
    - 整批替換即時排行榜
    - 歸檔到歷史紀錄（防止重複歸檔）
    - 清除即時排行榜

    返回：
        Query object（需要呼叫 .first() 取得結果）
    """
    return db.query(LeaderboardState).filter(
        LeaderboardState.round_id == round_id
    ).with_for_update(nowait=False)


@contextmanager
def round_board_guard(round_id: str) -> Iterator[None]:
    """
    Process-level 的回合鎖

    範例：
        with round_board_guard(ctx.round_id):
            replace_leaderboard(db, ...)
    """
    with board_guard_for(round_id):
        yield


def board_guard_for(round_id: str) -> threading.Lock:
    """同一個 round_id 永遠拿到同一把鎖"""
    return _board_guards[zlib.crc32(round_id.encode()) % BOARD_GUARD_STRIPES]

