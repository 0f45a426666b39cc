"""
Settlement Engine：把 deposit、倉位、即時價格轉成排行榜

職責：
1. 定期結算（每 5 分鐘）：重新計算並整批替換即時排行榜
2. 回合結束：歸檔排行榜 → 從歸檔讀出贏家 → 清除即時排行榜
3. 查詢即時排行榜與玩家的倉位統計

冪等性：
- 相同的 deposit / 倉位 / 價格永遠得到相同排行榜，
  中途 crash 只要等下一次排程重跑即可
- 同一回合同一天重複歸檔不會產生重複的歷史紀錄

並發安全：
- 價格在鎖外抓取；替換、歸檔、清除都在回合鎖 + 行級鎖內完成
- 刪除與寫入在同一個 transaction，讀取端不會看到空的排行榜
"""
from collections import OrderedDict
from dataclasses import dataclass
from sqlalchemy.orm import Session
from typing import Dict, List, Optional, Sequence
import logging

from config import playable_mints
from models import (
    Deposit,
    LeaderboardEntry,
    LeaderboardHistoryEntry,
    LeaderboardState,
    Position,
    unix_now
)
from core.locks import round_board_guard, with_board_lock
from core.points_ledger import PointsLedger
from core.position_book import PositionBook
from core.round_context import RoundContext
from services import history_service
from services.payoff_service import score_positions, top_positions
from services.price_oracle import PriceOracleClient, Quote, price_map, save_price_snapshot
from database import transactional

logger = logging.getLogger(__name__)

LEADERBOARD_SIZE = 10


@dataclass(frozen=True)
class PlayerStanding:
    player_id: str
    points_allocated: float
    final_points: float
    top3_positions: str


def build_standings(
    deposits: Sequence[Deposit],
    positions: Sequence[Position],
    prices: Dict[str, float],
    limit: int = LEADERBOARD_SIZE
) -> List[PlayerStanding]:
    """
    計算排行榜（純函式）

    流程：
    1. 依 deposit 順序走訪每個玩家（同一玩家只算一次）
    2. 沒有倉位的玩家跳過
    3. 加總投入點數；沒有報價的倉位不計分
    4. 依 final_points 由高到低排序，同分保留 deposit 順序
    5. 取前 limit 名
    """
    by_player: Dict[str, List[Position]] = {}
    for position in positions:
        by_player.setdefault(position.player_id, []).append(position)

    players = OrderedDict()
    for deposit in deposits:
        players.setdefault(deposit.player_id, None)

    standings = []
    for player_id in players:
        player_positions = by_player.get(player_id)
        if not player_positions:
            continue

        scored = score_positions(player_positions, prices)
        standings.append(PlayerStanding(
            player_id=player_id,
            points_allocated=sum(p.points_allocated for p in player_positions),
            final_points=sum(points for _, points in scored),
            top3_positions=top_positions(scored)
        ))

    ranked = sorted(standings, key=lambda s: s.final_points, reverse=True)
    return ranked[:limit]


class SettlementEngine:
    """排行榜結算引擎"""

    def __init__(self, oracle: PriceOracleClient, tokens: Optional[Sequence[str]] = None):
        self.oracle = oracle
        self.tokens = list(tokens) if tokens is not None else playable_mints()

    # ============ 定期結算 ============

    def run_settlement(self, db: Session, ctx: RoundContext) -> Optional[List[LeaderboardEntry]]:
        """
        結算一次並替換即時排行榜

        中止條件（保留原本的排行榜）：
        - 抓不到任何價格
        - 本回合沒有 deposit 或沒有倉位
        - 本回合排行榜已經歸檔

        返回：
            新的排行榜；中止時返回 None
        """
        round_id = ctx.round_id

        # 1. 抓價格（網路呼叫，在任何鎖之外）
        quotes = self.oracle.get_prices(self.tokens)
        prices = price_map(quotes)
        if not prices:
            logger.warning(f"Settlement for round {round_id} skipped: no prices")
            return None

        # 2. 讀取 deposit 和倉位
        deposits = PointsLedger.get_round_deposits(db, round_id)
        positions = PositionBook.list_round_positions(db, round_id)
        if not deposits or not positions:
            logger.info(
                f"Settlement for round {round_id} skipped: "
                f"{len(deposits)} deposits, {len(positions)} positions"
            )
            return None

        # 3. 計算
        standings = build_standings(deposits, positions, prices)

        # 4. 整批替換
        with round_board_guard(round_id):
            replaced = self._replace_board(db, round_id, standings, quotes)

        if replaced is None:
            logger.info(f"Settlement for round {round_id} skipped: leaderboard already archived")
            return None

        logger.info(f"Leaderboard for round {round_id} updated with {len(replaced)} entries")
        return replaced

    @staticmethod
    @transactional
    def _replace_board(
        db: Session,
        round_id: str,
        standings: List[PlayerStanding],
        quotes: Sequence[Quote]
    ) -> Optional[List[LeaderboardEntry]]:
        state = SettlementEngine._lock_state(db, round_id)
        if state.archived:
            return None

        db.query(LeaderboardEntry).filter(
            LeaderboardEntry.round_id == round_id
        ).delete(synchronize_session=False)

        entries = [
            LeaderboardEntry(
                round_id=round_id,
                player_id=standing.player_id,
                points_allocated=standing.points_allocated,
                final_points=standing.final_points,
                top3_positions=standing.top3_positions
            )
            for standing in standings
        ]
        db.add_all(entries)

        state.version += 1
        state.last_updated_ts = unix_now()
        save_price_snapshot(quotes, db)
        return entries

    # ============ 回合結束 ============

    def archive_leaderboard(self, db: Session, round_id: str, archive_date: str) -> int:
        """
        把即時排行榜歸檔到歷史紀錄（rank = index + 1）

        冪等：同一回合同一天已經歸檔過就不再寫入

        返回：
            本次寫入的筆數
        """
        with round_board_guard(round_id):
            archived = self._archive(db, round_id, archive_date)
        logger.info(f"Archived {archived} leaderboard entries for round {round_id} ({archive_date})")
        return archived

    @staticmethod
    @transactional
    def _archive(db: Session, round_id: str, archive_date: str) -> int:
        state = SettlementEngine._lock_state(db, round_id)
        state.archived = True

        if history_service.history_exists(round_id, archive_date, db):
            return 0

        entries = SettlementEngine.get_live_leaderboard(db, round_id)
        for index, entry in enumerate(entries):
            db.add(LeaderboardHistoryEntry(
                round_id=round_id,
                archive_date=archive_date,
                rank=index + 1,
                player_id=entry.player_id,
                points_allocated=entry.points_allocated,
                final_points=entry.final_points,
                top3_positions=entry.top3_positions
            ))
        return len(entries)

    def get_winner(self, db: Session, round_id: str, archive_date: str) -> Optional[str]:
        """從歸檔讀出第一名（不可以從即時排行榜讀，它可能已被清除）"""
        return history_service.get_winner(round_id, archive_date, db)

    def clear_live_leaderboard(self, db: Session, round_id: str) -> int:
        with round_board_guard(round_id):
            removed = self._clear(db, round_id)
        logger.info(f"Cleared {removed} live leaderboard entries for round {round_id}")
        return removed

    @staticmethod
    @transactional
    def _clear(db: Session, round_id: str) -> int:
        state = SettlementEngine._lock_state(db, round_id)
        removed = db.query(LeaderboardEntry).filter(
            LeaderboardEntry.round_id == round_id
        ).delete(synchronize_session=False)
        state.version += 1
        state.last_updated_ts = unix_now()
        return removed

    # ============ 查詢 ============

    @staticmethod
    def get_live_leaderboard(db: Session, round_id: str) -> List[LeaderboardEntry]:
        return db.query(LeaderboardEntry).filter(
            LeaderboardEntry.round_id == round_id
        ).order_by(LeaderboardEntry.final_points.desc(), LeaderboardEntry.id).all()

    @staticmethod
    def get_state(db: Session, round_id: str) -> Optional[LeaderboardState]:
        return db.query(LeaderboardState).filter(LeaderboardState.round_id == round_id).first()

    def position_stats(self, db: Session, player_id: str, ctx: RoundContext) -> Optional[dict]:
        """
        玩家目前每個倉位的點數（用即時價格，不寫入資料庫）

        返回：
            沒有倉位時返回 None
        """
        positions = PositionBook.list_positions(db, player_id, ctx.round_id)
        if not positions:
            return None

        prices = price_map(self.oracle.get_prices(self.tokens))
        scored = score_positions(positions, prices)
        return {
            "player_id": player_id,
            "round_id": ctx.round_id,
            "points_allocated": sum(p.points_allocated for p in positions),
            "final_points": sum(points for _, points in scored),
            "top3_positions": top_positions(scored),
            "positions": [
                {"token_name": position.token_name, "resulting_points": points}
                for position, points in scored
            ],
        }

    @staticmethod
    def _lock_state(db: Session, round_id: str) -> LeaderboardState:
        state = with_board_lock(round_id, db).first()
        if not state:
            state = LeaderboardState(round_id=round_id, version=0, archived=False)
            db.add(state)
            db.flush()
        return state
