"""
Round Scheduler：驅動每日回合生命週期

每日排程（UTC）：
- 00:00 rotate_round    輪替回合 ID
- 01:00 open_deposits   Vault activate_round → resume_deposits，開始定期結算
- 22:00 pause_deposits  Vault pause_deposits（仍然結算）
- 23:00 close_round     停止結算 → 最後一次結算 → 歸檔 → 贏家 → 付款 → pause_round → 清除即時排行榜
- 每 N 分鐘 settle      定期結算

原則：
- RoundContext 只由這裡寫入，其他元件只讀
- 每個 Vault 呼叫都經過有限次數重試（只重試暫時性錯誤）
- 每次 Vault 呼叫成功後立刻更新本地快取的階段
- 排程失敗只記錄 log，不在同一個 tick 內重跑，等下一次排程
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from models import PayoutStatus, RoundPhase
from core.exceptions import InvalidStateTransition, PermanentLedgerError, TransientInfraError
from core.retry import with_retry
from core.round_context import RoundContext
from core.round_manager import RoundManager
from core.settlement_engine import SettlementEngine
from services.round_phase_service import (
    CLOSE_ROUND_AT,
    OPEN_DEPOSITS_AT,
    PAUSE_DEPOSITS_AT,
    ROTATE_ROUND_AT,
    archive_date_for,
    expected_phase_at,
    next_cadence_run,
    next_daily_run,
    settlement_allowed,
)
from services.vault_authority import VaultAuthority, VaultState

logger = logging.getLogger(__name__)

# 每個轉換允許的起始階段（已在目標階段也允許，Vault 會回報 already in state）
# open_deposits 任何階段都可以執行：前一天回合結束失敗時，仍要能開始新的回合
ALLOWED_FROM = {
    "open_deposits": tuple(RoundPhase),
    "pause_deposits": (RoundPhase.DEPOSITS_OPEN, RoundPhase.DEPOSITS_PAUSED),
    "close_round": (RoundPhase.DEPOSITS_OPEN, RoundPhase.DEPOSITS_PAUSED),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoundScheduler:
    """每日回合排程器"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        vault: VaultAuthority,
        engine: SettlementEngine,
        settlement_interval_minutes: int = 5,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._session_factory = session_factory
        self.vault = vault
        self.engine = engine
        self.settlement_interval_minutes = settlement_interval_minutes
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep

        self._state_lock = threading.Lock()
        self._context: Optional[RoundContext] = None
        self._settlement_enabled = False

    # ============ 狀態 ============

    @property
    def context(self) -> Optional[RoundContext]:
        with self._state_lock:
            return self._context

    @property
    def settlement_enabled(self) -> bool:
        with self._state_lock:
            return self._settlement_enabled

    def _set_context(self, ctx: RoundContext) -> None:
        with self._state_lock:
            self._context = ctx

    def _set_settlement(self, enabled: bool) -> None:
        with self._state_lock:
            self._settlement_enabled = enabled

    def _require_context(self) -> RoundContext:
        ctx = self.context
        if ctx is None:
            raise InvalidStateTransition("Round scheduler has not been bootstrapped")
        return ctx

    def _require_phase(self, job: str) -> RoundContext:
        ctx = self._require_context()
        if ctx.phase not in ALLOWED_FROM[job]:
            raise InvalidStateTransition(f"Cannot run {job} while round is {ctx.phase.value}")
        return ctx

    def _apply_phase(self, state: VaultState) -> RoundContext:
        """Vault 回傳新狀態後：寫入本地快取並更新 RoundContext"""
        db = self._session_factory()
        try:
            RoundManager.save_phase(db, state.phase)
        finally:
            db.close()

        ctx = self._require_context().with_phase(state.phase)
        self._set_context(ctx)
        logger.info(f"Round {ctx.round_id} is now {ctx.phase.value}")
        return ctx

    def _vault_call(self, operation: Callable[..., VaultState], *args) -> VaultState:
        kwargs = {"max_retries": self.max_retries, "base_delay": self.retry_delay}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return with_retry(operation, **kwargs)(*args)

    # ============ 啟動 ============

    def bootstrap(self) -> RoundContext:
        """
        啟動時載入 RoundContext

        流程：
        1. 取得或建立回合 ID
        2. 向 Vault 查詢目前階段；查不到就沿用本地快取
        3. 階段允許時開啟定期結算
        """
        db = self._session_factory()
        try:
            round_obj = RoundManager.fetch_or_create_round_id(db)
            round_id = round_obj.round_id
            phase = RoundManager.load_phase(db)
        finally:
            db.close()

        self._set_context(RoundContext(round_id=round_id, phase=phase))

        try:
            self._apply_phase(self._vault_call(self.vault.get_state))
        except (TransientInfraError, PermanentLedgerError) as e:
            logger.warning(f"Vault state unavailable at startup, using cached phase {phase.value}: {e}")

        ctx = self._require_context()
        expected = expected_phase_at(self._clock())
        if ctx.phase != expected:
            logger.warning(
                f"Round phase {ctx.phase.value} differs from schedule ({expected.value}), "
                f"waiting for the next transition"
            )
        self._set_settlement(settlement_allowed(ctx.phase))
        logger.info(
            f"Round scheduler bootstrapped: round {ctx.round_id}, phase {ctx.phase.value}, "
            f"settlement {'on' if self.settlement_enabled else 'off'}"
        )
        return ctx

    # ============ 每日排程 ============

    def rotate_round(self) -> RoundContext:
        """
        00:00 輪替回合 ID（admin 手動輪替也走這裡）

        舊回合已歸檔但贏家沒有付款紀錄時記錄 ERROR：
        輪替之後排程不會再替舊回合付款，需要人工處理
        """
        current = self.context
        db = self._session_factory()
        try:
            if current is not None:
                unpaid = RoundManager.find_unpaid_round(db, current.round_id)
                if unpaid is not None:
                    archive_date, winner = unpaid
                    logger.error(
                        f"Round {current.round_id} ({archive_date}) rotated without a recorded payout "
                        f"to {winner}; manual payout required"
                    )
            round_obj = RoundManager.rotate_round_id(db)
            round_id = round_obj.round_id
        finally:
            db.close()

        current = self.context
        ctx = current.with_round_id(round_id) if current else RoundContext(round_id=round_id)
        self._set_context(ctx)
        return ctx

    def open_deposits(self) -> RoundContext:
        """01:00 INACTIVE → DEPOSITS_OPEN"""
        self._require_phase("open_deposits")

        self._apply_phase(self._vault_call(self.vault.activate_round))
        ctx = self._apply_phase(self._vault_call(self.vault.resume_deposits))

        self._set_settlement(True)
        return ctx

    def pause_deposits(self) -> RoundContext:
        """22:00 DEPOSITS_OPEN → DEPOSITS_PAUSED"""
        self._require_phase("pause_deposits")
        return self._apply_phase(self._vault_call(self.vault.pause_deposits))

    def close_round(self) -> RoundContext:
        """
        23:00 回合結束

        流程：
        1. 停止定期結算
        2. 最後一次結算
        3. 歸檔排行榜（冪等）
        4. 從歸檔讀出贏家
        5. 付款（已付過就跳過）
        6. Vault pause_round
        7. 清除即時排行榜

        異常：
            付款失敗直接往上拋，不暫停回合也不清除排行榜，下次排程重跑
        """
        ctx = self._require_phase("close_round")
        self._set_settlement(False)
        archive_date = archive_date_for(self._clock())

        db = self._session_factory()
        try:
            self.engine.run_settlement(db, ctx)
            self.engine.archive_leaderboard(db, ctx.round_id, archive_date)
            winner = self.engine.get_winner(db, ctx.round_id, archive_date)
            payout = RoundManager.get_payout(db, ctx.round_id)
            payout_status = payout.status if payout else None
        finally:
            db.close()

        if winner is None:
            logger.info(f"Round {ctx.round_id} ended without a winner")
        elif payout_status == PayoutStatus.PAID:
            logger.info(f"Round {ctx.round_id} already paid out, skipping payout")
        else:
            self._pay_winner(ctx.round_id, winner, pending=payout_status == PayoutStatus.PENDING)

        ctx = self._apply_phase(self._vault_call(self.vault.pause_round))

        db = self._session_factory()
        try:
            self.engine.clear_live_leaderboard(db, ctx.round_id)
        finally:
            db.close()

        logger.info(f"Round {ctx.round_id} closed (winner: {winner})")
        return ctx

    def _pay_winner(self, round_id: str, winner: str, pending: bool) -> None:
        """
        付款給贏家

        流程：
        1. 已有 pending 紀錄 → 先向 Vault 查詢 last_winner，已經付過就只補寫 paid 紀錄
        2. 否則先寫入 pending 紀錄
        3. 呼叫 Vault 付款；Vault 明確拒絕時刪除 pending 紀錄
        4. 寫入 paid 紀錄
        """
        if pending:
            state = self._vault_call(self.vault.get_state)
            if state.last_winner == winner:
                logger.warning(f"Payout for round {round_id} already reached the vault, recording it")
                self._with_session(RoundManager.record_payout, round_id, winner)
                self._apply_phase(state)
                return
        else:
            self._with_session(RoundManager.begin_payout, round_id, winner)

        try:
            state = self._vault_call(self.vault.payout_winner, winner)
        except PermanentLedgerError:
            self._with_session(RoundManager.cancel_payout, round_id)
            raise

        self._with_session(RoundManager.record_payout, round_id, winner)
        self._apply_phase(state)

    def _with_session(self, operation: Callable[..., object], *args):
        db = self._session_factory()
        try:
            return operation(db, *args)
        finally:
            db.close()

    # ============ 定期結算 ============

    def settle(self):
        """定期結算一次；結算關閉或階段不允許時直接返回 None"""
        ctx = self.context
        if ctx is None or not self.settlement_enabled or not settlement_allowed(ctx.phase):
            return None

        db = self._session_factory()
        try:
            return self.engine.run_settlement(db, ctx)
        finally:
            db.close()

    # ============ 排程迴圈 ============

    def _jobs(self) -> Dict[str, Callable[[], object]]:
        return {
            "rotate_round": self.rotate_round,
            "open_deposits": self.open_deposits,
            "pause_deposits": self.pause_deposits,
            "close_round": self.close_round,
            "settle": self.settle,
        }

    def next_job(self, now: datetime) -> Tuple[str, datetime]:
        """
        下一個要跑的排程

        同一時間點有多個排程時，每日排程優先於定期結算
        """
        candidates = [
            ("rotate_round", next_daily_run(now, ROTATE_ROUND_AT)),
            ("open_deposits", next_daily_run(now, OPEN_DEPOSITS_AT)),
            ("pause_deposits", next_daily_run(now, PAUSE_DEPOSITS_AT)),
            ("close_round", next_daily_run(now, CLOSE_ROUND_AT)),
            ("settle", next_cadence_run(now, self.settlement_interval_minutes)),
        ]
        return min(candidates, key=lambda item: item[1])

    def run_job(self, name: str) -> None:
        """執行一個排程；失敗只記錄 log"""
        try:
            self._jobs()[name]()
        except Exception as e:
            logger.error(f"Scheduled job {name} failed: {e}", exc_info=True)

    async def run(self) -> None:
        """排程主迴圈（由 FastAPI lifespan 啟動、關閉時 cancel）"""
        logger.info("Round scheduler started")
        try:
            while True:
                now = self._clock()
                name, due = self.next_job(now)
                delay = max((due - now).total_seconds(), 0)
                logger.debug(f"Next job {name} at {due.isoformat()}")
                await asyncio.sleep(delay)
                await asyncio.to_thread(self.run_job, name)
        except asyncio.CancelledError:
            logger.info("Round scheduler stopped")
            raise
