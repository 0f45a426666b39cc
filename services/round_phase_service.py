"""
回合階段服務：每日排程的時間計算

每日回合設計（UTC）：
- 00:00 輪替回合 ID，維持 INACTIVE
- 01:00 INACTIVE → DEPOSITS_OPEN
- 22:00 DEPOSITS_OPEN → DEPOSITS_PAUSED
- 23:00 DEPOSITS_PAUSED → INACTIVE（結算、歸檔、付款）

純計算邏輯，不呼叫任何外部服務
"""
from datetime import datetime, time, timedelta, timezone

from models import RoundPhase

ROTATE_ROUND_AT = time(0, 0)
OPEN_DEPOSITS_AT = time(1, 0)
PAUSE_DEPOSITS_AT = time(22, 0)
CLOSE_ROUND_AT = time(23, 0)


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def next_daily_run(now: datetime, at: time) -> datetime:
    """
    下一次在每日 at 時刻執行的時間（嚴格晚於 now）

    範例：
        next_daily_run(2024-05-01 00:30, 01:00) -> 2024-05-01 01:00
        next_daily_run(2024-05-01 01:00, 01:00) -> 2024-05-02 01:00
    """
    now = _as_utc(now)
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_cadence_run(now: datetime, interval_minutes: int) -> datetime:
    """
    下一個對齊 interval_minutes 的時間（同 cron 的 */5）

    範例：
        next_cadence_run(10:07:30, 5) -> 10:10:00
        next_cadence_run(10:10:00, 5) -> 10:15:00
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    now = _as_utc(now)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - day_start).total_seconds()
    step = interval_minutes * 60
    slots = int(elapsed // step) + 1
    return day_start + timedelta(seconds=slots * step)


def expected_phase_at(now: datetime) -> RoundPhase:
    """
    依時間推算此刻應該處於的階段

    用途：
        程式在白天重啟時，判斷是否要恢復結算排程
    """
    current = _as_utc(now).time()
    if OPEN_DEPOSITS_AT <= current < PAUSE_DEPOSITS_AT:
        return RoundPhase.DEPOSITS_OPEN
    if PAUSE_DEPOSITS_AT <= current < CLOSE_ROUND_AT:
        return RoundPhase.DEPOSITS_PAUSED
    return RoundPhase.INACTIVE


def settlement_allowed(phase: RoundPhase) -> bool:
    """
    此階段是否要跑定期結算

    DEPOSITS_PAUSED 仍然結算，直到 23:00 回合結束
    """
    return phase in (RoundPhase.DEPOSITS_OPEN, RoundPhase.DEPOSITS_PAUSED)


def archive_date_for(now: datetime) -> str:
    """歸檔日期（UTC，YYYY-MM-DD）"""
    return _as_utc(now).strftime("%Y-%m-%d")
