"""
共用的 FastAPI dependencies

RoundScheduler 和 SettlementEngine 在 lifespan 建立後放在 app.state
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from config import get_settings
from core.round_context import RoundContext
from core.round_scheduler import RoundScheduler
from core.settlement_engine import SettlementEngine


def get_scheduler(request: Request) -> RoundScheduler:
    return request.app.state.scheduler


def get_engine(request: Request) -> SettlementEngine:
    return request.app.state.engine


def get_round_context(scheduler: RoundScheduler = Depends(get_scheduler)) -> RoundContext:
    """目前回合的 RoundContext（排程器尚未啟動完成時返回 503）"""
    ctx = scheduler.context
    if ctx is None:
        raise HTTPException(status_code=503, detail="Round not initialized")
    return ctx


def require_admin(x_admin_secret: Optional[str] = Header(None)):
    expected = get_settings().admin_secret
    if expected is None:
        raise HTTPException(status_code=500, detail="Admin secret not configured")
    if x_admin_secret != expected:
        raise HTTPException(status_code=403, detail="Forbidden")
