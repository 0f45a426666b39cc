from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging

from config import get_settings
from database import Base, SessionLocal, engine
from api import admin, players, rounds
from core.round_scheduler import RoundScheduler
from core.settlement_engine import SettlementEngine
from services.price_oracle import PriceOracleClient
from services.vault_authority import HttpVaultAuthority

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表、外部服務 client、排程器
    Base.metadata.create_all(bind=engine)

    oracle = PriceOracleClient(
        settings.birdeye_base_url,
        api_key=settings.birdeye_api_key,
        timeout=settings.price_timeout_seconds
    )
    vault = HttpVaultAuthority(
        settings.vault_base_url,
        api_key=settings.vault_api_key,
        timeout=settings.vault_timeout_seconds
    )
    settlement = SettlementEngine(oracle)
    scheduler = RoundScheduler(
        SessionLocal,
        vault,
        settlement,
        settlement_interval_minutes=settings.settlement_interval_minutes,
        max_retries=settings.vault_max_retries
    )

    await asyncio.to_thread(scheduler.bootstrap)

    app.state.engine = settlement
    app.state.scheduler = scheduler
    task = asyncio.create_task(scheduler.run())

    yield

    # Shutdown: 停止排程、關閉 HTTP client
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    oracle.close()
    vault.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Points Round API",
    description="Backend API for the daily leveraged points round",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(players.router)
app.include_router(rounds.router)
app.include_router(admin.router)


@app.get("/")
def root():
    return {"message": "Points Round API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
