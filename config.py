from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


MAX_POINTS = 100

# 可下注的代幣（名稱 + mint address）
PLAYABLE_TOKENS = [
    {"name": "BONK", "mint": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"},
    {"name": "WIF", "mint": "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"},
    {"name": "BOME", "mint": "ukHH6c7mMyiWCf1b9pnWe25TSpkDDt3H5pQZgZ74J82"},
    {"name": "POPCAT", "mint": "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"},
    {"name": "MEW", "mint": "MEW1gQWJ3nEXg2qgERiKu7FAFj79PHvQVREQUzScPP5"},
    {"name": "WEN", "mint": "WENWENvqqNya429ubCdR81ZmD69brwQaaBYY6p3LCpk"},
    {"name": "GIGA", "mint": "63LfDmNb3MQ8mw9MtZ2To9bEA2M71kZUUGq5tiJxcqj9"},
    {"name": "CWIF", "mint": "7atgF8KQo4wJrD5ATGX7t1V2zVvykPJbFfNeVf1icFv1"},
]


class Settings(BaseSettings):
    database_url: str = "sqlite:///./points_round.db"

    birdeye_base_url: str = "https://public-api.birdeye.so"
    birdeye_api_key: Optional[str] = None
    price_timeout_seconds: float = 10.0

    vault_base_url: str = "http://localhost:8787"
    vault_api_key: Optional[str] = None
    vault_timeout_seconds: float = 30.0
    vault_max_retries: int = 2

    settlement_interval_minutes: int = 5
    admin_secret: Optional[str] = None
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


def playable_mints() -> list[str]:
    return [token["mint"] for token in PLAYABLE_TOKENS]


def token_name_for(mint: str) -> Optional[str]:
    for token in PLAYABLE_TOKENS:
        if token["mint"] == mint:
            return token["name"]
    return None
