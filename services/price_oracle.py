"""
Price oracle client.

Fetches current prices for the playable tokens from the Birdeye public
API. One bulk request is tried first; when it fails the client falls back
to one request per token. A token whose price cannot be fetched gets a
zero-value quote, and callers treat a zero quote as "skip this position
for this cycle". get_prices never raises.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

import httpx
from sqlalchemy.orm import Session

from config import token_name_for
from core.exceptions import PriceFeedError
from models import PriceQuote, unix_now

logger = logging.getLogger(__name__)

MULTI_PRICE_PATH = "/defi/multi_price"
PRICE_PATH = "/defi/price"


@dataclass(frozen=True)
class Quote:
    token: str
    value: float
    update_timestamp: int


class PriceOracleClient:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"accept": "application/json", "x-chain": "solana"}
        if api_key:
            headers["X-API-KEY"] = api_key
        self._client = client or httpx.Client(base_url=base_url, headers=headers, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def get_prices(self, tokens: Sequence[str]) -> List[Quote]:
        """
        Return one quote per requested token, in request order.

        Empty input returns [] without touching the network. Tokens the
        feed could not price come back with value 0.
        """
        tokens = list(dict.fromkeys(tokens))
        if not tokens:
            return []

        found = self._fetch_bulk(tokens)
        missing = [token for token in tokens if token not in found]
        if missing:
            logger.warning(f"Bulk price fetch incomplete, fetching {len(missing)} token(s) one by one")
            for token in missing:
                found[token] = self._fetch_single(token)

        return [found[token] for token in tokens]

    def _fetch_bulk(self, tokens: List[str]) -> Dict[str, Quote]:
        try:
            response = self._client.get(MULTI_PRICE_PATH, params={"list_address": ",".join(tokens)})
            response.raise_for_status()
            payload = response.json()
            if not payload.get("success", True):
                raise PriceFeedError(payload.get("message", "unsuccessful response"))
            data = payload.get("data") or {}
            quotes = {}
            for token in tokens:
                entry = data.get(token)
                if entry and entry.get("value") is not None:
                    quotes[token] = _quote_from(token, entry)
            return quotes
        except (httpx.HTTPError, PriceFeedError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Bulk price fetch failed: {e}")
            return {}

    def _fetch_single(self, token: str) -> Quote:
        try:
            response = self._client.get(PRICE_PATH, params={"address": token})
            response.raise_for_status()
            payload = response.json()
            entry = payload.get("data")
            if not payload.get("success", True) or not entry or entry.get("value") is None:
                raise PriceFeedError(f"no price in response for {token}")
            return _quote_from(token, entry)
        except (httpx.HTTPError, PriceFeedError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Price fetch failed for {token}: {e}")
            return Quote(token=token, value=0.0, update_timestamp=unix_now())


def _quote_from(token: str, entry: dict) -> Quote:
    return Quote(
        token=token,
        value=float(entry["value"]),
        update_timestamp=int(entry.get("updateUnixTime") or unix_now()),
    )


def price_map(quotes: Sequence[Quote]) -> Dict[str, float]:
    """Usable prices only: zero quotes are dropped."""
    return {quote.token: quote.value for quote in quotes if quote.value > 0}


def save_price_snapshot(quotes: Sequence[Quote], db: Session) -> None:
    """
    Replace the cached price table wholesale. Runs inside the caller's
    transaction (flush only).
    """
    db.query(PriceQuote).delete(synchronize_session=False)
    for quote in quotes:
        db.add(PriceQuote(
            token_mint=quote.token,
            token_name=token_name_for(quote.token),
            value=quote.value,
            update_timestamp=quote.update_timestamp,
        ))
    db.flush()


def get_price_snapshot(db: Session) -> List[PriceQuote]:
    return db.query(PriceQuote).order_by(PriceQuote.token_name).all()


def get_price_last_updated(db: Session) -> Optional[int]:
    latest = db.query(PriceQuote).order_by(PriceQuote.update_timestamp.desc()).first()
    return latest.update_timestamp if latest else None
