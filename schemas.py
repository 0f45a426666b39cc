"""
API 請求 / 回應格式
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from models import EligibilityMethod, PositionType, RoundPhase


# ============ Pool ============

class DepositRequest(BaseModel):
    player_id: str = Field(..., min_length=1)


class DepositResponse(BaseModel):
    player_id: str
    round_id: str
    remaining_points: float
    timestamp: int


class DepositHistoryItem(BaseModel):
    round_id: str
    timestamp: int


class PositionCreate(BaseModel):
    token_mint: Optional[str] = None
    entry_price: Optional[float] = None
    leverage: Optional[float] = None
    points_allocated: Optional[float] = None
    position_type: Optional[str] = None
    liquidation_price: Optional[float] = None


class PositionSubmit(PositionCreate):
    player_id: str = Field(..., min_length=1)


class PositionsBatchCreate(BaseModel):
    player_id: str = Field(..., min_length=1)
    positions: List[PositionCreate]


class PositionResponse(BaseModel):
    id: int
    player_id: str
    round_id: str
    token_name: str
    token_mint: str
    entry_price: float
    leverage: float
    points_allocated: float
    position_type: PositionType
    liquidation_price: float
    timestamp: int


class PositionScore(BaseModel):
    token_name: str
    resulting_points: float


class PositionStatsResponse(BaseModel):
    player_id: str
    round_id: str
    points_allocated: float
    final_points: float
    top3_positions: str
    positions: List[PositionScore]


class PointsResponse(BaseModel):
    player_id: str
    round_id: str
    remaining_points: float


class EligibilityResponse(BaseModel):
    player_id: str
    round_id: str
    allowed: bool
    method: Optional[EligibilityMethod] = None


# ============ Rounds ============

class RoundInfoResponse(BaseModel):
    round_id: str
    phase: RoundPhase
    games_played: int


class LeaderboardItem(BaseModel):
    player_id: str
    points_allocated: float
    final_points: float
    top3_positions: str


class LeaderboardResponse(BaseModel):
    round_id: str
    version: int
    last_updated_ts: Optional[int] = None
    entries: List[LeaderboardItem]


class LastUpdatedResponse(BaseModel):
    last_updated_ts: Optional[int] = None


class HistoryItem(LeaderboardItem):
    round_id: str
    archive_date: str
    rank: int


class PriceItem(BaseModel):
    token_mint: str
    token_name: Optional[str] = None
    value: float
    update_timestamp: int


# ============ Admin ============

class NftGrantCreate(BaseModel):
    owner: str = Field(..., min_length=1)
    collection_address: str = Field(..., min_length=1)
    nft_name: Optional[str] = None
    nft_symbol: Optional[str] = None


class NftGrantResponse(BaseModel):
    owner: str
    collection_address: str
    nft_name: Optional[str] = None
    nft_symbol: Optional[str] = None
