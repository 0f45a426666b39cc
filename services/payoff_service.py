"""
計分服務：紙上槓桿倉位的結算邏輯

純計算邏輯，沒有 I/O，相同輸入永遠得到相同結果
"""
from typing import Dict, Iterable, List, Tuple

from models import Position, PositionType


def score(
    entry_price: float,
    leverage: float,
    current_price: float,
    liquidation_price: float,
    points_allocated: float,
    position_type: PositionType,
) -> float:
    """
    計算一個倉位目前的點數

    步驟：
    1. 爆倉檢查：Long 價格跌破爆倉價、Short 價格漲破爆倉價 → 0
    2. unit_points = points_allocated / entry_price（entry_price 為 0 時視為 0）
    3. notional = unit_points * current_price
    4. Long: raw_diff = notional - points_allocated
       Short: raw_diff = points_allocated - notional
    5. leveraged = raw_diff * leverage
    6. final = max(leveraged + points_allocated, 0)

    範例：
        score(100, 2, 110, 90, 50, PositionType.LONG) -> 60
        unit_points=0.5, notional=55, raw_diff=5, leveraged=10, final=60

    異常：
        ValueError: 未知的 position_type
    """
    if position_type == PositionType.LONG:
        if current_price < liquidation_price:
            return 0
    elif position_type == PositionType.SHORT:
        if current_price > liquidation_price:
            return 0
    else:
        raise ValueError(f"Unhandled position type: {position_type!r}")

    unit_points = points_allocated / entry_price if entry_price else 0
    notional = unit_points * current_price

    if position_type == PositionType.LONG:
        raw_diff = notional - points_allocated
    else:
        raw_diff = points_allocated - notional

    leveraged = raw_diff * leverage
    final = leveraged + points_allocated
    return max(final, 0)


def score_position(position: Position, current_price: float) -> float:
    return score(
        entry_price=position.entry_price,
        leverage=position.leverage,
        current_price=current_price,
        liquidation_price=position.liquidation_price,
        points_allocated=position.points_allocated,
        position_type=position.position_type,
    )


def score_positions(
    positions: Iterable[Position],
    prices: Dict[str, float],
) -> List[Tuple[Position, float]]:
    """
    計算多個倉位的點數

    沒有報價（或報價為 0）的代幣直接跳過，不視為錯誤

    返回：
        [(Position, points)]，順序與輸入相同
    """
    scored = []
    for position in positions:
        current_price = prices.get(position.token_mint)
        if not current_price:
            continue
        scored.append((position, score_position(position, current_price)))
    return scored


def top_positions(scored: List[Tuple[Position, float]], limit: int = 3) -> str:
    """
    取出點數最高的前 N 個倉位名稱（以逗號串接）

    同分時保留原本順序（sorted 是 stable sort）
    """
    ranked = sorted(scored, key=lambda item: item[1], reverse=True)
    return ",".join(position.token_name for position, _ in ranked[:limit])
