"""
命名服務：生成 Round ID、驗證玩家 ID

純計算邏輯，不涉及狀態轉換
"""
import random
import string

import base58

from core.exceptions import ValidationError

ROUND_ID_LENGTH = 10
PUBKEY_BYTES = 32


def generate_round_id() -> str:
    """
    生成隨機的 10 位小寫字母回合 ID

    範例：kdjqhabzxe

    注意：
    - 不檢查是否與上一個 ID 相同（由呼叫者負責）
    - ID 本身沒有意義，只作為不透明的識別字串
    """
    return ''.join(random.choices(string.ascii_lowercase, k=ROUND_ID_LENGTH))


def validate_player_id(player_id: str) -> str:
    """
    驗證玩家 ID 是 base58 編碼的 32 bytes 公鑰

    返回：
        去除前後空白後的玩家 ID

    異常：
        ValidationError: 格式不正確
    """
    if not player_id or not isinstance(player_id, str):
        raise ValidationError("Missing player id")

    player_id = player_id.strip()
    try:
        raw = base58.b58decode(player_id)
    except ValueError:
        raise ValidationError(f"Invalid player id: {player_id}")

    if len(raw) != PUBKEY_BYTES:
        raise ValidationError(f"Invalid player id: {player_id}")
    return player_id
