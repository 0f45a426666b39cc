"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- ValidationError：輸入格式錯誤或超出範圍，不重試
- NotFoundError：找不到 deposit / 點數
- ConflictError：重複 deposit、重複倉位、點數不足
- TransientInfraError：網路或資料庫暫時性錯誤，下一次排程會自然恢復
- PermanentLedgerError：Vault 拒絕操作，需人工處理
"""


class RoundGameException(Exception):
    """所有遊戲異常的基類"""
    pass


class BusinessRuleViolation(RoundGameException):
    """呼叫者可預期的錯誤（輸入、權限、衝突），不是系統故障"""
    pass


# ============ 輸入驗證 ============

class ValidationError(BusinessRuleViolation):
    """欄位缺漏或數值不合法"""
    pass


# ============ 找不到資料 ============

class NotFoundError(BusinessRuleViolation):
    """資料不存在"""
    pass


class BalanceNotFound(NotFoundError):
    """玩家在此回合沒有點數紀錄（尚未 deposit）"""
    def __init__(self, player_id, round_id):
        self.player_id = player_id
        self.round_id = round_id
        super().__init__(f"No points balance for {player_id} in round {round_id}")


class NotEligible(BusinessRuleViolation):
    """玩家沒有 deposit 也沒有 NFT 資格"""
    def __init__(self, player_id, round_id):
        self.player_id = player_id
        self.round_id = round_id
        super().__init__(f"Player {player_id} is not allowed to play round {round_id}")


# ============ 衝突 ============

class ConflictError(BusinessRuleViolation):
    """違反業務規則（重複、點數不足）"""
    pass


class DuplicateEntry(ConflictError):
    """同一回合重複 deposit"""
    def __init__(self, player_id, round_id):
        self.player_id = player_id
        self.round_id = round_id
        super().__init__(f"Deposit for {player_id} in round {round_id} already exists")


class DuplicatePosition(ConflictError):
    """同一回合同一代幣已經有倉位"""
    def __init__(self, player_id, round_id, token_mint):
        self.player_id = player_id
        self.round_id = round_id
        self.token_mint = token_mint
        super().__init__(
            f"Position on {token_mint} for {player_id} in round {round_id} already exists"
        )


class InsufficientPoints(ConflictError):
    """剩餘點數不足"""
    def __init__(self, requested, remaining=None):
        self.requested = requested
        self.remaining = remaining
        super().__init__(f"Insufficient points: requested {requested}, remaining {remaining}")


class RoundClosed(ConflictError):
    """回合目前的階段不接受此操作（例如 deposit 已暫停）"""
    def __init__(self, round_id, phase, action):
        self.round_id = round_id
        self.phase = phase
        self.action = action
        super().__init__(f"Round {round_id} does not accept {action} while {phase}")


# ============ 狀態轉換異常 ============

class InvalidStateTransition(RoundGameException):
    """非法的狀態轉換"""
    pass


# ============ 外部系統 ============

class TransientInfraError(RoundGameException):
    """暫時性錯誤（網路、資料庫），可以在下一次觸發時重試"""
    pass


class PriceFeedError(TransientInfraError):
    """價格來源暫時無法取得"""
    pass


class VaultTransientError(TransientInfraError):
    """Vault 暫時性錯誤（timeout、blockhash 過期）"""
    pass


class PermanentLedgerError(RoundGameException):
    """Vault 因非冪等原因拒絕操作"""
    pass


class VaultPermanentError(PermanentLedgerError):
    """Vault 回傳無法重試的錯誤"""
    def __init__(self, operation, detail):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Vault rejected {operation}: {detail}")
