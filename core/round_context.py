"""
RoundContext：目前回合的身分與階段

由 RoundScheduler 建立並傳入每一個 ledger / book / engine 呼叫，
其他元件不從全域狀態讀取回合 ID
"""
from dataclasses import dataclass, replace

from models import RoundPhase


@dataclass(frozen=True)
class RoundContext:
    round_id: str
    phase: RoundPhase = RoundPhase.INACTIVE

    def with_phase(self, phase: RoundPhase) -> "RoundContext":
        return replace(self, phase=phase)

    def with_round_id(self, round_id: str) -> "RoundContext":
        return replace(self, round_id=round_id)

    @property
    def is_active(self) -> bool:
        return self.phase != RoundPhase.INACTIVE

    @property
    def deposits_open(self) -> bool:
        return self.phase == RoundPhase.DEPOSITS_OPEN
