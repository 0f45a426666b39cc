"""
Vault authority client.

The vault program holds the authoritative round state and the prize
pool. Every operation returns the new state directly, so callers never
keep a snapshot that was read before an asynchronous boundary.

HttpVaultAuthority talks to the vault signer service over JSON/HTTP:

    POST /round/activate        -> {"active": true,  "depositsPaused": true}
    POST /round/pause           -> {"active": false, ...}
    POST /deposits/resume       -> {"active": true,  "depositsPaused": false}
    POST /deposits/pause        -> {"active": true,  "depositsPaused": true}
    POST /payout {"winner": ..} -> {"active": ..., "lastWinner": ...}
    GET  /state

A 409 reply carrying the current state means the vault is already in the
requested state, which counts as success.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

import httpx

from core.exceptions import VaultPermanentError, VaultTransientError
from models import RoundPhase

logger = logging.getLogger(__name__)

# 這些錯誤代表交易過期或 RPC 壅塞，重新送出即可
TRANSIENT_MARKERS = (
    "blockhash not found",
    "block height exceeded",
    "blockhash expired",
    "node is behind",
)


@dataclass(frozen=True)
class VaultState:
    phase: RoundPhase
    balance: Optional[int] = None
    last_winner: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "VaultState":
        active = bool(payload.get("active"))
        deposits_paused = bool(payload.get("depositsPaused", True))
        if not active:
            phase = RoundPhase.INACTIVE
        elif deposits_paused:
            phase = RoundPhase.DEPOSITS_PAUSED
        else:
            phase = RoundPhase.DEPOSITS_OPEN
        return cls(
            phase=phase,
            balance=payload.get("balance"),
            last_winner=payload.get("lastWinner"),
        )


class VaultAuthority(ABC):
    @abstractmethod
    def get_state(self) -> VaultState: ...

    @abstractmethod
    def activate_round(self) -> VaultState: ...

    @abstractmethod
    def pause_round(self) -> VaultState: ...

    @abstractmethod
    def resume_deposits(self) -> VaultState: ...

    @abstractmethod
    def pause_deposits(self) -> VaultState: ...

    @abstractmethod
    def payout_winner(self, player_id: str) -> VaultState: ...


class HttpVaultAuthority(VaultAuthority):
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(base_url=base_url, headers=headers, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def get_state(self) -> VaultState:
        return self._call("get_state", "GET", "/state")

    def activate_round(self) -> VaultState:
        return self._call("activate_round", "POST", "/round/activate")

    def pause_round(self) -> VaultState:
        return self._call("pause_round", "POST", "/round/pause")

    def resume_deposits(self) -> VaultState:
        return self._call("resume_deposits", "POST", "/deposits/resume")

    def pause_deposits(self) -> VaultState:
        return self._call("pause_deposits", "POST", "/deposits/pause")

    def payout_winner(self, player_id: str) -> VaultState:
        return self._call("payout_winner", "POST", "/payout", json={"winner": player_id})

    def _call(self, operation: str, method: str, path: str, json: Optional[dict] = None) -> VaultState:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.TransportError as e:
            raise VaultTransientError(f"{operation}: {e}") from e

        payload = _json_or_empty(response)
        detail = str(payload.get("error") or response.text or response.reason_phrase)

        if response.status_code == 409 and isinstance(payload.get("state"), dict):
            logger.info(f"Vault already in target state for {operation}")
            return VaultState.from_payload(payload["state"])

        if response.is_success:
            return VaultState.from_payload(payload.get("state", payload))

        if response.status_code >= 500 or response.status_code == 429 or _is_transient(detail):
            raise VaultTransientError(f"{operation}: {response.status_code} {detail}")

        raise VaultPermanentError(operation, f"{response.status_code} {detail}")


def _is_transient(detail: str) -> bool:
    text = detail.lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
