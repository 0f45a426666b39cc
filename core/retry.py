"""
有限次數重試

    vault_call = with_retry(vault.pause_deposits, is_retryable=is_transient, max_retries=2)
    state = vault_call()

只有 is_retryable 判斷為暫時性的錯誤才會重試，其他錯誤第一次就往上拋
"""
import functools
import logging
import time
from typing import Callable, TypeVar

from core.exceptions import TransientInfraError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientInfraError)


def with_retry(
    func: Callable[..., _T],
    *,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    max_retries: int = 2,
    base_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[..., _T]:
    """
    包裝 func：最多呼叫 1 + max_retries 次，每次間隔指數退避

    參數：
        func: 要呼叫的函式
        is_retryable: 判斷錯誤是否可重試
        max_retries: 額外重試次數（不含第一次）
        base_delay: 第一次重試前等待秒數
        sleep: 等待函式（測試時可替換）
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max_retries + 1
        for n in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if n == attempts or not is_retryable(e):
                    raise
                delay = base_delay * 2 ** (n - 1)
                logger.warning(
                    f"{getattr(func, '__name__', func)} failed ({e}), "
                    f"retry {n}/{max_retries} in {delay:.1f}s"
                )
                sleep(delay)

    return wrapper
