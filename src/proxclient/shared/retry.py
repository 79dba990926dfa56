import time
import logging
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_sync(
    fn: Callable[[], T],
    retries: int,
    backoff: float,
    label: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Синхронный retry с фиксированной паузой.

    Любое исключение считается временным. После последней попытки
    пробрасывается последняя ошибка.
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")

    for attempt in range(1, retries + 1):
        try:
            return fn()
        except Exception as e:
            logger.warning(
                "[retry] Ошибка в %s (попытка %s/%s): %s",
                label or getattr(fn, "__name__", "fn"), attempt, retries, e
            )
            if attempt == retries:
                raise
            sleep(backoff)
