import time
import logging
from typing import Any, Callable, Mapping, Optional

from ..domain.transport import ITransport
from ..shared.retry import retry_sync

logger = logging.getLogger(__name__)

DEFAULT_FETCH_BACKOFF = 5.0


def fetch_json(
    transport: ITransport,
    path: str,
    max_attempts: int,
    params: Optional[Mapping[str, Any]] = None,
    backoff: float = DEFAULT_FETCH_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    GET JSON с повтором при любой ошибке (только для идемпотентных чтений).

    Класс ошибки не анализируется: после max_attempts неудач
    пробрасывается последняя.
    """
    return retry_sync(
        lambda: transport.get_json(path, params),
        max_attempts,
        backoff,
        label=f"GET {path}",
        sleep=sleep,
    )
