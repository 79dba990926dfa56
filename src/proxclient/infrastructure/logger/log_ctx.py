# proxclient/infrastructure/logger/log_ctx.py
import logging
import contextvars
from contextlib import contextmanager
from typing import Dict, Any, Iterator

# контекст хранится в contextvars, чтобы работать и в потоках, и в async
_LOG_CTX: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "_LOG_CTX", default={}
)

# поля, которые выводит консольный формат; пустые заменяются на "-"
CONTEXT_FIELDS = ("vmid", "node", "upid")


def set_context(**kwargs) -> None:
    """Добавить или обновить поля (vmid, node, upid, …)."""
    ctx = _LOG_CTX.get().copy()
    ctx.update(kwargs)
    _LOG_CTX.set(ctx)


def clear_context() -> None:
    _LOG_CTX.set({})


def get_context() -> Dict[str, Any]:
    return dict(_LOG_CTX.get())


@contextmanager
def log_context(**kwargs) -> Iterator[None]:
    """
    Поля контекста на время блока. На выходе контекст возвращается
    к прежнему состоянию, даже если блок упал.
    """
    token = _LOG_CTX.set({**_LOG_CTX.get(), **kwargs})
    try:
        yield
    finally:
        _LOG_CTX.reset(token)


class ContextFilter(logging.Filter):
    """Приклеивает поля из _LOG_CTX к каждому LogRecord’у."""
    def filter(self, record: logging.LogRecord) -> bool:          # noqa: D401
        ctx = _LOG_CTX.get()
        for k, v in ctx.items():
            # vmid: только целое, node: только непустая строка
            if k == "vmid" and not isinstance(v, int):
                continue
            if k == "node" and not (isinstance(v, str) and v):
                continue
            setattr(record, k, v)
        return True
