# proxclient/infrastructure/logger/logger_setup.py
from __future__ import annotations

import logging
import logging.handlers
from dataclasses import dataclass
from queue import Queue
from typing import Callable, Tuple

from .log_ctx import CONTEXT_FIELDS, ContextFilter

# ────────────────────────────────────────────────────────────────────────
#  Настройки «тихого режима» для болтливых библиотек
# ────────────────────────────────────────────────────────────────────────
_NOISY_LIBS = (
    "httpx",
    "httpcore",
)

CORE_LOGGER_NAME = "ms.proxclient"


def _mute_third_party() -> None:
    """Переключаем болтливые библиотеки на WARNING и запрещаем propagate."""
    for name in _NOISY_LIBS:
        lib_log = logging.getLogger(name)
        lib_log.setLevel(logging.WARNING)
        lib_log.propagate = False


# ────────────────────────────────────────────────────────────────────────
#  Конфигурация логирования HTTP-транспорта
# ────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class HttpLogConfig:
    """
    Явная настройка дампов запросов/ответов для Session.
    Глобального флага debug нет: объект передаётся в транспорт.
    """
    debug: bool = False
    redact: Tuple[str, ...] = ("password",)


def console_formatter() -> logging.Formatter:
    """Формат консоли: поля контекста (vmid/node/upid) или "-", если их нет."""
    return logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s [vm=%(vmid)s node=%(node)s task=%(upid)s]: %(message)s",
        "%Y-%m-%d %H:%M:%S",
        defaults={field: "-" for field in CONTEXT_FIELDS},
    )


class _ListenerAttached(logging.handlers.QueueHandler):
    """QueueHandler-маркер: логгер уже настроен, повторно не вешаем."""


# ────────────────────────────────────────────────────────────────────────
#  Фабрика логгеров
# ────────────────────────────────────────────────────────────────────────
def _create_logger(*, name: str, level: int = logging.INFO) -> Tuple[logging.Logger, Callable[[], None]]:
    """
    Возвращает (логгер, stop_fn).  stop_fn нужно вызвать при завершении работы
    процесса, чтобы корректно погасить QueueListener.
    """
    log = logging.getLogger(name)

    # Если хендлер уже висит, возвращаем существующий логгер
    if any(isinstance(h, _ListenerAttached) for h in log.handlers):
        return log, lambda: None

    # ── базовые настройки ───────────────────────────────────────────
    log.setLevel(logging.DEBUG)          # всё принимаем, фильтруем на хендлерах
    log.propagate = False                # изолируемся от root
    q: Queue = Queue()
    queue_handler = _ListenerAttached(q)
    queue_handler.addFilter(ContextFilter())   # ← vmid / node / upid из контекста потока
    log.addHandler(queue_handler)

    # ── консоль ─────────────────────────────────────────────────────
    console = logging.StreamHandler()
    console.setFormatter(console_formatter())
    console.setLevel(level)
    console.addFilter(lambda r: r.name.split(".")[0] not in _NOISY_LIBS)

    listener = logging.handlers.QueueListener(q, console, respect_handler_level=True)
    listener.start()

    # приглушаем сторонние библиотеки
    _mute_third_party()

    return log, listener.stop


# ───── публичные врапперы ──────────────────────────────────────────────
def setup_core_logger(level: int = logging.INFO) -> Tuple[logging.Logger, Callable[[], None]]:
    """
    Логгер клиента. Логгеры модулей (proxclient.*) подключаются
    к нему через attach_library_loggers().
    """
    return _create_logger(name=CORE_LOGGER_NAME, level=level)


def attach_library_loggers(core: logging.Logger, prefix: str = "proxclient") -> None:
    """Перенаправляет записи логгеров пакета в хендлеры core-логгера."""
    lib = logging.getLogger(prefix)
    lib.setLevel(logging.DEBUG)
    lib.propagate = False
    for h in core.handlers:
        if h not in lib.handlers:
            lib.addHandler(h)
