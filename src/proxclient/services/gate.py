import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from ..domain.models import OperationClass
from ..shared.settings import Config

T = TypeVar("T")


class OperationGate:
    """
    Взаимоисключение для классов операций clone / resize.

    Если config помечает класс как параллельный, guard() ничего не блокирует.
    Замки двух классов независимы.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._locks = {
            OperationClass.CLONE: threading.Lock(),
            OperationClass.RESIZE: threading.Lock(),
        }

    def serialized(self, op_class: OperationClass) -> bool:
        if op_class is OperationClass.CLONE:
            return not self.config.parallel_clone
        if op_class is OperationClass.RESIZE:
            return not self.config.parallel_resize
        return False

    @contextmanager
    def guard(self, op_class: OperationClass) -> Iterator[None]:
        if not self.serialized(op_class):
            yield
            return

        lock = self._locks[op_class]
        self.logger.debug("Ожидание замка %s", op_class.value)
        with lock:
            yield

    def with_gate(self, op_class: OperationClass, fn: Callable[..., T], *args, **kwargs) -> T:
        with self.guard(op_class):
            return fn(*args, **kwargs)
