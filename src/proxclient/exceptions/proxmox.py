import logging
from typing import Iterable, Optional


class ProxmoxError(Exception):
    """Базовый класс для ошибок работы с Proxmox API."""
    def __init__(self, message: str, logger: Optional[logging.Logger] = None):
        super().__init__(message)
        self.message = message
        self.logger = logger
        if self.logger:
            self.logger.error(message)

    def __str__(self):
        return self.message


# ───────────────────────── transport ─────────────────────────
class TransportError(ProxmoxError):
    """Сетевая ошибка или ошибка уровня HTTP."""


class ApiError(TransportError):
    """Сервер ответил кодом вне диапазона 2xx."""
    def __init__(self, code: int, reason: str, logger: Optional[logging.Logger] = None):
        message = f"Proxmox API error {code}: {reason}"
        super().__init__(message, logger)
        self.code = code
        self.reason = reason


class TruncatedResponseError(TransportError):
    """Тело ответа оборвалось раньше объявленной длины (unexpected EOF)."""
    def __init__(self, path: str, logger: Optional[logging.Logger] = None, details: str = None):
        message = f"Ответ на '{path}' оборван до конца тела."
        if details:
            message += f" Детали: {details}"
        super().__init__(message, logger)
        self.path = path
        self.details = details


# ─────────────────────────── tasks ───────────────────────────
class SubmissionError(ProxmoxError):
    """API отклонил запрос до создания задачи."""
    def __init__(self, payload: str, logger: Optional[logging.Logger] = None):
        message = f"Запрос отклонён API: {payload}"
        super().__init__(message, logger)
        self.payload = payload


class TaskFailedError(ProxmoxError):
    """Задача завершилась с exitstatus, отличным от OK."""
    def __init__(self, upid: str, exitstatus: str, logger: Optional[logging.Logger] = None):
        message = f"Задача '{upid}' завершилась ошибкой: {exitstatus}"
        super().__init__(message, logger)
        self.upid = upid
        self.exitstatus = exitstatus


class TaskTimeoutError(ProxmoxError):
    """Истекло время ожидания завершения задачи."""
    def __init__(self, upid: str, timeout: int, logger: Optional[logging.Logger] = None):
        message = f"Wait timeout for: {upid} ({timeout} s)"
        super().__init__(message, logger)
        self.upid = upid
        self.timeout = timeout


# ──────────────────────── preconditions ───────────────────────
class PreconditionError(ProxmoxError):
    """Нарушено предусловие операции. Не повторяется."""


class MalformedTaskHandleError(PreconditionError):
    """Из UPID не удалось извлечь имя ноды."""
    def __init__(self, upid: str, logger: Optional[logging.Logger] = None):
        message = f"Некорректный UPID задачи: {upid!r}"
        super().__init__(message, logger)
        self.upid = upid


class VmNotFoundError(PreconditionError):
    """ВМ не найдена в инвентаре кластера."""
    def __init__(self, vm, logger: Optional[logging.Logger] = None):
        message = f"Vm '{vm}' not found"
        super().__init__(message, logger)
        self.vm = vm


class DiskDescriptorError(PreconditionError):
    """Описание диска не разбирается в storage:volume."""
    def __init__(self, value: str, logger: Optional[logging.Logger] = None, details: str = None):
        message = f"Некорректное описание диска {value!r}."
        if details:
            message += f" Детали: {details}"
        super().__init__(message, logger)
        self.value = value
        self.details = details


class ResponseDecodeError(PreconditionError):
    """Ответ API не соответствует ожидаемой форме."""
    def __init__(self, shape: str, logger: Optional[logging.Logger] = None, details: str = None):
        message = f"Не удалось разобрать ответ {shape}."
        if details:
            message += f" Детали: {details}"
        super().__init__(message, logger)
        self.shape = shape
        self.details = details


# ─────────────────────────── disks ───────────────────────────
class DiskCreateError(ProxmoxError):
    """Ошибка при создании диска ВМ."""
    def __init__(self, disk: str, logger: Optional[logging.Logger] = None, details: str = None):
        message = f"Cannot create VM disk {disk}"
        if details:
            message += f". Детали: {details}"
        super().__init__(message, logger)
        self.disk = disk
        self.details = details


class DiskRollbackError(ProxmoxError):
    """Не удалось удалить созданные диски после неудачного создания ВМ."""
    def __init__(self, disks: Iterable[str], logger: Optional[logging.Logger] = None, details: str = None):
        self.disks = list(disks)
        message = f"Не удалось откатить диски {', '.join(self.disks)}."
        if details:
            message += f" Детали: {details}"
        super().__init__(message, logger)
        self.details = details


class NextIdError(ProxmoxError):
    """Ошибка получения свободного VMID."""
    def __init__(self, logger: Optional[logging.Logger] = None, details: str = None):
        message = "error using /cluster/nextid"
        if details:
            message += f": {details}"
        super().__init__(message, logger)
        self.details = details
