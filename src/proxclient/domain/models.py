# proxclient/domain/models.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from ..exceptions.proxmox import SubmissionError, TaskFailedError, TaskTimeoutError

EXIT_STATUS_OK = "OK"


class OperationClass(enum.Enum):
    CLONE = "clone"
    RESIZE = "resize"
    UNRESTRICTED = "unrestricted"


class TaskStatus(enum.Enum):
    PENDING = "pending"                    # только внутри TaskPoller
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SUBMISSION_ERROR = "submission_error"
    NO_TASK = "no_task"                    # сервер не создал задачу (no-op)


@dataclass(frozen=True)
class TaskOutcome:
    """Итог ожидания задачи. reason: exitstatus при FAILED, JSON ошибок при SUBMISSION_ERROR."""
    status: TaskStatus
    upid: Optional[str] = None
    reason: Optional[str] = None
    waited: int = 0

    @property
    def ok(self) -> bool:
        return self.status is TaskStatus.SUCCESS

    @property
    def exit_status(self) -> str:
        """Строка exitstatus как её вернул сервер, "" если задача не завершилась."""
        if self.status is TaskStatus.SUCCESS:
            return EXIT_STATUS_OK
        if self.status is TaskStatus.FAILED:
            return self.reason or ""
        return ""

    def raise_for_status(self) -> "TaskOutcome":
        if self.status is TaskStatus.SUBMISSION_ERROR:
            raise SubmissionError(self.reason or "")
        if self.status is TaskStatus.FAILED:
            raise TaskFailedError(self.upid or "", self.reason or "")
        if self.status is TaskStatus.TIMED_OUT:
            raise TaskTimeoutError(self.upid or "", self.waited)
        return self


@dataclass
class VmRef:
    """
    Ссылка на ВМ: vmid + лениво определяемые node / type (qemu, lxc).

    После первого разрешения node/type кешируются на всё время жизни ссылки.
    Миграция ВМ на другую ноду не отслеживается.
    """
    vmid: int
    node: str = ""
    vm_type: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "_frozen_vmid", self.vmid)

    def __setattr__(self, name, value):
        if name == "vmid" and hasattr(self, "_frozen_vmid"):
            raise AttributeError("vmid is immutable")
        super().__setattr__(name, value)

    @property
    def resolved(self) -> bool:
        return bool(self.node and self.vm_type)

    def set_location(self, node: str, vm_type: str) -> None:
        self.node = node
        self.vm_type = vm_type

    def path(self) -> str:
        """Базовый путь ВМ в API: /nodes/{node}/{type}/{vmid}."""
        return f"/nodes/{self.node}/{self.vm_type}/{self.vmid}"


@dataclass(frozen=True)
class DiskDescriptor:
    storage: str
    volume: str
    size: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.storage}:{self.volume}"
