"""
Типизированные формы ответов Proxmox API.

Каждая модель проверяет только те поля, от которых зависит протокол
ожидания задач. parse() превращает ValidationError в ResponseDecodeError.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..exceptions.proxmox import ResponseDecodeError


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def parse(cls, payload: Any):
        if not isinstance(payload, dict):
            raise ResponseDecodeError(
                cls.__name__, details=f"expected JSON object, got {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ResponseDecodeError(cls.__name__, details=str(e)) from e


class TaskSubmission(_Response):
    """{"data": "<UPID>"} или {"errors": {...}}."""
    data: Optional[str] = None
    errors: Any = None

    @property
    def rejected(self) -> bool:
        return self.errors is not None


class TaskStatusData(_Response):
    exitstatus: Optional[str] = None


class TaskStatusResponse(_Response):
    """{"data": {"exitstatus": "OK"}}; exitstatus отсутствует, пока задача идёт."""
    data: TaskStatusData


class DiskCreation(_Response):
    """{"data": "<storage>:<volume>"}."""
    data: Optional[str] = None


class IdAllocation(_Response):
    """{"data": "106"} или {"errors": {...}}."""
    data: Optional[str] = None
    errors: Any = None

    @property
    def rejected(self) -> bool:
        return self.errors is not None

    def next_id(self) -> int:
        if self.data is None:
            raise ResponseDecodeError(type(self).__name__, details="field 'data' is missing")
        try:
            return int(self.data)
        except ValueError as e:
            raise ResponseDecodeError(type(self).__name__, details=f"non-numeric id {self.data!r}") from e


class DataEnvelope(_Response):
    """Общая обёртка {"data": ...} для справочных запросов."""
    data: Any = None
