"""
TaskPoller
──────────
Доводит задачу Proxmox (UPID) до терминального exitstatus:
опрос /nodes/{node}/tasks/{upid}/status с фиксированным интервалом
и жёстким общим таймаутом.
"""
from __future__ import annotations

import json
import re
import time
import logging
from typing import Any, Callable, Optional

from ..domain.models import EXIT_STATUS_OK, TaskOutcome, TaskStatus
from ..domain.responses import TaskStatusResponse, TaskSubmission
from ..domain.transport import ITransport
from ..exceptions.proxmox import MalformedTaskHandleError, TruncatedResponseError
from ..infrastructure.logger.log_ctx import log_context

TASK_TIMEOUT = 300
TASK_STATUS_CHECK_INTERVAL = 2

_RX_TASK_NODE = re.compile(r"^UPID:([^:]+):")


def node_from_upid(upid: str) -> str:
    """Имя ноды: подстрока между первым и вторым ':' в UPID."""
    m = _RX_TASK_NODE.match(upid) if isinstance(upid, str) else None
    if not m:
        raise MalformedTaskHandleError(upid)
    return m.group(1)


class TaskPoller:
    def __init__(
        self,
        transport: ITransport,
        timeout: int = TASK_TIMEOUT,
        interval: int = TASK_STATUS_CHECK_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.timeout = timeout
        self.interval = interval
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    def exit_status(self, upid: str) -> Optional[str]:
        """Один запрос статуса. None, пока задача выполняется."""
        node = node_from_upid(upid)
        payload = self.transport.get_json(f"/nodes/{node}/tasks/{upid}/status")
        return TaskStatusResponse.parse(payload).data.exitstatus or None

    def wait(
        self,
        submission: Any,
        timeout: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> TaskOutcome:
        """
        Ожидание завершения задачи по ответу на её постановку.

        :param submission: Декодированный ответ на POST/PUT/DELETE.
        :return: TaskOutcome c SUCCESS / FAILED / TIMED_OUT / SUBMISSION_ERROR / NO_TASK.
        :raises ValueError: Интервал опроса не положителен.
        :raises MalformedTaskHandleError: UPID не содержит ноды.
        :raises TransportError: Ошибка опроса статуса (кроме оборванного тела ответа).
        """
        timeout = self.timeout if timeout is None else timeout
        interval = self.interval if interval is None else interval
        if interval <= 0:
            raise ValueError(f"poll interval must be positive, got {interval}")

        sub = TaskSubmission.parse(submission)
        if sub.rejected:
            reason = json.dumps(sub.errors, indent=2, ensure_ascii=False)
            self.logger.warning("Запрос отклонён API: %s", reason)
            return TaskOutcome(TaskStatus.SUBMISSION_ERROR, reason=reason)
        if sub.data is None:
            return TaskOutcome(TaskStatus.NO_TASK)

        upid = sub.data
        node_from_upid(upid)
        with log_context(upid=upid):
            return self._poll(upid, timeout, interval)

    def _poll(self, upid: str, timeout: int, interval: int) -> TaskOutcome:
        waited = 0
        while waited < timeout:
            try:
                exit_status = self.exit_status(upid)
            except TruncatedResponseError as e:
                # оборванный ответ не фатален: считаем, что задача ещё идёт
                self.logger.debug("Оборванный ответ статуса %s: %s", upid, e)
                exit_status = None

            if exit_status is not None:
                if exit_status == EXIT_STATUS_OK:
                    self.logger.info("Задача %s завершена: OK (%s s)", upid, waited)
                    return TaskOutcome(TaskStatus.SUCCESS, upid=upid, waited=waited)
                self.logger.warning("Задача %s завершилась ошибкой: %s", upid, exit_status)
                return TaskOutcome(TaskStatus.FAILED, upid=upid, reason=exit_status, waited=waited)

            self._sleep(interval)
            waited += interval

        self.logger.warning("Wait timeout for: %s (%s s)", upid, waited)
        return TaskOutcome(TaskStatus.TIMED_OUT, upid=upid, reason=f"Wait timeout for:{upid}", waited=waited)
