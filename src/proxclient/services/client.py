"""
ProxmoxClient
─────────────
Операции жизненного цикла ВМ поверх Proxmox VE API.

Каждая операция: разрешить VmRef → (при необходимости) взять замок класса
операции → отправить запрос → дождаться задачи через TaskPoller → вернуть
TaskOutcome. Ошибки транспорта при отправке пробрасываются.
"""
from __future__ import annotations

import json
import time
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from ..domain.models import OperationClass, TaskOutcome, TaskStatus, VmRef
from ..domain.responses import DataEnvelope, IdAllocation
from ..domain.transport import ITransport
from ..exceptions.proxmox import (
    ApiError,
    DiskRollbackError,
    NextIdError,
    ProxmoxError,
    ResponseDecodeError,
    TransportError,
    VmNotFoundError,
)
from ..infrastructure.logger.log_ctx import log_context
from ..infrastructure.proxmox.session import Session
from ..shared.settings import Config
from .disks import DiskProvisioner, vmid_of
from .fetch import fetch_json
from .gate import OperationGate
from .task_poller import TaskPoller

STATUS_CHANGE_ATTEMPTS = 3
DEFAULT_RESIZE_DISK = "virtio0"

# исходы, после которых status-change повторяет весь цикл submit+wait;
# SUCCESS и SUBMISSION_ERROR возвращаются сразу
_STATUS_CHANGE_RETRY_ON = (TaskStatus.NO_TASK, TaskStatus.TIMED_OUT, TaskStatus.FAILED)


class ProxmoxClient:
    def __init__(
        self,
        config: Config,
        transport: Optional[ITransport] = None,
        poller: Optional[TaskPoller] = None,
        gate: Optional[OperationGate] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        :param config: Параметры подключения и политики ожидания.
        :param transport: Аутентифицированный транспорт; по умолчанию Session(config).
        :param poller: TaskPoller; по умолчанию с таймаутом/интервалом из config.
        :param gate: Замки clone/resize; по умолчанию собственные.
        :param sleep: Функция паузы (подменяется в тестах).
        :param logger: Внешний логгер.
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

        self._owns_transport = transport is None
        self.transport: ITransport = transport or Session(config)
        self.poller = poller or TaskPoller(
            self.transport,
            timeout=config.task_timeout,
            interval=config.task_poll_interval,
            sleep=sleep,
        )
        self.gate = gate or OperationGate(config)
        self.disks = DiskProvisioner(self.transport, logger=self.logger)

    # context manager
    def __enter__(self) -> "ProxmoxClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        if self._owns_transport and hasattr(self.transport, "close"):
            self.transport.close()

    # ─────────── helpers ────────────
    def _fetch(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return fetch_json(
            self.transport,
            path,
            self.config.fetch_retries,
            params=params,
            backoff=self.config.fetch_backoff,
            sleep=self._sleep,
        )

    def _submit_and_wait(
        self,
        label: str,
        submit: Callable[[], httpx.Response],
        op_class: OperationClass = OperationClass.UNRESTRICTED,
    ) -> TaskOutcome:
        # замок держится только на время отправки запроса
        with self.gate.guard(op_class):
            resp = submit()
        outcome = self.poller.wait(self.transport.response_json(resp))
        self.logger.info("%s: %s %s", label, outcome.status.value, outcome.reason or "")
        return outcome

    # ───────── инвентарь / разрешение VmRef ─────────
    def get_node_list(self) -> List[Dict[str, Any]]:
        return DataEnvelope.parse(self._fetch("/nodes")).data or []

    def get_vm_list(self) -> List[Dict[str, Any]]:
        data = DataEnvelope.parse(self._fetch("/cluster/resources", {"type": "vm"})).data
        if data is None:
            return []
        if not isinstance(data, list):
            raise ResponseDecodeError("VmList", details="field 'data' is not a list")
        return data

    @staticmethod
    def _location(vm: Mapping[str, Any]) -> tuple:
        try:
            return str(vm["node"]), str(vm["type"])
        except KeyError as e:
            raise ResponseDecodeError("VmList", details=f"entry without {e}") from e

    def check_vm_ref(self, vmr: VmRef) -> None:
        """Разрешает node/type, если они ещё не известны. Результат кешируется в vmr."""
        if not vmr.resolved:
            self.get_vm_info(vmr)

    def get_vm_info(self, vmr: VmRef) -> Dict[str, Any]:
        for vm in self.get_vm_list():
            if vm.get("vmid") is not None and int(vm["vmid"]) == vmr.vmid:
                vmr.set_location(*self._location(vm))
                return vm
        raise VmNotFoundError(vmr.vmid, logger=self.logger)

    def get_vm_ref_by_name(self, vm_name: str) -> VmRef:
        for vm in self.get_vm_list():
            if vm.get("name") == vm_name:
                vmr = VmRef(int(vm["vmid"]))
                vmr.set_location(*self._location(vm))
                return vmr
        raise VmNotFoundError(vm_name, logger=self.logger)

    def get_vm_state(self, vmr: VmRef) -> Dict[str, Any]:
        self.check_vm_ref(vmr)
        data = DataEnvelope.parse(self._fetch(f"{vmr.path()}/status/current")).data
        if not isinstance(data, dict):
            raise ResponseDecodeError("VmState", details="Vm STATE not readable")
        return data

    def get_vm_config(self, vmr: VmRef) -> Dict[str, Any]:
        self.check_vm_ref(vmr)
        data = DataEnvelope.parse(self._fetch(f"{vmr.path()}/config")).data
        if not isinstance(data, dict):
            raise ResponseDecodeError("VmConfig", details="Vm CONFIG not readable")
        return data

    def monitor_cmd(self, vmr: VmRef, command: str) -> Any:
        """Команда QEMU-монитора. Задачу не создаёт, ответ возвращается как есть."""
        self.check_vm_ref(vmr)
        resp = self.transport.post(f"{vmr.path()}/monitor", {"command": command})
        return self.transport.response_json(resp)

    # ───────── смена статусов ─────────
    def status_change_vm(self, vmr: VmRef, set_status: str) -> TaskOutcome:
        """
        start / stop / shutdown / reset / suspend / resume.

        Весь цикл submit+wait повторяется до STATUS_CHANGE_ATTEMPTS раз,
        если задача не создалась, завершилась ошибкой, не успела завершиться
        или упал транспорт. Отказ API (SUBMISSION_ERROR) не повторяется.
        """
        self.check_vm_ref(vmr)
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._status_change(vmr, set_status)

    def _status_change(self, vmr: VmRef, set_status: str) -> TaskOutcome:
        path = f"{vmr.path()}/status/{set_status}"

        outcome: Optional[TaskOutcome] = None
        last_error: Optional[TransportError] = None
        for attempt in range(1, STATUS_CHANGE_ATTEMPTS + 1):
            try:
                outcome = self._submit_and_wait(
                    f"VM {vmr.vmid} {set_status}", lambda: self.transport.post(path)
                )
                last_error = None
            except TransportError as e:
                self.logger.warning(
                    "VM %s %s (попытка %s/%s): %s",
                    vmr.vmid, set_status, attempt, STATUS_CHANGE_ATTEMPTS, e,
                )
                outcome, last_error = None, e

            if outcome is not None and outcome.status not in _STATUS_CHANGE_RETRY_ON:
                return outcome
            if attempt < STATUS_CHANGE_ATTEMPTS:
                self._sleep(self.config.task_poll_interval)

        if last_error is not None:
            raise last_error
        return outcome

    def start_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "start")

    def stop_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "stop")

    def shutdown_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "shutdown")

    def reset_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "reset")

    def suspend_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "suspend")

    def resume_vm(self, vmr: VmRef) -> TaskOutcome:
        return self.status_change_vm(vmr, "resume")

    # ───────── создание / клонирование / удаление ─────────
    def _rollback_disks(self, node: str, disks: List[str], cause: Optional[BaseException] = None) -> None:
        if not disks:
            return
        self.logger.warning("ВМ не создана, удаляем диски: %s", ", ".join(disks))
        try:
            self.disks.delete_vm_disks(node, disks)
        except DiskRollbackError as rb:
            if cause is not None:
                raise rb from cause
            raise

    def create_qemu_vm(self, node: str, vm_params: Mapping[str, Any]) -> TaskOutcome:
        """
        Создание QEMU-ВМ: сначала диски (чтобы зафиксировать их имена), затем сама ВМ.
        Если ВМ не создалась, созданные диски удаляются.

        :raises DiskRollbackError: Откат дисков не удался (заменяет исходный результат).
        """
        vmid = vmid_of(vm_params)
        with log_context(vmid=vmid, node=node):
            created = self.disks.create_vm_disks(node, vm_params)

            try:
                outcome = self._submit_and_wait(
                    f"VM {vmid} create",
                    lambda: self.transport.post(f"/nodes/{node}/qemu", vm_params),
                )
            except ProxmoxError as e:
                self._rollback_disks(node, created, cause=e)
                raise

            if not outcome.ok:
                self._rollback_disks(node, created)
            return outcome

    def clone_qemu_vm(self, vmr: VmRef, vm_params: Mapping[str, Any]) -> TaskOutcome:
        self.check_vm_ref(vmr)
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._submit_and_wait(
                f"VM {vmr.vmid} clone",
                lambda: self.transport.post(f"/nodes/{vmr.node}/qemu/{vmr.vmid}/clone", vm_params),
                OperationClass.CLONE,
            )

    def delete_vm(self, vmr: VmRef) -> TaskOutcome:
        self.check_vm_ref(vmr)
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._submit_and_wait(
                f"VM {vmr.vmid} delete", lambda: self.transport.delete(vmr.path())
            )

    def rollback_qemu_vm(self, vmr: VmRef, snapshot: str) -> TaskOutcome:
        self.check_vm_ref(vmr)
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._submit_and_wait(
                f"VM {vmr.vmid} rollback {snapshot}",
                lambda: self.transport.post(f"{vmr.path()}/snapshot/{snapshot}/rollback"),
            )

    def set_vm_config(self, vmr: VmRef, vm_params: Mapping[str, Any]) -> TaskOutcome:
        self.check_vm_ref(vmr)
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._submit_and_wait(
                f"VM {vmr.vmid} config",
                lambda: self.transport.post(f"{vmr.path()}/config", vm_params),
            )

    def resize_qemu_disk(self, vmr: VmRef, disk: Optional[str], more_size_gb: int) -> TaskOutcome:
        """
        Изменение размера диска на more_size_gb гигабайт (+2 -> "+2G").
        disk по умолчанию virtio0.
        """
        self.check_vm_ref(vmr)
        body = {"disk": disk or DEFAULT_RESIZE_DISK, "size": f"{more_size_gb:+d}G"}
        with log_context(vmid=vmr.vmid, node=vmr.node):
            return self._submit_and_wait(
                f"VM {vmr.vmid} resize {body['disk']} {body['size']}",
                lambda: self.transport.put(f"{vmr.path()}/resize", body),
                OperationClass.RESIZE,
            )

    # ───────── VMID ─────────
    def get_next_id(self, current_id: int = 0) -> int:
        """
        Следующий свободный VMID. Если current_id занят (сервер вернул ошибку),
        один раз повторяем запрос без подсказки.
        """
        params = {"vmid": current_id} if current_id > 0 else None
        alloc: Optional[IdAllocation] = None
        try:
            alloc = IdAllocation.parse(self.transport.get_json("/cluster/nextid", params))
            details = json.dumps(alloc.errors, ensure_ascii=False) if alloc.rejected else None
        except ApiError as e:
            details = str(e)

        if details is not None:
            if current_id != 0:
                self.logger.info("VMID %s недоступен (%s), запрашиваем без подсказки", current_id, details)
                return self.get_next_id(0)
            raise NextIdError(logger=self.logger, details=details)
        return alloc.next_id()
