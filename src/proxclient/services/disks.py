"""
Подготовка дисков ВМ перед её созданием.

Из плоской конфигурации ВМ ({"virtio0": "local:vm-101-disk-0,media=disk,size=8G", ...})
выбираются устройства-диски, каждый диск создаётся отдельным запросом
в storage ноды. Созданные диски запоминаются, чтобы их можно было удалить,
если ВМ так и не создалась.
"""
from __future__ import annotations

import re
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..domain.models import DiskDescriptor
from ..domain.responses import DiskCreation
from ..domain.transport import ITransport
from ..exceptions.proxmox import (
    DiskCreateError,
    DiskDescriptorError,
    DiskRollbackError,
    PreconditionError,
    ProxmoxError,
    ResponseDecodeError,
)

_RX_STORAGE_MODELS = re.compile(r"(ide|sata|scsi|virtio)\d+")


def parse_conf(value: str, item_sep: str = ",", kv_sep: str = "=") -> Dict[str, str]:
    """
    "local:vm-1-disk-0,media=disk,size=8G" -> {"file": "local:vm-1-disk-0", "media": "disk", "size": "8G"}

    Токен без '=' в начале строки считается значением file.
    """
    conf: Dict[str, str] = {}
    for i, item in enumerate(value.split(item_sep)):
        item = item.strip()
        if not item:
            continue
        if kv_sep in item:
            key, val = item.split(kv_sep, 1)
            conf[key.strip()] = val.strip()
        elif i == 0:
            conf["file"] = item
    return conf


def split_disk_name(full_name: str, separator: str = ":") -> Tuple[str, str]:
    """'local-lvm:vm-101-disk-0' -> ('local-lvm', 'vm-101-disk-0')."""
    storage, sep, volume = full_name.partition(separator)
    if not sep or not storage or not volume:
        raise DiskDescriptorError(full_name, details=f"expected '<storage>{separator}<volume>'")
    return storage, volume


def disk_descriptors(vm_params: Mapping[str, Any]) -> List[DiskDescriptor]:
    """Диски (media=disk) среди ide/sata/scsi/virtio-устройств; cdrom пропускаются."""
    disks: List[DiskDescriptor] = []
    for device_name, device_conf in vm_params.items():
        if not _RX_STORAGE_MODELS.fullmatch(str(device_name)) or not isinstance(device_conf, str):
            continue
        conf = parse_conf(device_conf)
        if conf.get("media") != "disk":
            continue
        if not conf.get("file"):
            raise DiskDescriptorError(device_conf, details=f"device {device_name} has no file")
        storage, volume = split_disk_name(conf["file"])
        disks.append(DiskDescriptor(storage, volume, conf.get("size")))
    return disks


def vmid_of(vm_params: Mapping[str, Any]) -> int:
    """VMID из параметров создания ВМ ("101" и 101 равнозначны)."""
    if "vmid" not in vm_params:
        raise PreconditionError("vm_params must contain 'vmid'")
    try:
        return int(vm_params["vmid"])
    except (TypeError, ValueError) as e:
        raise PreconditionError(f"vmid is not an integer: {vm_params['vmid']!r}") from e


class DiskProvisioner:
    def __init__(self, transport: ITransport, logger: Optional[logging.Logger] = None) -> None:
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    def create_vm_disk(self, node: str, vmid: int, disk: DiskDescriptor) -> str:
        """
        Создание одного диска в storage ноды.

        :return: Полное имя диска storage:volume.
        :raises DiskCreateError: Сервер вернул другое имя или не вернул его вовсе.
        """
        params: Dict[str, Any] = {"vmid": vmid, "filename": disk.volume}
        if disk.size is not None:
            params["size"] = disk.size

        resp = self.transport.post(f"/nodes/{node}/storage/{disk.storage}/content", params)
        try:
            created = DiskCreation.parse(self.transport.response_json(resp)).data
        except ResponseDecodeError as e:
            raise DiskCreateError(disk.full_name, logger=self.logger, details=str(e)) from e

        if created != disk.full_name:
            raise DiskCreateError(
                disk.full_name, logger=self.logger, details=f"server reported {created!r}"
            )
        self.logger.info("Диск %s создан на ноде %s", disk.full_name, node)
        return disk.full_name

    def create_vm_disks(self, node: str, vm_params: Mapping[str, Any]) -> List[str]:
        """
        Создаёт все диски из конфигурации ВМ.

        Если очередной диск не создался, уже созданные удаляются,
        а ошибка создания пробрасывается дальше.
        """
        vmid = vmid_of(vm_params)
        descriptors = disk_descriptors(vm_params)

        created: List[str] = []
        for disk in descriptors:
            try:
                created.append(self.create_vm_disk(node, vmid, disk))
            except ProxmoxError as e:
                if created:
                    try:
                        self.delete_vm_disks(node, created)
                    except DiskRollbackError as rb:
                        raise rb from e
                raise
        return created

    def delete_vm_disks(self, node: str, disks: List[str]) -> None:
        """
        Удаление дисков ВМ с ноды. Обычно диски удаляются вместе с ВМ,
        так что это нужно только для отката недосозданной ВМ.

        Запрос на удаление уходит по каждому диску ровно один раз;
        неудачи собираются и возвращаются одним DiskRollbackError.
        """
        failed: List[str] = []
        errors: List[str] = []
        for full_name in disks:
            storage, volume = split_disk_name(full_name)
            try:
                self.transport.delete(f"/nodes/{node}/storage/{storage}/content/{volume}")
                self.logger.info("Диск %s удалён с ноды %s", full_name, node)
            except ProxmoxError as e:
                failed.append(full_name)
                errors.append(f"{full_name}: {e}")

        if failed:
            raise DiskRollbackError(failed, logger=self.logger, details="; ".join(errors))
