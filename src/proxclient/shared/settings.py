import os
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

_SECRET_FIELDS = {"password"}


class Config(BaseSettings):
    """Параметры подключения к Proxmox VE и политики ожидания задач."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Подключение
    url: str = Field("", alias="PROXMOX_URL")
    username: str = Field("", alias="PROXMOX_USER")
    password: str = Field("", alias="PROXMOX_PASSWORD")
    tls_insecure: bool = Field(False, alias="PROXMOX_TLS_INSECURE")

    # Политика сериализации clone / resize
    parallel_clone: bool = Field(False, alias="PROXMOX_PARALLEL_CLONE")
    parallel_resize: bool = Field(False, alias="PROXMOX_PARALLEL_RESIZE")

    # Таймауты и интервалы (секунды)
    http_timeout: float = Field(30, gt=0, alias="PROXMOX_HTTP_TIMEOUT")
    task_timeout: int = Field(300, ge=0, alias="PROXMOX_TASK_TIMEOUT")
    task_poll_interval: int = Field(2, gt=0, alias="PROXMOX_TASK_POLL_INTERVAL")
    fetch_retries: int = Field(3, ge=1, alias="PROXMOX_FETCH_RETRIES")
    fetch_backoff: float = Field(5.0, ge=0, alias="PROXMOX_FETCH_BACKOFF")

    http_debug: bool = Field(False, alias="PROXMOX_HTTP_DEBUG")

    def __init__(self, **values):
        super().__init__(**values)
        # сразу залогируем конфиг
        self.log_config()

    @property
    def logger(self) -> logging.Logger:
        """Логгер с именем класса Config."""
        return logging.getLogger(self.__class__.__name__)

    def log_config(self) -> None:
        """
        Логирует все параметры:
            - помечает (env), если взято из os.environ,
            - или (default), если используется значение по умолчанию.
        Пароль не выводится.
        """
        for field_name, model_field in type(self).model_fields.items():
            env_key = model_field.alias or field_name
            value = getattr(self, field_name)
            if field_name in _SECRET_FIELDS and value:
                value = "***"
            source = "env" if env_key in os.environ else "default"
            self.logger.info("%s=%r (%s)", env_key, value, source)
