"""
Session
───────
HTTP-транспорт к Proxmox VE API поверх httpx.

Получение тикета (логин) сюда не входит: тикет и CSRF-токен передаются
через attach_ticket() и дальше подставляются в каждый запрос.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import httpx

from ..logger.logger_setup import HttpLogConfig
from ...shared.settings import Config
from ...exceptions.proxmox import (
    ApiError,
    ResponseDecodeError,
    TransportError,
    TruncatedResponseError,
)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _form_value(value: Any) -> str:
    # Proxmox понимает булевы только как 1/0
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def params_to_body(params: Optional[Mapping[str, Any]]) -> str:
    """Кодирует словарь параметров в urlencoded-тело формы."""
    if not params:
        return ""
    return urlencode({k: _form_value(v) for k, v in params.items()})


class Session:
    def __init__(
        self,
        config: Config,
        log_config: Optional[HttpLogConfig] = None,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        :param config: Параметры подключения (url, tls_insecure, http_timeout).
        :param log_config: Настройка дампов запросов; по умолчанию из config.http_debug.
        :param client: Готовый httpx.Client (например, с MockTransport в тестах).
        :param logger: Внешний логгер.
        """
        self.logger = logger or logging.getLogger(__name__)
        self.api_url = config.url.rstrip("/")
        self.log_config = log_config or HttpLogConfig(debug=config.http_debug)

        self.auth_ticket = ""
        self.csrf_token = ""

        self._owns_client = client is None
        self._client = client or httpx.Client(
            verify=not config.tls_insecure,
            timeout=httpx.Timeout(config.http_timeout),
        )

    # context manager
    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def attach_ticket(self, ticket: str, csrf_token: str) -> None:
        """Сохраняет уже полученный тикет авторизации."""
        self.auth_ticket = ticket
        self.csrf_token = csrf_token

    # ───────── debug-дампы ─────────
    def _redacted(self, body: Optional[Mapping[str, Any]]) -> Optional[dict]:
        if body is None:
            return None
        return {k: ("***" if k in self.log_config.redact else v) for k, v in body.items()}

    def _dump_request(self, method: str, url: str, params, body) -> None:
        if self.log_config.debug:
            self.logger.debug(
                ">>>>>>>>>> REQUEST: %s %s params=%s body=%s",
                method, url, params, self._redacted(body),
            )

    def _dump_response(self, resp: httpx.Response) -> None:
        if self.log_config.debug:
            self.logger.debug(
                "<<<<<<<<<< RESULT: %s %s\n%s", resp.status_code, resp.reason_phrase, resp.text
            )

    # ───────── запросы ─────────
    def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Response:
        url = self.api_url + path
        headers = {"Accept": "application/json"}
        content = None
        if body is not None:
            headers["Content-Type"] = FORM_CONTENT_TYPE
            content = params_to_body(body)
        if self.auth_ticket:
            headers["Cookie"] = f"PVEAuthCookie={self.auth_ticket}"
            headers["CSRFPreventionToken"] = self.csrf_token

        self._dump_request(method, url, params, body)
        req = self._client.build_request(
            method, url, params=params, content=content, headers=headers
        )
        try:
            resp = self._client.send(req, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        try:
            resp.read()
        except httpx.RemoteProtocolError as e:
            # заголовки получены, соединение закрыто посреди тела ответа
            raise TruncatedResponseError(path, details=str(e)) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        finally:
            resp.close()

        if not resp.is_success:
            raise ApiError(resp.status_code, resp.reason_phrase)

        self._dump_response(resp)
        return resp

    def response_json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ResponseDecodeError("JSON", details=str(e)) from e

    def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.response_json(self.request("GET", path, params=params))

    def post(self, path: str, body: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        return self.request("POST", path, body=body if body is not None else {})

    def put(self, path: str, body: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        return self.request("PUT", path, body=body if body is not None else {})

    def delete(self, path: str) -> httpx.Response:
        return self.request("DELETE", path)
