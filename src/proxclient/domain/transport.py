from typing import Any, Mapping, Optional, Protocol

import httpx


class ITransport(Protocol):
    """Аутентифицированный HTTP-транспорт, которым пользуется ядро клиента."""

    def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET и декодирование JSON-документа."""
        ...

    def post(self, path: str, body: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """POST с urlencoded-телом, сырой ответ."""
        ...

    def put(self, path: str, body: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        ...

    def delete(self, path: str) -> httpx.Response:
        ...

    def response_json(self, resp: httpx.Response) -> Any:
        """Декодирует тело сырого ответа."""
        ...
