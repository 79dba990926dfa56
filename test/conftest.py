from typing import Any, Dict, List, Tuple

import httpx
import pytest

from proxclient.shared.settings import Config
from proxclient.services.client import ProxmoxClient

API_URL = "https://pve.test:8006/api2/json"


class FakeTransport:
    """
    Заглушка транспорта: ответы задаются по (method, path),
    все вызовы пишутся в calls. Последний ответ в очереди повторяется.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str, Any]] = []
        self._routes: Dict[Tuple[str, str], List[Any]] = {}

    def on(self, method: str, path: str, *results: Any) -> "FakeTransport":
        self._routes.setdefault((method, path), []).extend(results)
        return self

    def _next(self, method: str, path: str) -> Any:
        queue = self._routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected request {method} {path}")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def get_json(self, path, params=None):
        self.calls.append(("GET", path, params))
        return self._next("GET", path)

    def post(self, path, body=None):
        self.calls.append(("POST", path, body))
        return httpx.Response(200, json=self._next("POST", path))

    def put(self, path, body=None):
        self.calls.append(("PUT", path, body))
        return httpx.Response(200, json=self._next("PUT", path))

    def delete(self, path):
        self.calls.append(("DELETE", path, None))
        return httpx.Response(200, json=self._next("DELETE", path))

    def response_json(self, resp):
        return resp.json()


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


def upid(node: str = "node7", action: str = "qmstart", vmid: int = 101) -> str:
    return f"UPID:{node}:00001234:0ABCDEF0:5F000000:{action}:{vmid}:user@pve:"


def status_path(task: str) -> str:
    node = task.split(":")[1]
    return f"/nodes/{node}/tasks/{task}/status"


RUNNING = {"data": {"status": "running"}}
DONE_OK = {"data": {"status": "stopped", "exitstatus": "OK"}}


@pytest.fixture
def config():
    return Config(
        url=API_URL,
        fetch_backoff=0,
        task_timeout=10,
        task_poll_interval=2,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def client(config, transport, sleeper):
    return ProxmoxClient(config, transport=transport, sleep=sleeper)


@pytest.fixture
def vm_list(transport):
    """Инвентарь кластера с двумя ВМ на node7."""
    transport.on("GET", "/cluster/resources", {
        "data": [
            {"vmid": 101, "node": "node7", "type": "qemu", "name": "web-1"},
            {"vmid": 200, "node": "node7", "type": "lxc", "name": "db-1"},
        ]
    })
    return transport
