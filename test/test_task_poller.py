import json

import pytest

from conftest import DONE_OK, RUNNING, status_path, upid
from proxclient.domain.models import TaskStatus
from proxclient.exceptions.proxmox import (
    ApiError,
    MalformedTaskHandleError,
    ResponseDecodeError,
    TruncatedResponseError,
)
from proxclient.infrastructure.logger.log_ctx import get_context
from proxclient.services.task_poller import TaskPoller, node_from_upid


@pytest.fixture
def poller(transport, sleeper):
    return TaskPoller(transport, timeout=10, interval=2, sleep=sleeper)


class TestNodeFromUpid:
    def test_node_between_first_and_second_colon(self):
        assert node_from_upid("UPID:node7:00001234:...:qmstart:101:user@pve:") == "node7"

    def test_node_with_dashes(self):
        assert node_from_upid(upid(node="pve-02")) == "pve-02"

    @pytest.mark.parametrize("bad", ["", "UPID::0001:", "node7:0001", "TASK:node7:1:", "UPID:node7"])
    def test_malformed(self, bad):
        with pytest.raises(MalformedTaskHandleError):
            node_from_upid(bad)


def test_success_after_three_polls(poller, transport, sleeper):
    task = "UPID:node7:00001234:...:qmstart:101:user@pve:"
    transport.on("GET", status_path(task), RUNNING, RUNNING, DONE_OK)

    outcome = poller.wait({"data": task})

    assert outcome.status is TaskStatus.SUCCESS
    assert outcome.ok
    assert outcome.exit_status == "OK"
    assert transport.count("GET", status_path(task)) == 3
    assert sleeper.total >= 4
    assert outcome.waited == 4


def test_failed_exit_status(poller, transport):
    task = upid()
    transport.on("GET", status_path(task), RUNNING, {"data": {"exitstatus": "command 'qm start' failed"}})

    outcome = poller.wait({"data": task})

    assert outcome.status is TaskStatus.FAILED
    assert outcome.reason == "command 'qm start' failed"
    assert outcome.exit_status == "command 'qm start' failed"


def test_submission_error_without_polling(poller, transport, sleeper):
    outcome = poller.wait({"errors": {"vmid": "already in use"}})

    assert outcome.status is TaskStatus.SUBMISSION_ERROR
    assert json.loads(outcome.reason) == {"vmid": "already in use"}
    assert transport.calls == []
    assert sleeper.calls == []


def test_no_data_is_neutral(poller, transport):
    outcome = poller.wait({"data": None})

    assert outcome.status is TaskStatus.NO_TASK
    assert not outcome.ok
    assert outcome.exit_status == ""
    assert transport.calls == []


def test_timeout_after_five_polls(poller, transport, sleeper):
    task = upid()
    transport.on("GET", status_path(task), RUNNING)

    outcome = poller.wait({"data": task})

    assert outcome.status is TaskStatus.TIMED_OUT
    assert transport.count("GET", status_path(task)) == 5
    assert sleeper.calls == [2, 2, 2, 2, 2]
    assert outcome.waited == 10


def test_timeout_override_per_call(poller, transport):
    task = upid()
    transport.on("GET", status_path(task), RUNNING)

    outcome = poller.wait({"data": task}, timeout=4, interval=1)

    assert outcome.status is TaskStatus.TIMED_OUT
    assert transport.count("GET", status_path(task)) == 4


@pytest.mark.parametrize("interval", [0, -1])
def test_non_positive_interval_rejected(transport, interval):
    task = upid()
    transport.on("GET", status_path(task), RUNNING)

    with pytest.raises(ValueError):
        TaskPoller(transport, timeout=10, interval=interval).wait({"data": task})
    with pytest.raises(ValueError):
        TaskPoller(transport, timeout=10).wait({"data": task}, interval=interval)
    assert transport.calls == []


def test_upid_context_scoped_to_wait(poller, transport):
    task = upid()
    seen = []
    transport.on("GET", status_path(task), DONE_OK)
    get_json = transport.get_json

    def recording_get_json(path, params=None):
        seen.append(get_context().get("upid"))
        return get_json(path, params)

    transport.get_json = recording_get_json

    poller.wait({"data": task})

    assert seen == [task]
    assert "upid" not in get_context()


def test_truncated_read_is_recoverable(poller, transport, sleeper):
    task = upid()
    transport.on("GET", status_path(task), TruncatedResponseError(status_path(task)), DONE_OK)

    outcome = poller.wait({"data": task})

    assert outcome.status is TaskStatus.SUCCESS
    assert sleeper.calls == [2]
    assert outcome.waited == 2


def test_other_errors_abort_wait(poller, transport, sleeper):
    task = upid()
    transport.on("GET", status_path(task), ApiError(500, "Internal Server Error"))

    with pytest.raises(ApiError):
        poller.wait({"data": task})
    assert transport.count("GET", status_path(task)) == 1
    assert sleeper.calls == []


def test_malformed_handle_raises(poller, transport):
    with pytest.raises(MalformedTaskHandleError):
        poller.wait({"data": "not-a-upid"})
    assert transport.calls == []


def test_status_without_data_is_decode_error(poller, transport):
    task = upid()
    transport.on("GET", status_path(task), {"errors": "x"})

    with pytest.raises(ResponseDecodeError):
        poller.wait({"data": task})


def test_raise_for_status_on_timeout(poller, transport):
    from proxclient.exceptions.proxmox import TaskTimeoutError

    task = upid()
    transport.on("GET", status_path(task), RUNNING)

    with pytest.raises(TaskTimeoutError) as exc:
        poller.wait({"data": task}).raise_for_status()
    assert exc.value.upid == task
    assert exc.value.timeout == 10


def test_exit_status_single_query(poller, transport):
    task = upid()
    transport.on("GET", status_path(task), RUNNING, DONE_OK)

    assert poller.exit_status(task) is None
    assert poller.exit_status(task) == "OK"
