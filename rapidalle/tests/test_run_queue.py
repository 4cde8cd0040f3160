from unittest.mock import MagicMock, patch

import pytest
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from rapidalle.core.errors import NotFoundError, PermissionError
from rapidalle.features.generation.runner import (
    JOB_FUNC,
    RetryPolicy,
    RunQueue,
    RunState,
    issue_run_token,
    map_job_state,
    verify_run_token,
)

SECRET = "runner-test-secret-0123456789abcdef"


@pytest.mark.parametrize(
    "status, attempts, expected",
    [
        (JobStatus.QUEUED, 0, RunState.QUEUED),
        (JobStatus.DEFERRED, 0, RunState.QUEUED),
        (JobStatus.SCHEDULED, 0, RunState.QUEUED),
        (JobStatus.SCHEDULED, 2, RunState.EXECUTING),
        (JobStatus.STARTED, 1, RunState.EXECUTING),
        (JobStatus.FINISHED, 1, RunState.COMPLETED),
        (JobStatus.FAILED, 5, RunState.FAILED),
        (JobStatus.STOPPED, 1, RunState.CANCELED),
        (JobStatus.CANCELED, 0, RunState.CANCELED),
        (None, 0, RunState.QUEUED),
    ],
)
def test_map_job_state(status, attempts, expected):
    assert map_job_state(status, attempts) is expected


def test_terminal_states():
    assert {s for s in RunState if s.is_terminal} == {RunState.COMPLETED, RunState.FAILED, RunState.CANCELED}


def test_retry_intervals_without_jitter():
    policy = RetryPolicy(max_attempts=5, min_seconds=2, max_seconds=45, factor=2, randomize=False)
    assert policy.intervals() == [2, 4, 8, 16]


def test_retry_intervals_are_capped_and_jittered():
    policy = RetryPolicy(max_attempts=5, min_seconds=2, max_seconds=45, factor=2, randomize=True)
    assert policy.intervals(rand=lambda: 1.0) == [4, 8, 16, 32]
    assert policy.intervals(rand=lambda: 0.5) == [3, 6, 12, 24]

    capped = RetryPolicy(max_attempts=4, min_seconds=10, max_seconds=45, factor=3, randomize=False)
    assert capped.intervals() == [10, 30, 45]


def test_single_attempt_has_no_retries():
    assert RetryPolicy(max_attempts=1).intervals() == []


def test_run_token_round_trip():
    token = issue_run_token("run_1", "user-1", SECRET, ttl_seconds=60)
    claims = verify_run_token(token, "run_1", SECRET)
    assert claims["sub"] == "run_1"
    assert claims["uid"] == "user-1"
    assert claims["scope"] == "runs:read"


def test_run_token_is_scoped_to_one_run():
    token = issue_run_token("run_1", "user-1", SECRET)
    with pytest.raises(PermissionError):
        verify_run_token(token, "run_2", SECRET)


def test_expired_or_forged_run_token_is_rejected():
    expired = issue_run_token("run_1", "user-1", SECRET, ttl_seconds=60, now=1_000_000)
    with pytest.raises(PermissionError):
        verify_run_token(expired, "run_1", SECRET)

    forged = issue_run_token("run_1", "user-1", "another-secret-0123456789abcdef-xyz")
    with pytest.raises(PermissionError):
        verify_run_token(forged, "run_1", SECRET)


def _run_queue(queue=None):
    policy = RetryPolicy(max_attempts=3, min_seconds=2, max_seconds=45, factor=2, randomize=False)
    return RunQueue(
        connection=MagicMock(),
        queue_name="generation-test",
        policy=policy,
        token_secret=SECRET,
        job_timeout=7200,
        result_ttl=600,
        queue=queue or MagicMock(),
    )


def test_enqueue_submits_job_with_retry_policy():
    queue = MagicMock()
    runner = _run_queue(queue)
    payload = {"theme": "t", "description": "d", "size": "256x256", "user_id": "u1"}

    handle = runner.enqueue(payload)

    args, kwargs = queue.enqueue.call_args
    assert args == (JOB_FUNC,)
    assert kwargs["kwargs"] == payload
    assert kwargs["job_id"] == handle.run_id
    assert handle.run_id.startswith("run_")
    assert kwargs["retry"].max == 2
    assert kwargs["retry"].intervals == [2, 4]
    assert kwargs["job_timeout"] == 7200
    assert kwargs["meta"] == {"attempts": 0, "user_id": "u1"}
    assert verify_run_token(handle.access_token, handle.run_id, SECRET)["uid"] == "u1"


def test_enqueue_propagates_queue_errors():
    queue = MagicMock()
    queue.enqueue.side_effect = ConnectionError("redis down")
    with pytest.raises(ConnectionError):
        _run_queue(queue).enqueue({"user_id": "u1"})


def _job(status, meta=None, result=None):
    job = MagicMock()
    job.meta = meta or {}
    job.get_status.return_value = status
    job.return_value.return_value = result
    return job


def test_fetch_status_completed_returns_output():
    output = {"text": "caption", "image": "https://img", "imageBase64": None}
    job = _job(JobStatus.FINISHED, {"attempts": 2, "persisted": True}, output)

    with patch.object(Job, "fetch", return_value=job):
        status = _run_queue().fetch_status("run_x")

    assert status.to_dict() == {
        "runId": "run_x",
        "status": "COMPLETED",
        "output": output,
        "error": None,
        "attempts": 2,
        "persisted": True,
    }


def test_fetch_status_failed_reports_last_error():
    job = _job(JobStatus.FAILED, {"attempts": 3, "last_error": "caption: No content, retrying"})
    with patch.object(Job, "fetch", return_value=job):
        status = _run_queue().fetch_status("run_x")
    assert status.state is RunState.FAILED
    assert status.error == "caption: No content, retrying"
    assert status.output is None


def test_fetch_status_unknown_run():
    with patch.object(Job, "fetch", side_effect=NoSuchJobError("gone")):
        with pytest.raises(NotFoundError):
            _run_queue().fetch_status("run_missing")


def test_cancel_running_job_sends_stop_command():
    job = _job(JobStatus.STARTED, {"attempts": 1})
    runner = _run_queue()
    with patch.object(Job, "fetch", return_value=job), patch(
        "rapidalle.features.generation.runner.send_stop_job_command"
    ) as stop:
        runner.cancel("run_x")
    stop.assert_called_once_with(runner.connection, "run_x")
    job.cancel.assert_not_called()


def test_cancel_queued_job():
    job = _job(JobStatus.QUEUED)
    with patch.object(Job, "fetch", return_value=job):
        _run_queue().cancel("run_x")
    job.cancel.assert_called_once()


def test_cancel_finished_job_is_a_no_op():
    job = _job(JobStatus.FINISHED, {"attempts": 1}, {"text": "t"})
    with patch.object(Job, "fetch", return_value=job):
        status = _run_queue().cancel("run_x")
    job.cancel.assert_not_called()
    assert status.state is RunState.COMPLETED
