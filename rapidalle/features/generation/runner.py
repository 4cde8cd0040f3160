"""
Task runner for generation runs (Redis + RQ).

A run is one RQ job with id ``run_<uuid hex>``. Retries, backoff and the
duration cap are enforced by RQ; this module only enqueues jobs, maps RQ
job statuses onto the run state machine and issues the access tokens
clients use to read run status.

    QUEUED -> EXECUTING -> COMPLETED | FAILED | CANCELED
"""
from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import jwt
from redis import Redis
from rq import Queue, Retry
from rq.command import send_stop_job_command
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from rapidalle.core.config import settings
from rapidalle.core.errors import NotFoundError, PermissionError

JOB_FUNC = "rapidalle.workers.generate_content.generate_content"
RUN_SCOPE = "runs:read"
_DEV_TOKEN_SECRET = "rapidalle-dev-run-token-secret-change-me"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    min_seconds: float = 2.0
    max_seconds: float = 45.0
    factor: float = 2.0
    randomize: bool = True

    @classmethod
    def from_settings(cls, cfg=None) -> "RetryPolicy":
        cfg = cfg or settings
        return cls(
            max_attempts=cfg.RUN_MAX_ATTEMPTS,
            min_seconds=cfg.RUN_RETRY_MIN_SECONDS,
            max_seconds=cfg.RUN_RETRY_MAX_SECONDS,
            factor=cfg.RUN_RETRY_FACTOR,
            randomize=cfg.RUN_RETRY_RANDOMIZE,
        )

    def intervals(self, rand: Callable[[], float] = random.random) -> List[int]:
        """Delays (seconds) before each retry; one fewer than max_attempts."""
        delays = []
        for attempt in range(max(0, self.max_attempts - 1)):
            delay = self.min_seconds * (self.factor ** attempt)
            if self.randomize:
                delay *= 1.0 + rand()
            delays.append(int(math.ceil(min(self.max_seconds, delay))))
        return delays


class RunState(str, Enum):
    QUEUED = "QUEUED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED, RunState.CANCELED)


@dataclass(frozen=True)
class RunHandle:
    run_id: str
    access_token: str

    def to_dict(self) -> Dict[str, str]:
        return {"runId": self.run_id, "accessToken": self.access_token}


@dataclass(frozen=True)
class RunStatus:
    run_id: str
    state: RunState
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    persisted: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "status": self.state.value,
            "output": self.output,
            "error": self.error,
            "attempts": self.attempts,
            "persisted": self.persisted,
        }


def map_job_state(status: Optional[str], attempts: int = 0) -> RunState:
    """Map an RQ job status onto the run state machine."""
    if status == JobStatus.FINISHED:
        return RunState.COMPLETED
    if status == JobStatus.FAILED:
        return RunState.FAILED
    if status in (JobStatus.STOPPED, JobStatus.CANCELED):
        return RunState.CANCELED
    if status == JobStatus.STARTED:
        return RunState.EXECUTING
    if status == JobStatus.SCHEDULED and attempts > 0:
        # waiting for a retry slot
        return RunState.EXECUTING
    return RunState.QUEUED


def _token_secret(secret: Optional[str] = None) -> str:
    return secret or settings.RUN_TOKEN_SECRET or _DEV_TOKEN_SECRET


def issue_run_token(
    run_id: str,
    user_id: str,
    secret: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    ttl = ttl_seconds or settings.RUN_TOKEN_TTL_SECONDS
    claims = {
        "sub": run_id,
        "scope": RUN_SCOPE,
        "uid": user_id,
        "iat": issued_at,
        "exp": issued_at + int(ttl),
    }
    return jwt.encode(claims, _token_secret(secret), algorithm="HS256")


def verify_run_token(token: str, run_id: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """Return the token claims if it grants read access to ``run_id``."""
    try:
        claims = jwt.decode(token, _token_secret(secret), algorithms=["HS256"])
    except jwt.InvalidTokenError:
        raise PermissionError("Invalid or expired run access token")
    if claims.get("sub") != run_id or claims.get("scope") != RUN_SCOPE:
        raise PermissionError("Run access token does not grant access to this run")
    return claims


def new_run_id() -> str:
    return f"run_{uuid4().hex}"


class RunQueue:
    def __init__(
        self,
        connection: Redis,
        queue_name: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        token_secret: Optional[str] = None,
        token_ttl_seconds: Optional[int] = None,
        job_timeout: Optional[int] = None,
        result_ttl: Optional[int] = None,
        queue: Optional[Queue] = None,
    ):
        self.connection = connection
        self.queue_name = queue_name or settings.RUN_QUEUE_NAME
        self.policy = policy or RetryPolicy.from_settings()
        self.token_secret = token_secret
        self.token_ttl_seconds = token_ttl_seconds or settings.RUN_TOKEN_TTL_SECONDS
        self.job_timeout = job_timeout or settings.RUN_MAX_DURATION_SECONDS
        self.result_ttl = result_ttl or settings.RUN_RESULT_TTL_SECONDS
        self.queue = queue or Queue(self.queue_name, connection=connection)

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RunQueue":
        return cls(Redis.from_url(redis_url), **kwargs)

    def enqueue(self, payload: Dict[str, Any]) -> RunHandle:
        """Enqueue a generation run. Redis/RQ errors propagate to the caller."""
        run_id = new_run_id()
        intervals = self.policy.intervals()
        retry = Retry(max=len(intervals), interval=intervals) if intervals else None
        self.queue.enqueue(
            JOB_FUNC,
            kwargs=dict(payload),
            job_id=run_id,
            retry=retry,
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
            failure_ttl=self.result_ttl,
            meta={"attempts": 0, "user_id": payload.get("user_id")},
        )
        token = issue_run_token(run_id, payload.get("user_id", ""), self.token_secret, self.token_ttl_seconds)
        return RunHandle(run_id=run_id, access_token=token)

    def _fetch_job(self, run_id: str) -> Job:
        try:
            return Job.fetch(run_id, connection=self.connection)
        except NoSuchJobError:
            raise NotFoundError(f"Run {run_id} not found")

    def fetch_status(self, run_id: str) -> RunStatus:
        job = self._fetch_job(run_id)
        meta = job.meta or {}
        attempts = int(meta.get("attempts", 0))
        state = map_job_state(job.get_status(refresh=True), attempts)

        output = None
        error = None
        if state is RunState.COMPLETED:
            output = job.return_value()
        elif state is RunState.FAILED:
            error = meta.get("last_error") or "generation failed"

        return RunStatus(
            run_id=run_id,
            state=state,
            output=output,
            error=error,
            attempts=attempts,
            persisted=meta.get("persisted"),
        )

    def cancel(self, run_id: str) -> RunStatus:
        job = self._fetch_job(run_id)
        status = job.get_status(refresh=True)
        if status == JobStatus.STARTED:
            send_stop_job_command(self.connection, run_id)
        elif not map_job_state(status).is_terminal:
            job.cancel()
        return self.fetch_status(run_id)
