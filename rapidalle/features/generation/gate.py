"""
Generation gate: the synchronous admission path for a generation request.

Steps run strictly in order and stop at the first rejection:

    validate -> credit check -> rate limit -> debit -> invalidate library -> enqueue

The only errors raised on purpose are the GateError kinds (validation,
credits, rate limit) and TriggerError when the run could not be enqueued.
A debit is not refunded if enqueueing or the run itself fails later.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from rapidalle.core.cache import FlatCache
from rapidalle.core.errors import InsufficientCreditsError, RateLimitExceededError, TriggerError, ValidationError
from rapidalle.core.logging import log_event
from rapidalle.core.metrics import generation_requests_total
from rapidalle.features.artifacts.service import invalidate_library
from rapidalle.features.credits import service as credits_service
from rapidalle.features.ratelimit.limiter import FixedWindowRateLimiter, RateLimitDecision

logger = logging.getLogger("rapidalle")

ImageSize = Literal["256x256", "512x512", "1024x1024", "1024x1792", "1792x1024"]
MAX_FIELD_LENGTH = 1000


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    theme: str = Field(..., max_length=MAX_FIELD_LENGTH)
    description: str = Field(..., max_length=MAX_FIELD_LENGTH)
    size: ImageSize = "1024x1024"

    @field_validator("theme", "description", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("theme", "description")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value


@dataclass(frozen=True)
class GateResult:
    handle: Any  # RunHandle
    rate_limit: RateLimitDecision
    balance: int


def parse_generation_request(payload: Dict[str, Any]) -> GenerationRequest:
    try:
        return GenerationRequest.model_validate(payload or {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise ValidationError(
            f"Invalid generation request: {field} {first.get('msg', 'is invalid')}",
            details={"field": field},
        )


class GenerationGate:
    def __init__(self, limiter: FixedWindowRateLimiter, cache: FlatCache, runner, cost: int = 1, ledger=credits_service):
        self.limiter = limiter
        self.cache = cache
        self.runner = runner
        self.cost = cost
        self.ledger = ledger

    def _invalidate_library(self, user_id: str) -> None:
        try:
            invalidate_library(user_id, self.cache)
        except Exception as e:
            log_event("warning", "gate.cache_invalidate_failed", user_id=user_id, event_type="gate.cache_invalidate_failed", extra={"error": e})

    def submit(self, user_id: str, payload: Dict[str, Any]) -> GateResult:
        try:
            request = parse_generation_request(payload)
        except ValidationError:
            generation_requests_total.inc(labels={"outcome": "invalid"})
            raise

        balance = self.ledger.get_balance(user_id)
        if balance < self.cost:
            generation_requests_total.inc(labels={"outcome": "no_credits"})
            raise InsufficientCreditsError(balance, self.cost, "Insufficient credits to generate image")

        decision = self.limiter.check(user_id)
        if not decision.allowed:
            generation_requests_total.inc(labels={"outcome": "rate_limited"})
            raise RateLimitExceededError(decision.reset_time, headers=decision.headers(now=self.limiter.time_fn()))

        new_balance = self.ledger.try_debit(user_id, self.cost)
        if new_balance is None:
            # Lost a race with a concurrent request for the same balance
            generation_requests_total.inc(labels={"outcome": "no_credits"})
            raise InsufficientCreditsError(self.ledger.get_balance(user_id), self.cost, "Insufficient credits to generate image")

        self._invalidate_library(user_id)

        try:
            handle = self.runner.enqueue({
                "theme": request.theme,
                "description": request.description,
                "size": request.size,
                "user_id": user_id,
            })
        except Exception as e:
            generation_requests_total.inc(labels={"outcome": "trigger_error"})
            log_event("error", "gate.trigger_failed", user_id=user_id, event_type="gate.trigger_failed", error_code="TRIGGER_ERROR", extra={"error": e})
            raise TriggerError(f"Failed to start run: {e}") from e

        generation_requests_total.inc(labels={"outcome": "accepted"})
        log_event("info", "gate.accepted", user_id=user_id, run_id=handle.run_id, event_type="gate.accepted")
        return GateResult(handle=handle, rate_limit=decision, balance=new_balance)
