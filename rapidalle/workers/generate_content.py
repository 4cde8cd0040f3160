"""
RQ job + worker entry point for generation runs.

Run a worker with:
    python -m rapidalle.workers.generate_content --queue generation

The scheduler is enabled so retry backoff intervals are honoured.
"""
from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from redis import Redis
from rq import Queue, Worker, get_current_job

from rapidalle.core.config import settings
from rapidalle.core.logging import configure_logging, log_event
from rapidalle.core.metrics import pipeline_runs_total
from rapidalle.core.services import build_pipeline
from rapidalle.features.generation.errors import PipelineStepError
from rapidalle.features.generation.gate import GenerationRequest

logger = logging.getLogger("rapidalle")

# Swapped out in tests
pipeline_factory = build_pipeline


def _save_meta(job, **values) -> None:
    if job is None:
        return
    job.meta.update(values)
    job.save_meta()


def generate_content(
    theme: str,
    description: str,
    size: str = "1024x1024",
    user_id: str = "default-user",
) -> Dict[str, Any]:
    """Run the generation pipeline once. Raising lets RQ schedule a retry."""
    job = get_current_job()
    run_id = job.id if job is not None else f"run_local_{uuid4().hex}"
    attempts = int(job.meta.get("attempts", 0)) + 1 if job is not None else 1
    _save_meta(job, attempts=attempts)

    request = GenerationRequest(theme=theme, description=description, size=size)
    log_event("info", "run.attempt", user_id=user_id, run_id=run_id, event_type="run.attempt", extra={"attempt": attempts})

    try:
        result = pipeline_factory().run(request, run_id=run_id, user_id=user_id)
    except PipelineStepError as e:
        retries_left: Optional[int] = getattr(job, "retries_left", None) if job is not None else 0
        outcome = "retry" if retries_left else "failed"
        pipeline_runs_total.inc(labels={"outcome": outcome})
        _save_meta(job, last_error=str(e))
        log_event("warning", "run.step_failed", user_id=user_id, run_id=run_id, event_type="run.step_failed", extra={"step": e.step, "outcome": outcome, "error": e.message})
        raise

    _save_meta(
        job,
        persisted=result.persisted,
        warnings=[w.to_dict() for w in result.warnings],
    )
    pipeline_runs_total.inc(labels={"outcome": "completed" if result.persisted else "completed_unpersisted"})
    log_event("info", "run.completed", user_id=user_id, run_id=run_id, event_type="run.completed", extra={"persisted": result.persisted})
    return result.output()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="RapiDall-E generation worker")
    parser.add_argument("--redis-url", default=settings.REDIS_URL)
    parser.add_argument("--queue", default=settings.RUN_QUEUE_NAME)
    parser.add_argument("--burst", action="store_true", help="Exit when the queue is empty")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    conn = Redis.from_url(args.redis_url)
    worker = Worker([Queue(args.queue, connection=conn)], connection=conn)
    logger.info(f"Starting RQ worker on queue '{args.queue}'")
    worker.work(with_scheduler=True, burst=args.burst)


if __name__ == "__main__":
    main()
