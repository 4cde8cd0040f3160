"""
Process-scoped service wiring.

build_services() is called once per process (lifespan or first request)
and the result lives on app.state.services. Routers reach it through the
get_services dependency, which tests override.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.requests import Request

from rapidalle.core.cache import FlatCache
from rapidalle.core.config import Settings, settings as default_settings
from rapidalle.features.generation.clients import CaptionClient, ImageClient
from rapidalle.features.generation.gate import GenerationGate
from rapidalle.features.generation.pipeline import GenerationPipeline
from rapidalle.features.generation.runner import RetryPolicy, RunQueue
from rapidalle.features.media.host import CloudinaryHost
from rapidalle.features.ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger("rapidalle")


@dataclass
class Services:
    cache: FlatCache
    limiter: FixedWindowRateLimiter
    runner: RunQueue
    gate: GenerationGate
    caption_client_factory: Callable[[], CaptionClient]

    def close(self) -> None:
        self.cache.save(force=True)


def build_pipeline(cfg: Optional[Settings] = None) -> GenerationPipeline:
    cfg = cfg or default_settings
    host = CloudinaryHost() if cfg.media_host_configured else None
    return GenerationPipeline(CaptionClient(), ImageClient(), media_host=host)


def build_services(cfg: Optional[Settings] = None) -> Services:
    cfg = cfg or default_settings
    cache = FlatCache(
        cache_dir=cfg.CACHE_DIR,
        cache_id=cfg.CACHE_ID,
        ttl_seconds=cfg.CACHE_TTL_SECONDS,
        persist_interval_seconds=cfg.CACHE_PERSIST_INTERVAL_SECONDS,
    )
    cache.load()

    limiter = FixedWindowRateLimiter(
        cache,
        max_requests=cfg.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=cfg.RATE_LIMIT_WINDOW_SECONDS,
    )
    runner = RunQueue.from_url(
        cfg.REDIS_URL,
        queue_name=cfg.RUN_QUEUE_NAME,
        policy=RetryPolicy.from_settings(cfg),
        token_secret=cfg.RUN_TOKEN_SECRET,
        token_ttl_seconds=cfg.RUN_TOKEN_TTL_SECONDS,
        job_timeout=cfg.RUN_MAX_DURATION_SECONDS,
        result_ttl=cfg.RUN_RESULT_TTL_SECONDS,
    )
    gate = GenerationGate(limiter, cache, runner, cost=cfg.GENERATION_COST)

    logger.info("services.built", extra={"event_type": "services.built"})
    return Services(
        cache=cache,
        limiter=limiter,
        runner=runner,
        gate=gate,
        caption_client_factory=CaptionClient,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services
