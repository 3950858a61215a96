"""FastAPI application entry point for the gatekeeper.

Receives GitHub webhook deliveries, validates them, and hands accepted
events to the configured event sink. Also wires the GitHub App token
cache for the surrounding system and exposes health, readiness and
Prometheus metrics endpoints.
"""

import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from src.gatekeeper.auth.credentials import CredentialMinter
from src.gatekeeper.auth.executor import AuthenticatedCallExecutor
from src.gatekeeper.auth.token_cache import InstallationTokenCache
from src.gatekeeper.config import GatekeeperSettings, get_settings
from src.gatekeeper.events.metrics import generate_metrics_output, get_metrics
from src.gatekeeper.events.sink import EventSink, LoggingEventSink
from src.gatekeeper.github.client import GitHubAppClient
from src.gatekeeper.webhook.models import (
    SIGNATURE_REASONS,
    RejectionReason,
    WebhookEvent,
)
from src.gatekeeper.webhook.pipeline import (
    GITHUB_HEADER_NAMES,
    ValidationPipeline,
    WebhookHeaderNames,
)
from src.gatekeeper.webhook.replay import ReplayGuard


logger = structlog.get_logger()

# Global instances, initialized during lifespan startup
settings: Optional[GatekeeperSettings] = None
pipeline: Optional[ValidationPipeline] = None
event_sink: Optional[EventSink] = None
minter: Optional[CredentialMinter] = None
app_client: Optional[GitHubAppClient] = None
token_cache: Optional[InstallationTokenCache] = None
executor: Optional[AuthenticatedCallExecutor] = None

_background_tasks: Set[asyncio.Task] = set()


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib and structlog output through JSON-rendered records."""
    logging.basicConfig(level=log_level.upper(), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if not value:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: GatekeeperSettings) -> None:
    logger.info(
        "gatekeeper_configuration",
        github_webhook_secret=_redact_secret(cfg.github_webhook_secret),
        allowed_event_types=cfg.allowed_event_types,
        max_payload_bytes=cfg.max_payload_bytes,
        freshness_window_seconds=cfg.freshness_window_seconds,
        replay_sweep_probability=cfg.replay_sweep_probability,
        require_delivery_id=cfg.require_delivery_id,
        use_github_headers=cfg.use_github_headers,
        github_app_id=cfg.github_app_id,
        github_app_private_key="<set>" if cfg.github_app_private_key else "<unset>",
        github_base_url=cfg.github_base_url,
        refresh_buffer_seconds=cfg.refresh_buffer_seconds,
        token_lifetime_seconds=cfg.token_lifetime_seconds,
        host=cfg.host,
        port=cfg.port,
    )


def build_pipeline(cfg: GatekeeperSettings) -> ValidationPipeline:
    """Wire a ValidationPipeline from settings."""
    header_names = GITHUB_HEADER_NAMES if cfg.use_github_headers else WebhookHeaderNames()
    return ValidationPipeline(
        secret=cfg.github_webhook_secret,
        allowed_event_types=cfg.allowed_event_types,
        replay_guard=ReplayGuard(
            freshness_window_seconds=cfg.freshness_window_seconds,
            sweep_probability=cfg.replay_sweep_probability,
        ),
        max_payload_bytes=cfg.max_payload_bytes,
        header_names=header_names,
        require_delivery_id=cfg.require_delivery_id,
        metrics=get_metrics(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    global settings, pipeline, event_sink, minter, app_client, token_cache, executor

    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("gatekeeper_starting")
    _log_configuration(settings)

    metrics = get_metrics()
    pipeline = build_pipeline(settings)
    if event_sink is None:
        event_sink = LoggingEventSink()

    minter = CredentialMinter(settings.github_app_id, settings.github_app_private_key)
    app_client = GitHubAppClient(minter, base_url=settings.github_base_url)
    token_cache = InstallationTokenCache(
        minter=minter,
        exchanger=app_client,
        refresh_buffer_seconds=settings.refresh_buffer_seconds,
        token_lifetime_seconds=settings.token_lifetime_seconds,
        metrics=metrics,
    )
    executor = AuthenticatedCallExecutor(token_cache, metrics=metrics)

    if settings.github_app_configured:
        report = minter.validate_configuration()
        if not report.is_valid:
            logger.warning("github_app_misconfigured", errors=report.errors)

    logger.info("gatekeeper_started")

    yield

    logger.info("gatekeeper_shutting_down")

    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
    if event_sink is not None:
        await event_sink.close()
    if app_client is not None:
        await app_client.close()

    logger.info("gatekeeper_shutdown_complete")


app = FastAPI(
    title="GitHub App Gatekeeper",
    description="Webhook validation and installation token lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)


def rejection_status_code(reason: RejectionReason) -> int:
    """HTTP status for a rejected delivery."""
    if reason == RejectionReason.PAYLOAD_TOO_LARGE:
        return 413
    if reason in SIGNATURE_REASONS:
        return 401
    return 400


def _dispatch(event: WebhookEvent) -> None:
    task = asyncio.create_task(event_sink.deliver(event))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(functools.partial(_log_dispatch_failure, event))


def _log_dispatch_failure(event: WebhookEvent, task: asyncio.Task) -> None:
    """Surface sink failures for events that were already accepted."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "webhook_dispatch_failed",
            event_type=event.event_type,
            delivery_id=event.delivery_id,
            error=str(error),
            error_type=type(error).__name__,
        )


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Ready once the webhook pipeline is wired. When GitHub App credentials
    are configured they must also be able to sign an assertion.
    """
    if pipeline is None or minter is None or settings is None:
        return JSONResponse(status_code=503, content={"status": "not_ready"})

    report = minter.validate_configuration()
    app_ok = report.is_valid or not settings.github_app_configured
    body = {
        "status": "ready" if app_ok else "not_ready",
        "github_app": report.model_dump(),
    }
    return JSONResponse(status_code=200 if app_ok else 503, content=body)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


@app.post("/webhooks/github")
async def github_webhook(request: Request):
    """GitHub webhook receiver endpoint.

    Every rejection gets the same body so callers learn nothing beyond the
    status code; the specific reason is logged.
    """
    if pipeline is None or event_sink is None:
        logger.error("gatekeeper_not_initialized")
        return JSONResponse(status_code=503, content={"status": "error"})

    result = await pipeline.validate(request)
    if not result.valid:
        logger.info("webhook_rejected", reason=result.reason.value)
        return JSONResponse(
            status_code=rejection_status_code(result.reason),
            content={"status": "rejected"},
        )

    event = result.event
    _dispatch(event)
    logger.info(
        "webhook_accepted",
        event_type=event.event_type,
        delivery_id=event.delivery_id,
    )
    return {"status": "accepted", "delivery_id": event.delivery_id}


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.gatekeeper.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
