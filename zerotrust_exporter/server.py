"""FastAPI application serving /metrics and /health."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from .config.models import ExporterConfig
from .services.cloudflare_client import CloudflareClient
from .services.metric_registry import MetricRegistry
from .workflow import ScrapeOrchestrator


router = APIRouter()


@router.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    """Liveness of the process itself; never touches the upstream."""
    return "ok\n"


@router.api_route("/metrics", methods=["GET", "HEAD"])
async def metrics(request: Request) -> Response:
    """
    Run one scrape and return the whole registry.

    Collector failures still produce 200; only a serialization failure
    returns 500.
    """
    state = request.app.state
    await state.orchestrator.scrape()

    try:
        output = state.registry.write_all()
    except Exception as e:
        state.logger.error(f"Failed to serialize metrics: {e}", exc_info=True)
        return PlainTextResponse(f"failed to serialize metrics: {e}\n", status_code=500)

    return Response(
        content=output if request.method == "GET" else b"",
        media_type=state.registry.content_type,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Close the upstream client when the server stops."""
    app.state.logger.info("Exporter started")
    yield
    await app.state.client.aclose()
    app.state.logger.info("Exporter stopped")


def create_app(
    config: ExporterConfig,
    logger: Optional[logging.Logger] = None,
    registry: Optional[MetricRegistry] = None,
    client: Optional[CloudflareClient] = None,
    orchestrator: Optional[ScrapeOrchestrator] = None
) -> FastAPI:
    """
    Composition root: build the registry, upstream client and orchestrator.

    Args:
        config: Validated exporter configuration
        logger: Optional logger instance
        registry: Metric registry, a fresh one by default
        client: Upstream client, built from ``config`` by default
        orchestrator: Scrape orchestrator, built from the above by default

    Returns:
        FastAPI: Application ready for uvicorn
    """
    logger = logger or logging.getLogger(__name__)
    registry = registry or MetricRegistry(logger=logger)
    client = client or CloudflareClient(config.cloudflare, registry, logger)

    app = FastAPI(
        title="zerotrust-exporter",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.logger = logger
    app.state.registry = registry
    app.state.client = client
    app.state.orchestrator = orchestrator or ScrapeOrchestrator(config, client, registry, logger)
    app.include_router(router)
    return app
