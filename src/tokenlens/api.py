"""HTTP surface: serializes the latest snapshot, one route per view."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import REGISTRY, CollectorRegistry, make_asgi_app

from tokenlens.buckets import Granularity
from tokenlens.collector import Collector
from tokenlens.derived import DEFAULT_TIERS, EfficiencyTiers
from tokenlens.export import (
    block_to_dict,
    bucket_document,
    metrics_document,
    project_paths_document,
    projects_document,
    record_to_dict,
)
from tokenlens.store import Snapshot, SnapshotStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api/ccusage")


def _snapshot(request: "Request") -> "Snapshot":
    store: "SnapshotStore" = request.app.state.store
    return store.latest()


def _tiers(request: "Request") -> "EfficiencyTiers":
    return request.app.state.tiers


@router.get("", response_model=None)
async def usage_records(request: "Request") -> "list[dict[str, object]]":
    return [record_to_dict(r) for r in _snapshot(request).records]


@router.get("/daily", response_model=None)
async def daily(request: "Request") -> "dict[str, object]":
    return bucket_document(_snapshot(request).daily, Granularity.DAY)


@router.get("/weekly", response_model=None)
async def weekly(request: "Request") -> "dict[str, object]":
    return bucket_document(_snapshot(request).weekly, Granularity.WEEK)


@router.get("/monthly", response_model=None)
async def monthly(request: "Request") -> "dict[str, object]":
    return bucket_document(_snapshot(request).monthly, Granularity.MONTH)


@router.get("/projects", response_model=None)
async def projects(request: "Request") -> "dict[str, object]":
    return projects_document(_snapshot(request).projects, _tiers(request))


@router.get("/project-paths", response_model=None)
async def project_paths(request: "Request") -> "dict[str, object]":
    return project_paths_document(_snapshot(request).project_paths)


@router.get("/sessions", response_model=None)
async def sessions(request: "Request") -> "dict[str, object]":
    return {"sessions": [record_to_dict(r) for r in _snapshot(request).sessions]}


@router.get("/blocks", response_model=None)
async def blocks(request: "Request") -> "dict[str, object]":
    return {"blocks": [block_to_dict(b) for b in _snapshot(request).blocks]}


@router.get("/metrics", response_model=None)
async def dashboard(request: "Request") -> "dict[str, object]":
    snapshot = _snapshot(request)
    return metrics_document(
        snapshot.records,
        snapshot.weekly,
        snapshot.monthly,
        datetime.now(timezone.utc),
        _tiers(request),
    )


@router.get("/status", response_model=None)
async def status(request: "Request") -> "dict[str, object]":
    collector: "Collector" = request.app.state.collector
    return collector.status()


@router.post("/refresh", response_model=None)
async def refresh(request: "Request") -> "dict[str, object]":
    collector: "Collector" = request.app.state.collector
    logger.info("manual_refresh_requested")
    snapshot = await collector.refresh()
    return {"success": True, "dataCount": len(snapshot.records)}


def create_app(
    collector: "Collector",
    store: "SnapshotStore",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
    registry: "CollectorRegistry" = REGISTRY,
    cors_origins: "list[str] | None" = None,
    run_collector: "bool" = True,
) -> "FastAPI":
    """
    builds the FastAPI application. With run_collector the collection
    loop is started on startup and stopped on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: "FastAPI"):
        task: "asyncio.Task[None] | None" = None
        if run_collector:
            task = asyncio.create_task(collector.run())
            logger.info("collector_started")
        try:
            yield
        finally:
            if task is not None:
                collector.stop()
                await task
            logger.info("shutting_down")
            await collector.close()
            logger.info("shutdown_complete")

    app = FastAPI(title="tokenlens", lifespan=lifespan)
    app.state.collector = collector
    app.state.store = store
    app.state.tiers = tiers

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.include_router(router)
    app.mount("/metrics", make_asgi_app(registry=registry))

    @app.get("/health")
    async def health() -> "dict[str, str]":
        return {"status": "ok"}

    return app
