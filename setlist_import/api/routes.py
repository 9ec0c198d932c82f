"""FastAPI routes for starting and watching artist imports.

# ─── API ROUTE MAP ─────────────────────────────────────────────────────
#
# Endpoint                      Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/imports               POST    Initiate an artist, run the import in background
# /api/v1/imports/batch         POST    Import several artists in background
# /api/v1/imports               GET     List imports not yet finished
# /api/v1/imports/{job_id}      GET     Poll one import's progress
# /api/v1/optimizer/stats       GET     Batch optimizer statistics
# /api/v1/health                GET     Health check + provider status
#
# Services are read from ``app.state`` (populated by ``build_components``
# in main.py) through ``Depends`` helpers, so tests can swap in mocks.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from setlist_import import __version__
from setlist_import.api.schemas import (
    ActiveImportsResponse,
    BatchImportRequest,
    BatchImportResponse,
    ErrorResponse,
    HealthResponse,
    ImportRequest,
    ImportStartedResponse,
    ImportStatusResponse,
    OptimizerStatsResponse,
)
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.pipeline.circuit_breaker import CircuitState
from setlist_import.pipeline.orchestrator import ArtistImportOrchestrator
from setlist_import.pipeline.progress_bus import ProgressBus
from setlist_import.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


def _get_orchestrator(request: Request) -> ArtistImportOrchestrator:
    """Return the import orchestrator from application state."""
    return request.app.state.orchestrator


def _get_progress_bus(request: Request) -> ProgressBus:
    """Return the progress bus from application state."""
    return request.app.state.progress_bus


def _get_optimizer(request: Request) -> BatchAPIOptimizer:
    return request.app.state.optimizer


OrchestratorDep = Annotated[ArtistImportOrchestrator, Depends(_get_orchestrator)]
ProgressBusDep = Annotated[ProgressBus, Depends(_get_progress_bus)]
OptimizerDep = Annotated[BatchAPIOptimizer, Depends(_get_optimizer)]


# ---------------------------------------------------------------------------
# Background runners
# ---------------------------------------------------------------------------


async def _run_import(orchestrator: ArtistImportOrchestrator, job_id: str) -> None:
    try:
        result = await orchestrator.run_full(job_id)
    except Exception as exc:
        _logger.error("background_import_failed", job_id=job_id, error=str(exc))
        return
    _logger.info(
        "background_import_finished",
        job_id=job_id,
        success=result.success,
        partial=result.partial,
    )


async def _run_batch(orchestrator: ArtistImportOrchestrator, artist_keys: list[str]) -> None:
    try:
        await orchestrator.run_batch(artist_keys)
    except Exception as exc:
        _logger.error("background_batch_failed", artists=len(artist_keys), error=str(exc))


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@router.post(
    "/imports",
    response_model=ImportStartedResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
    summary="Start an artist import",
)
async def start_import(
    body: ImportRequest,
    background_tasks: BackgroundTasks,
    orchestrator: OrchestratorDep,
) -> ImportStartedResponse:
    """Create the artist right away and run the full import in the background."""
    initiated = await orchestrator.initiate(body.artist_key)
    background_tasks.add_task(_run_import, orchestrator, initiated.id)
    return ImportStartedResponse(job_id=initiated.id, artist=initiated)


@router.post(
    "/imports/batch",
    response_model=BatchImportResponse,
    status_code=202,
    summary="Start imports for several artists",
)
async def start_batch_import(
    body: BatchImportRequest,
    background_tasks: BackgroundTasks,
    orchestrator: OrchestratorDep,
) -> BatchImportResponse:
    keys = list(dict.fromkeys(k.strip() for k in body.artist_keys if k.strip()))
    if not keys:
        raise HTTPException(status_code=422, detail="No artist keys given")
    background_tasks.add_task(_run_batch, orchestrator, keys)
    return BatchImportResponse(accepted=keys)


@router.get(
    "/imports",
    response_model=ActiveImportsResponse,
    summary="List running imports",
)
async def list_active_imports(progress_bus: ProgressBusDep) -> ActiveImportsResponse:
    jobs = await progress_bus.get_active_imports()
    return ActiveImportsResponse(imports=[ImportStatusResponse.from_job(j) for j in jobs])


@router.get(
    "/imports/{job_id}",
    response_model=ImportStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get import progress",
)
async def get_import_status(job_id: str, progress_bus: ProgressBusDep) -> ImportStatusResponse:
    job = await progress_bus.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Import not found: {job_id}")
    return ImportStatusResponse.from_job(job)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.get(
    "/optimizer/stats",
    response_model=OptimizerStatsResponse,
    summary="Batch optimizer statistics",
)
async def optimizer_stats(optimizer: OptimizerDep) -> OptimizerStatsResponse:
    return OptimizerStatsResponse(**optimizer.get_statistics())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(request: Request) -> HealthResponse:
    """Report credentials presence and each provider's circuit state."""
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))

    optimizer: BatchAPIOptimizer | None = getattr(request.app.state, "optimizer", None)
    open_circuits: list[str] = []
    if optimizer is not None:
        for name, stats in optimizer.get_statistics()["providers"].items():
            state = stats["circuit_breaker"]["state"]
            providers[f"{name}_circuit"] = state
            if state != CircuitState.CLOSED.value:
                open_circuits.append(name)

    configured = all(v for k, v in providers.items() if isinstance(v, bool))
    if configured and not open_circuits:
        status = "healthy"
    elif configured:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(status=status, version=__version__, providers=providers)
