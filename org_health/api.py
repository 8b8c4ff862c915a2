"""
Organization Health - HTTP API.

FastAPI router exposing the trigger and query interfaces to the
dashboard. Routes are thin: all logic lives in the orchestrator and
the query service stored on `app.state`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .exceptions import RunNotFoundError
from .logging_config import setup_logging
from .orchestrator import ALL_ORGANIZATIONS, RecalculationOrchestrator
from .query import HealthFilter, HealthQueryService
from .schemas import (
    DistributionResponse,
    DistributionSchema,
    OrganizationHealthListResponse,
    OrganizationHealthResponse,
    OrganizationHealthSchema,
    RecalculateRequest,
    RecalculateResponse,
    RunStatusResponse,
    RunStatusSchema,
)
from .types import RiskLevel


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health-scores", tags=["Organization Health"])


def get_orchestrator(request: Request) -> RecalculationOrchestrator:
    return request.app.state.orchestrator


def get_query_service(request: Request) -> HealthQueryService:
    return request.app.state.query_service


@router.post("/recalculate", response_model=RecalculateResponse, status_code=202)
async def recalculate(
    body: Optional[RecalculateRequest] = None,
    orchestrator: RecalculationOrchestrator = Depends(get_orchestrator),
):
    """
    Trigger recalculation for one organization or all of them.
    """
    scope = (body.organization_id if body else None) or ALL_ORGANIZATIONS
    run_id = await orchestrator.recalculate(scope)
    return RecalculateResponse(run_id=run_id, message=f"Recalculation started for {scope}")


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str, orchestrator: RecalculationOrchestrator = Depends(get_orchestrator)):
    try:
        status = orchestrator.get_run(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return RunStatusResponse(data=RunStatusSchema.model_validate(status.to_dict()))


@router.post("/runs/{run_id}/cancel", response_model=RunStatusResponse)
async def cancel_run(run_id: str, orchestrator: RecalculationOrchestrator = Depends(get_orchestrator)):
    try:
        accepted = orchestrator.cancel(run_id)
        status = orchestrator.get_run(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    message = "Cancellation requested" if accepted else "Run already finished"
    return RunStatusResponse(message=message, data=RunStatusSchema.model_validate(status.to_dict()))


@router.get("", response_model=OrganizationHealthListResponse)
async def list_organization_health(
    risk_level: Optional[RiskLevel] = None,
    search: Optional[str] = None,
    service: HealthQueryService = Depends(get_query_service),
):
    """
    Latest health per organization, most at-risk first.
    """
    views = await service.list_all(HealthFilter(risk_level=risk_level, search_text=search))
    data = [OrganizationHealthSchema.model_validate(v.to_dict()) for v in views]
    return OrganizationHealthListResponse(count=len(data), data=data)


@router.get("/distribution", response_model=DistributionResponse)
async def get_health_distribution(service: HealthQueryService = Depends(get_query_service)):
    stats = await service.get_distribution_stats()
    return DistributionResponse(data=DistributionSchema.model_validate(stats.to_dict()))


@router.get("/{organization_id}", response_model=OrganizationHealthResponse)
async def get_organization_health(
    organization_id: str,
    service: HealthQueryService = Depends(get_query_service),
):
    view = await service.get_latest(organization_id)
    if view is None:
        raise HTTPException(status_code=404, detail=f"No health score for {organization_id}")
    return OrganizationHealthResponse(data=OrganizationHealthSchema.model_validate(view.to_dict()))


def create_app(
    orchestrator: RecalculationOrchestrator,
    query_service: HealthQueryService,
    log_level: Optional[str] = None,
    log_format: str = "json",
) -> FastAPI:
    """Build the FastAPI application around existing services."""
    if log_level:
        setup_logging(level=log_level, log_format=log_format)

    app = FastAPI(
        title="Organization Health API",
        description="Health scores, risk distribution and recalculation triggers.",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.orchestrator = orchestrator
    app.state.query_service = query_service
    app.include_router(router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Organization Health API is running"}

    return app
