"""FastAPI service for the automation pipeline.

Webhooks enqueue work on the in-process TaskQueue and return at once;
outcomes are observable through the stored task, lead, report and email
records.

Endpoints:
- GET /health - Health check endpoint
- POST /webhooks/automation-task - Dispatch a task (bare or trigger-wrapped)
- POST /webhooks/lead-created - Run the owner's automations for a new lead
- POST /webhooks/batch-enrichment - Create and dispatch an ad-hoc batch task
- GET /reports/usage - Usage summary for a user and date range
- GET /reports/usage/daily - Usage per day for a user and date range
- GET /reports/lead-generation - Pipeline output counts for a user and date range

Example:
    uvicorn leadflow.api:app --host 0.0.0.0 --port 8080
"""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__
from .config import config
from .models import AutomationTask, TaskStatus, close_database, utcnow
from .orchestrator import AutomationOrchestrator, build_orchestrator
from .schemas import (
    BatchEnrichmentRequest,
    PayloadError,
    parse_lead_payload,
    parse_task_payload,
)
from .store import LeadStore, StoreError
from .task_queue import QueueFullError, TaskQueue
from .utils import parse_report_date

logger = logging.getLogger(__name__)

SERVICE_NAME = "leadflow"


def create_app(
    orchestrator: Optional[AutomationOrchestrator] = None,
    store: Optional[LeadStore] = None,
    queue: Optional[TaskQueue] = None,
    webhook_secret: Optional[str] = None,
) -> FastAPI:
    """Build the application.

    Args:
        orchestrator: Dispatcher. Built from configuration when omitted.
        store: Lead store. Defaults to the orchestrator's store.
        queue: Task queue. A new one is created when omitted.
        webhook_secret: Bearer token. Defaults to WEBHOOK_SECRET.
    """
    owns_database = orchestrator is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown."""
        logger.info("Automation service starting...")
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(app.state.store)
        if app.state.store is None:
            app.state.store = app.state.orchestrator.store
        if not app.state.webhook_secret:
            if config.is_production():
                config.validate_for_webhooks()
            logger.warning("WEBHOOK_SECRET not set - webhook authentication disabled")
        app.state.queue.start()
        logger.info("Automation service ready")

        yield

        logger.info("Automation service shutting down...")
        await app.state.queue.stop()
        if owns_database:
            await close_database()
        logger.info("Automation service shutdown complete")

    app = FastAPI(
        title="Leadflow",
        description="Lead enrichment, pre-call briefing and cold email automation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.store = store
    app.state.queue = queue or TaskQueue()
    app.state.webhook_secret = (
        config.WEBHOOK_SECRET if webhook_secret is None else webhook_secret
    )

    _register_routes(app)
    return app


def verify_webhook_secret(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> None:
    """Check the bearer token on webhook and report routes.

    Raises:
        HTTPException: 401 if the token is missing or wrong.
    """
    expected = request.app.state.webhook_secret
    if not expected:
        return

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    token = authorization[len("Bearer "):].strip()
    if not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
        )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be valid JSON",
        )


def _enqueue(request: Request, job, name: str) -> None:
    try:
        request.app.state.queue.submit(job, name=name)
    except QueueFullError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )


class ReportRange:
    """Query parameters shared by the report routes."""

    def __init__(
        self,
        user_id: str = Query(..., min_length=1),
        start_date: Optional[str] = Query(None, description="RFC 3339 or YYYY-MM-DD"),
        end_date: Optional[str] = Query(None, description="RFC 3339 or YYYY-MM-DD"),
    ) -> None:
        self.user_id = user_id
        self.start = _parse_range_bound("start_date", start_date, end_of_day=False)
        self.end = _parse_range_bound("end_date", end_date, end_of_day=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "start_date": self.start.isoformat() if self.start else None,
            "end_date": self.end.isoformat() if self.end else None,
        }


def _parse_range_bound(name: str, value: Optional[str], end_of_day: bool) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_report_date(value, end_of_day=end_of_day)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"invalid {name} format, use RFC 3339 or YYYY-MM-DD",
        )


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        queue: TaskQueue = request.app.state.queue
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": __version__,
            "queue_depth": queue.depth,
            "workers_running": queue.running,
        }

    @app.post(
        "/webhooks/automation-task",
        status_code=status.HTTP_202_ACCEPTED,
        dependencies=[Depends(verify_webhook_secret)],
    )
    async def automation_task_webhook(request: Request) -> dict[str, Any]:
        """Queue a task for dispatch."""
        body = await _read_json(request)
        try:
            payload = parse_task_payload(body)
        except PayloadError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        task = payload.to_task()
        orchestrator: AutomationOrchestrator = request.app.state.orchestrator
        _enqueue(request, lambda: orchestrator.dispatch(task), name=task.id)

        logger.info(
            "Task accepted",
            extra={"task_id": task.id, "task_type": task.task_type, "user_id": task.user_id},
        )
        return {"status": "accepted", "task_id": task.id}

    @app.post(
        "/webhooks/lead-created",
        status_code=status.HTTP_202_ACCEPTED,
        dependencies=[Depends(verify_webhook_secret)],
    )
    async def lead_created_webhook(request: Request) -> dict[str, Any]:
        """Queue the owner's automations for a newly created lead."""
        body = await _read_json(request)
        try:
            payload = parse_lead_payload(body)
        except PayloadError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        lead = payload.to_lead()
        orchestrator: AutomationOrchestrator = request.app.state.orchestrator
        _enqueue(
            request,
            lambda: orchestrator.process_lead_created(lead),
            name=f"lead-created-{lead.id}",
        )
        return {"status": "accepted", "lead_id": lead.id}

    @app.post(
        "/webhooks/batch-enrichment",
        status_code=status.HTTP_202_ACCEPTED,
        dependencies=[Depends(verify_webhook_secret)],
    )
    async def batch_enrichment_webhook(
        request: Request,
        batch: BatchEnrichmentRequest,
    ) -> dict[str, Any]:
        """Create a pending batch task and queue it."""
        task = AutomationTask(
            id=f"task-{secrets.token_hex(8)}",
            user_id=batch.user_id,
            task_type=batch.task_type.value,
            lead_id=None,
            lead_ids=list(batch.lead_ids),
            business_profile_id=batch.business_profile_id,
            priority=batch.priority,
            status=TaskStatus.PENDING,
            items_total=len(batch.lead_ids),
            items_processed=0,
            items_succeeded=0,
            items_failed=0,
            retry_count=0,
            max_retries=config.STAGE_MAX_RETRIES,
            created_at=utcnow(),
        )

        store: LeadStore = request.app.state.store
        try:
            await store.create_task(task)
        except StoreError as e:
            logger.error("Failed to create batch task: %s", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create task",
            )

        orchestrator: AutomationOrchestrator = request.app.state.orchestrator
        _enqueue(request, lambda: orchestrator.dispatch(task), name=task.id)

        logger.info(
            "Batch task created",
            extra={
                "task_id": task.id,
                "task_type": task.task_type,
                "user_id": task.user_id,
                "leads": len(batch.lead_ids),
            },
        )
        return {"status": "accepted", "task_id": task.id, "leads": len(batch.lead_ids)}

    @app.get("/reports/usage", dependencies=[Depends(verify_webhook_secret)])
    async def usage_report(
        request: Request, period: ReportRange = Depends()
    ) -> dict[str, Any]:
        """Usage summary plus per-operation breakdown."""
        store: LeadStore = request.app.state.store
        try:
            summary = await store.get_usage_summary(period.user_id, period.start, period.end)
        except StoreError as e:
            logger.error("Failed to build usage report for %s: %s", period.user_id, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to load usage metrics",
            )
        return {**period.to_dict(), **summary.to_dict()}

    @app.get("/reports/usage/daily", dependencies=[Depends(verify_webhook_secret)])
    async def daily_usage_report(
        request: Request, period: ReportRange = Depends()
    ) -> dict[str, Any]:
        """Usage per UTC day, oldest first."""
        store: LeadStore = request.app.state.store
        try:
            days = await store.get_daily_usage(period.user_id, period.start, period.end)
        except StoreError as e:
            logger.error("Failed to build daily usage for %s: %s", period.user_id, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to load usage metrics",
            )
        return {**period.to_dict(), "daily_usage": [day.to_dict() for day in days]}

    @app.get("/reports/lead-generation", dependencies=[Depends(verify_webhook_secret)])
    async def lead_generation_report(
        request: Request, period: ReportRange = Depends()
    ) -> dict[str, Any]:
        """Task, lead, briefing and email counts with per-lead cost."""
        store: LeadStore = request.app.state.store
        try:
            stats = await store.get_lead_generation_stats(
                period.user_id, period.start, period.end
            )
        except StoreError as e:
            logger.error("Failed to build lead generation stats for %s: %s", period.user_id, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to load lead generation stats",
            )
        return {**period.to_dict(), "lead_generation": stats.to_dict()}

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed payloads as 400 Bad Request."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error(
            "Unhandled error: %s %s - %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if config.DEBUG else "An unexpected error occurred",
            },
        )


app = create_app()
