# delayqueue/api.py
"""
delayqueue Admin API
Submission, cancellation, inspection and reconciliation over HTTP for the
dispatcher embedded in the process. Mutating endpoints require X-API-Key when
DELAYQUEUE_API_KEY is configured.
"""

import logging
import platform
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .auth import verify_api_key
from .config import get_settings
from .dispatcher import Dispatcher
from .errors import CollaboratorError
from .lifecycle import TaskState
from .middleware import CorrelationIdMiddleware
from .models import TaskSubmission

logger = logging.getLogger("delayqueue.api")


# =============================================================================
# Request / Response Models
# =============================================================================

class TaskResponse(BaseModel):
    """Response model for task submission"""
    task_id: str
    state: str
    run_at: str
    message: str


class TaskDetail(BaseModel):
    """Full task details response"""
    task_id: str
    task_name: Optional[str]
    task_service: str
    params: Dict[str, Any]
    run_at: str
    timeout: int
    state: str
    result: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]


class CancelRequest(BaseModel):
    """Cancel one or more tasks that have not been claimed yet"""
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=2000)
    task_ids: List[str] = Field(..., min_length=1)


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def create_app(dispatcher: Dispatcher) -> FastAPI:
    """Build the admin application around an existing dispatcher"""
    app = FastAPI(
        title="delayqueue",
        description="Delayed task scheduling admin API",
        version="1.0.0"
    )
    app.state.dispatcher = dispatcher
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(CollaboratorError)
    async def collaborator_unavailable(request: Request, exc: CollaboratorError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # =========================================================================
    # Health Check Endpoint
    # =========================================================================

    @app.get("/health")
    def health_check(dispatcher: Dispatcher = Depends(get_dispatcher)):
        """Queue and store reachability plus the dispatcher circuit breaker"""
        try:
            queue_size = dispatcher.queue.size()
            queue_healthy = True
        except CollaboratorError:
            queue_size = -1
            queue_healthy = False

        try:
            state_counts = dispatcher.store.count_by_state()
            store_healthy = True
        except CollaboratorError:
            state_counts = {}
            store_healthy = False

        status = dispatcher.get_status()
        overall_status = "healthy"
        if not (queue_healthy and store_healthy):
            overall_status = "unhealthy"
        elif status["circuit_breaker"]["state"] != "closed":
            overall_status = "degraded"

        return {
            "status": overall_status,
            "environment": get_settings().ENVIRONMENT,
            "platform": platform.system(),
            "timestamp": datetime.utcnow().isoformat(),
            "queue_size": queue_size,
            "queue_healthy": queue_healthy,
            "store_healthy": store_healthy,
            "state_counts": state_counts,
            "dispatcher": status,
        }

    # =========================================================================
    # Task Endpoints
    # =========================================================================

    @app.post("/tasks", status_code=201, response_model=TaskResponse)
    def create_task(
        submission: TaskSubmission,
        dispatcher: Dispatcher = Depends(get_dispatcher),
        api_key: str = Depends(verify_api_key)
    ):
        task = dispatcher.submit(submission)
        return TaskResponse(
            task_id=task.task_id,
            state=task.state,
            run_at=task.run_at.isoformat(),
            message="Task scheduled successfully",
        )

    @app.post("/tasks/batch", status_code=201, response_model=List[TaskResponse])
    def create_tasks(
        submissions: List[TaskSubmission],
        dispatcher: Dispatcher = Depends(get_dispatcher),
        api_key: str = Depends(verify_api_key)
    ):
        tasks = dispatcher.submit(submissions)
        return [
            TaskResponse(
                task_id=task.task_id,
                state=task.state,
                run_at=task.run_at.isoformat(),
                message="Task scheduled successfully",
            )
            for task in tasks
        ]

    @app.post("/tasks/cancel")
    def cancel_tasks(
        body: CancelRequest,
        dispatcher: Dispatcher = Depends(get_dispatcher),
        api_key: str = Depends(verify_api_key)
    ):
        cancelled = dispatcher.cancel(body.reason, body.task_ids)
        return {"requested": len(body.task_ids), "cancelled": cancelled}

    @app.get("/tasks/{task_id}", response_model=TaskDetail)
    def get_task(task_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
        task = dispatcher.find(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return TaskDetail(**task.to_dict())

    @app.get("/tasks", response_model=List[TaskDetail])
    def list_tasks(
        state: Optional[TaskState] = None,
        limit: int = Query(100, ge=1, le=1000),
        dispatcher: Dispatcher = Depends(get_dispatcher),
    ):
        """List tasks, most recent first, with optional state filter"""
        return [TaskDetail(**task.to_dict()) for task in dispatcher.store.list_tasks(state=state, limit=limit)]

    # =========================================================================
    # Manual Reconciliation Endpoint (for operations)
    # =========================================================================

    @app.post("/admin/reconcile")
    def trigger_reconciliation(
        dispatcher: Dispatcher = Depends(get_dispatcher),
        api_key: str = Depends(verify_api_key)
    ):
        """
        Re-enqueue every READY task from the store.
        Recovers from a crash between store write and enqueue, or from queue data loss.
        """
        logger.info("Manual reconciliation triggered")
        enqueued = dispatcher.initialize()
        return {
            "status": "completed",
            "enqueued": enqueued,
            "timestamp": datetime.utcnow().isoformat()
        }

    return app
