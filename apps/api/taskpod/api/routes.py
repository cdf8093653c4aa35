"""FastAPI routes for the TaskPod API.

Endpoints:
- GET    /health                 - Health check
- GET    /tasks                  - List tasks, or search by name with ?search=
- GET    /tasks/{id}             - Get task with its execution history
- PUT    /tasks/{id}             - Create or replace a task
- DELETE /tasks/{id}             - Delete a task
- PUT    /tasks/{id}/executions  - Run the task in a new pod
- GET    /tasks/{id}/executions  - Execution history in order
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request, Response

from taskpod.errors import TaskNotFound
from taskpod.orchestrator import ExecutionOrchestrator
from taskpod.repository import TaskRepository, task_to_response
from taskpod.schemas import ExecutionOutcome, ExecutionRecord, TaskResponse, TaskUpsertRequest
from taskpod.validator import CommandValidator


logger = logging.getLogger(__name__)
router = APIRouter()


def _repository(request: Request) -> TaskRepository:
    return request.app.state.repository


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint."""
    settings = request.app.state.settings
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Task Endpoints
# =============================================================================

@router.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(
    request: Request,
    search: str | None = Query(default=None, description="Substring of the task name"),
) -> list[TaskResponse]:
    """List all tasks, or those whose name contains ``search``."""
    repository = _repository(request)
    if search is not None and search.strip():
        tasks = await repository.search_by_name(search)
        if not tasks:
            raise HTTPException(status_code=404, detail="No tasks match the search")
    else:
        tasks = await repository.list_tasks()

    return [task_to_response(task, await repository.list_executions(task.id)) for task in tasks]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, request: Request) -> TaskResponse:
    """Get a task by ID."""
    repository = _repository(request)
    task = await repository.get_task(task_id)
    if task is None:
        raise TaskNotFound(task_id)
    return task_to_response(task, await repository.list_executions(task_id))


@router.put("/tasks/{task_id}", response_model=TaskResponse)
async def put_task(task_id: str, body: TaskUpsertRequest, request: Request) -> TaskResponse:
    """Create or replace a task.

    The body ID must match the path and the command must pass validation.
    """
    validator: CommandValidator = request.app.state.validator
    if body.id != task_id:
        raise HTTPException(status_code=400, detail="Task ID in body does not match path")
    if body.command is None or not validator.validate(body.command):
        raise HTTPException(status_code=400, detail="Command is missing or not allowed")

    repository = _repository(request)
    task = await repository.save_task(body)
    return task_to_response(task, await repository.list_executions(task_id))


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, request: Request) -> Response:
    """Delete a task and its execution history."""
    if not await _repository(request).delete_task(task_id):
        raise TaskNotFound(task_id)
    return Response(status_code=204)


# =============================================================================
# Execution Endpoints
# =============================================================================

@router.put("/tasks/{task_id}/executions", response_model=ExecutionOutcome)
async def execute_task(task_id: str, request: Request) -> ExecutionOutcome:
    """Run the task's command in a fresh pod and record the result.

    Blocks until the pod finishes or the wait budget is exhausted.
    """
    orchestrator: ExecutionOrchestrator = request.app.state.orchestrator
    outcome = await orchestrator.run(task_id)
    for warning in outcome.warnings:
        logger.warning(f"Execution of task {task_id} completed with warning: {warning}")
    return outcome


@router.get("/tasks/{task_id}/executions", response_model=list[ExecutionRecord])
async def list_executions(task_id: str, request: Request) -> list[ExecutionRecord]:
    """Execution history of a task, oldest first."""
    repository = _repository(request)
    if await repository.get_task(task_id) is None:
        raise TaskNotFound(task_id)
    return await repository.list_executions(task_id)
