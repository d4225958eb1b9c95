"""Tasks API: per-user CRUD with status/priority filters and aggregate statistics."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.api.deps import CurrentUser, get_current_user
from taskflow.core.metrics import TASKS_BY_STATUS
from taskflow.db.session import get_db
from taskflow.models.task import TASK_PRIORITIES, TASK_STATUSES, Task
from taskflow.schemas.auth import MessageResponse
from taskflow.schemas.task import (
    TaskCreate,
    TaskListResponse,
    TaskPriority,
    TaskResponse,
    TaskStatistics,
    TaskStatus,
    TaskUpdate,
)
from taskflow.services.audit import log_action

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])

_UPDATABLE_FIELDS = ("title", "description", "status", "priority", "due_date")


def _row_to_response(row: Task) -> TaskResponse:
    return TaskResponse(
        id=row.id,
        title=row.title,
        description=row.description,
        status=row.status,
        priority=row.priority,
        due_date=row.due_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def _get_owned_task(session: AsyncSession, task_id: int, user_id: int) -> Task:
    r = await session.execute(select(Task).where(Task.id == task_id, Task.user_id == user_id))
    task = r.scalar_one_or_none()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get(
    "",
    response_model=TaskListResponse,
    summary="List tasks",
    responses={401: {"description": "Not authenticated"}},
)
async def list_tasks(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
) -> TaskListResponse:
    """Tasks of the current user, newest first, optionally filtered by status and priority."""
    q = select(Task).where(Task.user_id == user.id)
    if status:
        q = q.where(Task.status == status)
    if priority:
        q = q.where(Task.priority == priority)
    r = await session.execute(q.order_by(Task.created_at.desc(), Task.id.desc()))
    tasks = [_row_to_response(t) for t in r.scalars().all()]
    return TaskListResponse(tasks=tasks, count=len(tasks))


@router.get(
    "/stats",
    response_model=TaskStatistics,
    summary="Task counts by status and priority",
    responses={401: {"description": "Not authenticated"}},
)
async def get_statistics(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> TaskStatistics:
    columns = [func.count(Task.id).label("total")]
    columns += [
        func.coalesce(func.sum(case((Task.status == s, 1), else_=0)), 0).label(f"status_{s}")
        for s in TASK_STATUSES
    ]
    columns += [
        func.coalesce(func.sum(case((Task.priority == p, 1), else_=0)), 0).label(f"priority_{p}")
        for p in TASK_PRIORITIES
    ]
    row = (await session.execute(select(*columns).where(Task.user_id == user.id))).one()
    return TaskStatistics(
        total=int(row.total or 0),
        by_status={s: int(getattr(row, f"status_{s}")) for s in TASK_STATUSES},
        by_priority={p: int(getattr(row, f"priority_{p}")) for p in TASK_PRIORITIES},
    )


@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    summary="Get task",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Task not found"}},
)
async def get_task(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    task_id: int,
) -> TaskResponse:
    return _row_to_response(await _get_owned_task(session, task_id, user.id))


@router.post(
    "",
    response_model=TaskResponse,
    status_code=201,
    summary="Create task",
    responses={401: {"description": "Not authenticated"}},
)
async def create_task(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    body: TaskCreate,
) -> TaskResponse:
    task = Task(
        user_id=user.id,
        title=body.title,
        description=body.description,
        status=body.status,
        priority=body.priority,
        due_date=body.due_date,
    )
    session.add(task)
    await session.flush()
    await log_action(session, user_id=user.id, action="create", resource="task", resource_id=task.id, request=request)
    await session.commit()
    await session.refresh(task)
    TASKS_BY_STATUS.labels(status=task.status).inc()
    logger.info("Task created task_id=%s user_id=%s", task.id, user.id)
    return _row_to_response(task)


@router.put(
    "/{task_id}",
    response_model=TaskResponse,
    summary="Update task",
    responses={
        400: {"description": "No valid fields to update"},
        401: {"description": "Not authenticated"},
        404: {"description": "Task not found"},
    },
)
async def update_task(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    task_id: int,
    body: TaskUpdate,
) -> TaskResponse:
    """Partial update: only fields present in the body are changed."""
    changes = body.model_dump(exclude_unset=True, include=set(_UPDATABLE_FIELDS))
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    if any(changes.get(f) is None for f in ("title", "status", "priority") if f in changes):
        raise HTTPException(status_code=400, detail="title, status and priority cannot be null")
    task = await _get_owned_task(session, task_id, user.id)
    old_status = task.status
    for name, value in changes.items():
        setattr(task, name, value)
    await log_action(
        session,
        user_id=user.id,
        action="update",
        resource="task",
        resource_id=task.id,
        details={"fields": sorted(changes)},
        request=request,
    )
    await session.commit()
    await session.refresh(task)
    if old_status != task.status:
        TASKS_BY_STATUS.labels(status=old_status).dec()
        TASKS_BY_STATUS.labels(status=task.status).inc()
    logger.info("Task updated task_id=%s user_id=%s", task.id, user.id)
    return _row_to_response(task)


@router.delete(
    "/{task_id}",
    response_model=MessageResponse,
    summary="Delete task",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Task not found"}},
)
async def delete_task(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    task_id: int,
) -> MessageResponse:
    task = await _get_owned_task(session, task_id, user.id)
    status = task.status
    await log_action(session, user_id=user.id, action="delete", resource="task", resource_id=task.id, request=request)
    await session.delete(task)
    await session.commit()
    TASKS_BY_STATUS.labels(status=status).dec()
    logger.info("Task deleted task_id=%s user_id=%s", task_id, user.id)
    return MessageResponse(message="Task deleted successfully")
