"""Audit trail for auth events (register, login, logout, refresh) and task mutations."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.models.audit_log import AuditLog


def _request_ip(request: Request | None) -> str | None:
    if request is None or request.client is None:
        return None
    return request.client.host


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: str,
    resource: str,
    resource_id: str | int | None = None,
    details: dict | None = None,
    request: Request | None = None,
) -> None:
    """Add an audit row in the caller's transaction. Never pass tokens or passwords in details."""
    session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            ip_address=_request_ip(request),
        )
    )
    await session.flush()
