"""Keep the tasks_by_status gauge in line with the database."""

import logging

from sqlalchemy import func, select

from taskflow.core.metrics import TASKS_BY_STATUS
from taskflow.db.session import async_session_maker
from taskflow.models.task import TASK_STATUSES, Task

logger = logging.getLogger(__name__)


async def sync_task_metrics() -> dict[str, int]:
    """Set the gauge from a grouped count. Returns the counts per status."""
    async with async_session_maker() as session:
        r = await session.execute(select(Task.status, func.count(Task.id)).group_by(Task.status))
        found = {status: int(count) for status, count in r.all()}
    counts = {s: found.get(s, 0) for s in TASK_STATUSES}
    for status, count in counts.items():
        TASKS_BY_STATUS.labels(status=status).set(count)
    logger.info("Task metrics synced counts=%s", counts)
    return counts
