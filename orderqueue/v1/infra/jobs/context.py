"""
Runtime context handed to job handlers.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.v1.core.exceptions import JobCancelledError
from orderqueue.v1.infra.jobs.models import JobLogLevel, JobStatus
from orderqueue.v1.infra.jobs.service import JobService


@dataclass
class JobContext:
    """Identity of the running job plus hooks back into the job store."""

    job_id: str
    job_type: str
    user_id: str
    team_id: str | None
    attempt: int
    max_attempts: int
    service: JobService
    session: AsyncSession

    async def log(
        self,
        level: JobLogLevel | str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return await self.service.append_log(
            self.session, self.job_id, level, message, details
        )

    async def heartbeat(self) -> None:
        await self.service.touch_heartbeat(self.session, self.job_id)

    async def check_cancelled(self) -> None:
        """Raise JobCancelledError once the row has left ``processing``."""
        status = await self.service.get_status(self.session, self.job_id)
        if status != JobStatus.PROCESSING.value:
            raise JobCancelledError(self.job_id, status)
