"""Background launcher for job runs and approved remediations."""
from typing import Awaitable, Iterable, Optional, TYPE_CHECKING
import asyncio
import logging

if TYPE_CHECKING:
    from secureflow.services.orchestrator import JobOrchestrator
    from secureflow.services.remediation_service import RemediationWorkflow

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Runs coroutines as asyncio tasks on the current loop.

    References to running tasks are kept until they finish so they are not
    garbage collected mid-run, and so shutdown can wait for them.
    """

    def __init__(self, orchestrator: "JobOrchestrator", remediation: "RemediationWorkflow"):
        self._orchestrator = orchestrator
        self._remediation = remediation
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str) -> asyncio.Task:
        return self._spawn(self._orchestrator.run_job(job_id), f"job-{job_id}")

    def submit_remediation(self, job_id: str, approved_action_ids: Iterable[str]) -> asyncio.Task:
        return self._spawn(self._remediation.execute(job_id, list(approved_action_ids)), f"remediation-{job_id}")

    def _spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Task %s was cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error("Task %s failed: %s", task.get_name(), task.exception())

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for all in-flight tasks (used at shutdown and in tests)."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)
