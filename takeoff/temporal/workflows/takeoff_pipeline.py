"""Takeoff pipeline workflow.

This workflow runs the whole pipeline as one long activity and uses
activity string names to avoid importing non-deterministic modules.
Cancellation is cooperative: the ``cancel`` signal flags the job record and
the running activity stops dispatching batches and finalizes as partial.
"""

from datetime import timedelta
from typing import Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy


@workflow.defn
class TakeoffPipelineWorkflow:
    """Workflow for one takeoff job."""

    def __init__(self):
        self._job_id: Optional[str] = None
        self._status = "queued"
        self._cancel_requested = False
        self._cancel_sent = False

    @workflow.run
    async def run(self, job_id: str, request: Dict) -> Dict:
        """
        Run the takeoff pipeline for an existing job record.

        Args:
            job_id: Takeoff job id
            request: PipelineRequest as a JSON-compatible dict

        Returns:
            Dictionary with job_id, final status and the four result arrays
        """
        self._job_id = job_id
        self._status = "running"
        workflow.logger.info(f"Starting takeoff pipeline workflow for job {job_id}")

        handle = workflow.start_activity(
            "run_takeoff_pipeline",
            args=[job_id, request],
            start_to_close_timeout=timedelta(hours=2),
            heartbeat_timeout=timedelta(minutes=2),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )

        await workflow.wait_condition(lambda: self._cancel_requested or handle.done())
        if self._cancel_requested and not handle.done():
            await self._send_cancel(job_id)

        try:
            outcome = await handle
        except Exception:
            self._status = "failed"
            raise

        self._status = outcome.get("status", "complete")
        workflow.logger.info(f"Takeoff pipeline workflow finished for job {job_id}: {self._status}")
        return outcome

    async def _send_cancel(self, job_id: str) -> None:
        if self._cancel_sent:
            return
        self._cancel_sent = True
        self._status = "cancelling"
        await workflow.execute_activity(
            "cancel_takeoff_job",
            job_id,
            start_to_close_timeout=timedelta(seconds=30),
            retry_policy=RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
            ),
        )

    @workflow.signal
    def cancel(self) -> None:
        self._cancel_requested = True

    @workflow.query
    def get_status(self) -> Dict:
        return {
            "job_id": self._job_id,
            "status": self._status,
            "cancel_requested": self._cancel_requested,
        }


@workflow.defn
class PlanIngestionWorkflow:
    """Ingestion-only workflow: ingest and persist one plan."""

    @workflow.run
    async def run(self, plan_id: str, source: str, page_batch_size: int = 5) -> Dict:
        workflow.logger.info(f"Starting plan ingestion workflow for plan {plan_id}")
        return await workflow.execute_activity(
            "ingest_plan_activity",
            args=[plan_id, source, page_batch_size],
            start_to_close_timeout=timedelta(minutes=25),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
