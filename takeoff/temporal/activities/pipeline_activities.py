"""Temporal activities wrapping the takeoff pipeline service.

Heavy imports happen inside the activity bodies so the workflow sandbox
never loads database or HTTP modules.
"""

import asyncio
from typing import Dict

from temporalio import activity

from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 20


async def _heartbeat_until_done(task: asyncio.Task, job_id: str) -> None:
    while not task.done():
        activity.heartbeat({"job_id": job_id})
        await asyncio.sleep(HEARTBEAT_INTERVAL_SECONDS)


@activity.defn
async def run_takeoff_pipeline(job_id: str, request: Dict) -> Dict:
    """
    Run ingestion, scoping, batch execution and merge for one job.

    Args:
        job_id: Existing takeoff job id (created by the API before the workflow starts)
        request: PipelineRequest as a JSON-compatible dict

    Returns:
        Dictionary with job_id, final status and the four result arrays
    """
    from takeoff.dependencies import get_pipeline_service
    from takeoff.models.takeoff_models import PipelineRequest

    activity.logger.info(f"Starting takeoff pipeline for job: {job_id}")

    service = get_pipeline_service()
    pipeline_request = PipelineRequest.model_validate(request)

    task = asyncio.create_task(service.start_pipeline(pipeline_request, job_id=job_id))
    heartbeat = asyncio.create_task(_heartbeat_until_done(task, job_id))
    try:
        result = await task
    finally:
        heartbeat.cancel()
        if not task.done():
            task.cancel()

    status = await service.get_job_status(job_id)
    activity.logger.info(
        f"Takeoff pipeline finished for job {job_id}: {status.status.value} "
        f"({status.completed_batches}/{status.total_batches} batches)"
    )
    return {
        "job_id": job_id,
        "status": status.status.value,
        "result": result.as_arrays(),
    }


@activity.defn
async def cancel_takeoff_job(job_id: str) -> Dict:
    """Flag a job as cancelled so no further batches are dispatched."""
    from takeoff.dependencies import get_pipeline_service

    status = await get_pipeline_service().cancel_job(job_id)
    activity.logger.info(f"Cancelled takeoff job {job_id}")
    return {"job_id": job_id, "status": status.status.value, "cancelled": status.cancelled}


@activity.defn
async def ingest_plan_activity(plan_id: str, source: str, page_batch_size: int = 5) -> Dict:
    """
    Ingest and persist one plan without running inference.

    Returns:
        IngestionSummary as a dict
    """
    from takeoff.dependencies import get_ingestion_engine

    activity.logger.info(f"Starting plan ingestion for plan: {plan_id}")
    summary = await get_ingestion_engine().ingest_plan(plan_id, source, page_batch_size=page_batch_size)
    activity.logger.info(f"Ingested plan {plan_id}: {summary.page_count} pages, {summary.chunk_count} chunks")
    return summary.model_dump(mode="json")
