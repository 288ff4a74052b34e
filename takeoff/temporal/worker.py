"""Temporal worker service for takeoff jobs.

This worker:
- Connects to the configured Temporal server
- Registers the takeoff workflows and activities
- Polls the configured task queue
"""

import asyncio

from temporalio.client import Client
from temporalio.worker import Worker

from takeoff.core.config import settings
from takeoff.temporal.activities.pipeline_activities import (
    cancel_takeoff_job,
    ingest_plan_activity,
    run_takeoff_pipeline,
)
from takeoff.temporal.workflows.takeoff_pipeline import PlanIngestionWorkflow, TakeoffPipelineWorkflow
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

MAX_CONCURRENT_ACTIVITIES = 5
MAX_CONCURRENT_WORKFLOW_TASKS = 10


def build_worker(client: Client) -> Worker:
    return Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[TakeoffPipelineWorkflow, PlanIngestionWorkflow],
        activities=[run_takeoff_pipeline, cancel_takeoff_job, ingest_plan_activity],
        max_concurrent_activities=MAX_CONCURRENT_ACTIVITIES,
        max_concurrent_workflow_tasks=MAX_CONCURRENT_WORKFLOW_TASKS,
    )


async def main():
    """Start the Temporal worker."""
    temporal_host = f"{settings.temporal_host}:{settings.temporal_port}"
    LOGGER.info(f"Connecting to Temporal server at {temporal_host}")

    client = await Client.connect(temporal_host, namespace=settings.temporal_namespace)
    worker = build_worker(client)

    LOGGER.info(
        "Temporal worker started",
        extra={
            "task_queue": settings.temporal_task_queue,
            "max_concurrent_activities": MAX_CONCURRENT_ACTIVITIES,
            "max_concurrent_workflow_tasks": MAX_CONCURRENT_WORKFLOW_TASKS,
        }
    )
    await worker.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        LOGGER.info("Worker stopped by user")
