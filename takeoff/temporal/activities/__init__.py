from .pipeline_activities import cancel_takeoff_job, ingest_plan_activity, run_takeoff_pipeline

__all__ = [
    "cancel_takeoff_job",
    "ingest_plan_activity",
    "run_takeoff_pipeline",
]
