from .takeoff_pipeline import PlanIngestionWorkflow, TakeoffPipelineWorkflow

__all__ = [
    "PlanIngestionWorkflow",
    "TakeoffPipelineWorkflow",
]
