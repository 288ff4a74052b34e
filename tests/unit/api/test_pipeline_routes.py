"""Tests for the takeoff pipeline API endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from temporalio.service import RPCError, RPCStatusCode

from takeoff.dependencies import get_ingestion_engine, get_pipeline_service
from takeoff.main import app
from takeoff.models.job_models import IngestionSummary
from takeoff.services.ingestion.ingestion_engine import IngestionEngine
from takeoff.services.takeoff.batch_orchestrator import BatchOrchestrator
from takeoff.services.takeoff.job_store import InMemoryJobStore
from takeoff.services.takeoff.pipeline_service import PipelineService
from takeoff.services.takeoff.scoping_planner import ScopingPlanner

PLAN_URL = "https://plans.example.com/house.pdf"


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def engine():
    engine = MagicMock(spec=IngestionEngine)
    engine.ingest_plan = AsyncMock()
    return engine


@pytest.fixture
def test_client(store, engine, llm_client_factory):
    service = PipelineService(
        ingestion_engine=engine,
        planner=ScopingPlanner(),
        orchestrator=BatchOrchestrator(job_store=store, clients=[llm_client_factory()]),
        job_store=store,
    )
    app.dependency_overrides[get_pipeline_service] = lambda: service
    app.dependency_overrides[get_ingestion_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def temporal_client():
    client = MagicMock()
    client.start_workflow = AsyncMock(return_value=MagicMock(id="takeoff-job-x"))
    handle = MagicMock()
    handle.signal = AsyncMock()
    client.get_workflow_handle.return_value = handle
    with patch("takeoff.api.routes.pipeline.get_temporal_client", new=AsyncMock(return_value=client)):
        yield client


class TestStartJob:

    def test_start_job_accepted(self, test_client, temporal_client, store):
        response = test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": [PLAN_URL]})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        kwargs = temporal_client.start_workflow.call_args.kwargs
        assert kwargs["id"] == f"takeoff-job-{data['job_id']}"
        assert kwargs["args"][0] == data["job_id"]
        assert kwargs["args"][1]["pdf_urls"] == [PLAN_URL]

    def test_duplicate_urls_rejected(self, test_client, temporal_client):
        response = test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": [PLAN_URL, PLAN_URL]})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "ValidationError"
        temporal_client.start_workflow.assert_not_awaited()

    def test_empty_url_list_rejected(self, test_client, temporal_client):
        response = test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": []})

        assert response.status_code == 422

    def test_workflow_start_failure_marks_job_failed(self, test_client, temporal_client, store):
        temporal_client.start_workflow.side_effect = RPCError("unavailable", RPCStatusCode.UNAVAILABLE, b"")

        response = test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": [PLAN_URL]})

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "WorkflowStartError"
        (job,) = store._jobs.values()
        assert job.status.value == "failed"


class TestJobQueries:

    def _start(self, test_client):
        response = test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": [PLAN_URL]})
        return response.json()["job_id"]

    def test_unknown_job_is_404(self, test_client):
        response = test_client.get("/api/v1/pipeline/jobs/missing/status")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "JobNotFoundError"

    def test_status_and_pending_result(self, test_client, temporal_client):
        job_id = self._start(test_client)

        status_response = test_client.get(f"/api/v1/pipeline/jobs/{job_id}/status")
        result_response = test_client.get(f"/api/v1/pipeline/jobs/{job_id}/result")

        assert status_response.status_code == 200
        assert status_response.json()["progress_percent"] == 0
        assert result_response.json()["ready"] is False
        assert result_response.json()["result"] is None

    def test_failed_job_result_has_error_shape(self, test_client, temporal_client, store):
        temporal_client.start_workflow.side_effect = RuntimeError("worker pool closed")
        test_client.post("/api/v1/pipeline/jobs", json={"pdf_urls": [PLAN_URL]})
        (job_id,) = store._jobs

        data = test_client.get(f"/api/v1/pipeline/jobs/{job_id}/result").json()

        assert data["ready"] is True
        assert data["result"][:3] == [[], [], []]
        assert data["result"][3] == [
            {"type": "error", "message": "Failed to start workflow: worker pool closed"}
        ]

    def test_cancel_signals_workflow(self, test_client, temporal_client):
        job_id = self._start(test_client)

        response = test_client.post(f"/api/v1/pipeline/jobs/{job_id}/cancel")

        assert response.status_code == 200
        assert response.json()["cancelled"] is True
        temporal_client.get_workflow_handle.assert_called_once_with(f"takeoff-job-{job_id}")
        temporal_client.get_workflow_handle.return_value.signal.assert_awaited_once()


class TestIngestPlan:

    def test_ingest_plan(self, test_client, engine):
        engine.ingest_plan.return_value = IngestionSummary(plan_id="plan-9", chunk_count=3, page_count=12)

        response = test_client.post("/api/v1/pipeline/plans/plan-9/ingest", json={"source": PLAN_URL})

        assert response.status_code == 200
        assert response.json() == {"plan_id": "plan-9", "chunk_count": 3, "page_count": 12, "warnings": []}
        engine.ingest_plan.assert_awaited_once_with("plan-9", PLAN_URL, page_batch_size=5)
