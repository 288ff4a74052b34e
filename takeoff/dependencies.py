"""Factories that wire pipeline components from settings.

The Temporal activities and the FastAPI routes both build their services
here, so collaborators are constructed once per process and injected.
"""

from functools import lru_cache
from typing import Annotated, Optional

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from takeoff.core.config import Settings, settings
from takeoff.core.unified_llm import create_consensus_clients, create_llm_client_from_settings
from takeoff.database.base import async_session_maker
from takeoff.repositories.ocr_repository import MistralOCRRepository
from takeoff.services.ingestion.chunker import PlanChunker
from takeoff.services.ingestion.extractor import PlanExtractor
from takeoff.services.ingestion.image_renderer import LocalPageImageStore, PageImageRenderer
from takeoff.services.ingestion.ingestion_engine import IngestionEngine
from takeoff.services.ingestion.ocr_extractor import OCRExtractor
from takeoff.services.ingestion.pdf_loader import PdfLoader
from takeoff.services.ingestion.sheet_indexer import SheetIndexer
from takeoff.services.ingestion.text_extractor import TextLayerExtractor
from takeoff.services.ingestion.token_counter import TokenCounter
from takeoff.services.takeoff.batch_orchestrator import BatchOrchestrator
from takeoff.services.takeoff.consensus import ConsensusEngine
from takeoff.services.takeoff.job_store import JobStore, SqlJobStore
from takeoff.services.takeoff.merger import ResultMerger
from takeoff.services.takeoff.pipeline_service import PipelineService
from takeoff.services.takeoff.scoping_planner import ScopingPlanner


def build_ingestion_engine(
    config: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> IngestionEngine:
    """Build an ingestion engine from settings.

    Mistral OCR is only wired when an API key is configured; otherwise the
    vision fallback (when enabled) is the only OCR path.
    """
    ingestion = config.ingestion
    renderer = PageImageRenderer(dpi=ingestion.image_dpi)

    ocr_repository = None
    if config.ocr.mistral_api_key:
        ocr_repository = MistralOCRRepository(
            api_key=config.ocr.mistral_api_key,
            api_url=config.ocr.mistral_api_url,
            model=config.ocr.mistral_model,
            timeout=config.ocr.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            http_client=http_client,
        )
    vision_client = None
    if config.ocr.enable_vision_fallback:
        vision_client = create_llm_client_from_settings(config, http_client=http_client)

    extractor = PlanExtractor(
        text_extractor=TextLayerExtractor(timeout_seconds=ingestion.extraction_timeout_seconds),
        ocr_extractor=OCRExtractor(
            ocr_repository=ocr_repository,
            vision_client=vision_client,
            renderer=renderer,
            min_text_chars=config.ocr.min_text_chars,
        ),
        image_store=LocalPageImageStore(ingestion.image_store_dir),
        renderer=renderer,
    )
    chunking = config.chunking
    chunker = PlanChunker(
        target_tokens=chunking.target_tokens,
        min_tokens=chunking.min_tokens,
        max_tokens=chunking.max_tokens,
        overlap_percentage=chunking.overlap_percentage,
        token_counter=TokenCounter(image_token_cost=chunking.image_token_cost),
    )
    return IngestionEngine(
        loader=PdfLoader(
            http_client=http_client,
            attempts=ingestion.download_attempts,
            retry_delays=ingestion.download_retry_delays,
            max_bytes=ingestion.max_download_bytes,
            timeout=config.http_timeout,
        ),
        extractor=extractor,
        indexer=SheetIndexer(),
        chunker=chunker,
        timeout_seconds=ingestion.ingestion_timeout_seconds,
        include_images=ingestion.include_images,
        session_maker=session_maker,
    )


def build_pipeline_service(
    config: Settings,
    job_store: JobStore,
    http_client: Optional[httpx.AsyncClient] = None,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> PipelineService:
    """Build a pipeline service over the given job store."""
    llm = config.llm
    merger = ResultMerger(
        consensus=ConsensusEngine(
            consensus_threshold=llm.consensus_threshold,
            similarity_threshold=llm.similarity_threshold,
            quantity_tolerance=llm.quantity_tolerance,
        )
    )
    orchestrator = BatchOrchestrator(
        job_store=job_store,
        clients=create_consensus_clients(config, http_client=http_client),
        merger=merger,
        token_counter=TokenCounter(image_token_cost=config.chunking.image_token_cost),
        image_store=LocalPageImageStore(config.ingestion.image_store_dir),
        batch_timeout_seconds=llm.batch_timeout_seconds,
        max_batch_retries=llm.max_batch_retries,
        retry_base_delay=float(config.retry_delay),
        max_output_tokens=llm.max_output_tokens,
        cost_per_token=llm.cost_per_token,
    )
    return PipelineService(
        ingestion_engine=build_ingestion_engine(config, http_client=http_client, session_maker=session_maker),
        planner=ScopingPlanner(llm_client=create_llm_client_from_settings(config, http_client=http_client)),
        orchestrator=orchestrator,
        job_store=job_store,
    )


@lru_cache
def get_pipeline_service() -> PipelineService:
    """Get the process-wide pipeline service backed by PostgreSQL."""
    return build_pipeline_service(
        settings,
        job_store=SqlJobStore(async_session_maker),
        session_maker=async_session_maker,
    )


@lru_cache
def get_ingestion_engine() -> IngestionEngine:
    """Get the process-wide ingestion engine that persists chunks and sheets."""
    return build_ingestion_engine(settings, session_maker=async_session_maker)


PipelineServiceDep = Annotated[PipelineService, Depends(get_pipeline_service)]
IngestionEngineDep = Annotated[IngestionEngine, Depends(get_ingestion_engine)]
