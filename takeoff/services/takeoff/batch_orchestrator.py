"""Batch orchestrator: run every (segment, chunk) batch of a job.

Batches are dispatched under an ``asyncio.Semaphore`` so at most
``max_parallel_batches`` inference calls are in flight; the rest queue.
Each batch outcome is written through the JobStore, which counts it against
the job atomically. Once every batch is terminal the results are merged and
the job is finalized as ``complete`` (all batches completed) or ``partial``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from takeoff.core.exceptions import APIClientError, BatchTimeoutError
from takeoff.core.unified_llm import UnifiedLLMClient
from takeoff.models.chunk_models import Chunk
from takeoff.models.job_models import (
    BatchError,
    BatchOutcome,
    BatchRecord,
    BatchStatus,
    JobMetrics,
    JobRecord,
    JobResultView,
    JobStatus,
    JobStatusView,
    ProviderOutput,
)
from takeoff.models.takeoff_models import (
    PipelineRequest,
    PipelineResult,
    RunLogEntry,
    ScopingPlan,
    SegmentPlan,
)
from takeoff.services.ingestion.image_renderer import PageImageStore
from takeoff.services.ingestion.token_counter import TokenCounter
from takeoff.services.takeoff.job_store import BatchSpec, JobStore
from takeoff.services.takeoff.merger import MergeStats, ResultMerger
from takeoff.services.takeoff.prompt_builder import (
    EXECUTION_SYSTEM_PROMPT,
    build_execution_prompt,
    execution_generation_config,
)
from takeoff.services.takeoff.response_parser import Unparsed, decode_batch_payload
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class _ProviderAttempt:
    provider: str
    output: Optional[ProviderOutput] = None
    metrics: Optional[JobMetrics] = None
    error: Optional[BatchError] = None


@dataclass
class _JobContext:
    request: PipelineRequest
    segments: List[SegmentPlan]
    chunks: Dict[str, Chunk]
    questions: List[str]
    run_log: List[RunLogEntry]


class BatchOrchestrator:
    """Schedules, executes and finalizes the batches of takeoff jobs."""

    def __init__(
        self,
        job_store: JobStore,
        clients: Sequence[UnifiedLLMClient],
        merger: Optional[ResultMerger] = None,
        token_counter: Optional[TokenCounter] = None,
        image_store: Optional[PageImageStore] = None,
        batch_timeout_seconds: float = 120,
        max_batch_retries: int = 2,
        retry_base_delay: float = 1.0,
        max_output_tokens: int = 4096,
        cost_per_token: Optional[Dict[str, float]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            job_store: Job/batch persistence
            clients: Inference clients; more than one enables consensus mode
            merger: Result merger
            token_counter: Token estimator used for batch metrics
            image_store: Page image store, read when chunks carry images
            batch_timeout_seconds: Time limit for a single inference call
            max_batch_retries: Retries of transient API errors per provider
            retry_base_delay: Base delay of the exponential retry backoff
            max_output_tokens: Output token limit per call
            cost_per_token: USD per token keyed by model family
        """
        if not clients:
            raise ValueError("At least one inference client is required")
        self.job_store = job_store
        self.clients = list(clients)
        self.merger = merger or ResultMerger()
        self.token_counter = token_counter or TokenCounter()
        self.image_store = image_store
        self.batch_timeout_seconds = batch_timeout_seconds
        self.max_batch_retries = max_batch_retries
        self.retry_base_delay = retry_base_delay
        self.max_output_tokens = max_output_tokens
        self.cost_per_token = cost_per_token or {}
        self._contexts: Dict[str, _JobContext] = {}

    async def run_job(
        self,
        job_id: str,
        request: PipelineRequest,
        plan: ScopingPlan,
        chunks: List[Chunk],
        run_log: Optional[List[RunLogEntry]] = None,
    ) -> JobRecord:
        """Create the job's batches, run them and finalize the job.

        Args:
            job_id: Job created through the job store
            request: Pipeline request
            plan: Scoping plan
            chunks: Chunks of every PDF of the request
            run_log: Entries from earlier stages, placed ahead of the merge log
        """
        registry = {chunk.chunk_id: chunk for chunk in chunks}
        self._contexts[job_id] = _JobContext(
            request=request,
            segments=list(plan.segments),
            chunks=registry,
            questions=list(plan.questions),
            run_log=list(run_log or []),
        )

        specs = [
            BatchSpec(
                segment_industry=segment.industry,
                segment_priority=segment.priority,
                chunk_ids=[chunk_id],
            )
            for segment in plan.segments
            for chunk_id in segment.chunk_ids
            if chunk_id in registry
        ]
        if not specs:
            self._contexts.pop(job_id, None)
            return await self.job_store.mark_failed(job_id, "No batches to run: no chunks were assigned")

        batches = await self.job_store.start_job(job_id, specs)
        segments = {segment.industry: segment for segment in plan.segments}

        LOGGER.info(
            f"Dispatching {len(batches)} batches for job {job_id}",
            extra={
                "job_id": job_id,
                "segments": len(plan.segments),
                "max_parallel_batches": request.max_parallel_batches,
                "providers": [client.name for client in self.clients],
            }
        )

        semaphore = asyncio.Semaphore(request.max_parallel_batches)
        await asyncio.gather(*(
            self._run_batch(job_id, batch, segments[batch.segment_industry], registry, request, semaphore)
            for batch in batches
        ))

        return await self.finalize_job(job_id)

    async def _run_batch(
        self,
        job_id: str,
        batch: BatchRecord,
        segment: SegmentPlan,
        chunks: Dict[str, Chunk],
        request: PipelineRequest,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            job = await self.job_store.get_job(job_id)
            if job.cancelled:
                await self.job_store.record_batch_outcome(job_id, _cancelled_outcome(batch.id, "not dispatched"))
                return

            await self.job_store.mark_batch_processing(job_id, batch.id)
            outcome = await self.execute_batch(batch, segment, [chunks[c] for c in batch.chunk_ids], request)

            job = await self.job_store.get_job(job_id)
            if job.cancelled:
                LOGGER.info(
                    f"Discarding result of batch {batch.id}: job cancelled",
                    extra={"job_id": job_id, "batch_id": batch.id}
                )
                outcome = _cancelled_outcome(batch.id, "discarded after cancellation")

            updated = await self.job_store.record_batch_outcome(job_id, outcome)
            LOGGER.info(
                f"Batch {batch.id} {outcome.status.value} "
                f"({updated.completed_batches}/{updated.total_batches})",
                extra={
                    "job_id": job_id,
                    "batch_id": batch.id,
                    "segment": batch.segment_industry,
                    "progress_percent": updated.progress_percent,
                    "error_type": outcome.error.error_type if outcome.error else None,
                }
            )

    async def execute_batch(
        self,
        batch: BatchRecord,
        segment: SegmentPlan,
        chunks: List[Chunk],
        request: PipelineRequest,
    ) -> BatchOutcome:
        """Run one batch against every provider concurrently.

        The batch completes when at least one provider returned a recognized
        payload; otherwise it fails with the first provider's error.
        """
        chunk = chunks[0]
        prompt = build_execution_prompt(
            chunk,
            segment,
            request.job_context,
            currency=request.currency,
            unit_cost_policy=request.unit_cost_policy,
        )
        contents = await self._contents(prompt, chunk)

        attempts = await asyncio.gather(*(
            self._call_provider(client, contents, prompt, batch, segment, chunk)
            for client in self.clients
        ))

        outputs = [a.output for a in attempts if a.output is not None]
        metrics = JobMetrics()
        for attempt in attempts:
            if attempt.metrics is not None:
                metrics = metrics + attempt.metrics

        if outputs:
            return BatchOutcome(batch_id=batch.id, status=BatchStatus.COMPLETED, metrics=metrics, outputs=outputs)

        error = next(a.error for a in attempts if a.error is not None)
        return BatchOutcome(batch_id=batch.id, status=BatchStatus.FAILED, metrics=metrics, error=error)

    async def _contents(self, prompt: str, chunk: Chunk) -> Union[str, List[Any]]:
        if not chunk.content.image_urls or self.image_store is None:
            return prompt
        parts: List[Any] = [prompt]
        for ref in chunk.content.image_urls:
            parts.append({"image_bytes": await self.image_store.get(ref), "mime_type": "image/png"})
        return parts

    async def _call_provider(
        self,
        client: UnifiedLLMClient,
        contents: Union[str, List[Any]],
        prompt: str,
        batch: BatchRecord,
        segment: SegmentPlan,
        chunk: Chunk,
    ) -> _ProviderAttempt:
        provider = client.name
        attempt = 0
        while True:
            try:
                raw = await asyncio.wait_for(
                    client.generate_content(
                        contents=contents,
                        system_instruction=EXECUTION_SYSTEM_PROMPT,
                        generation_config=execution_generation_config(self.max_output_tokens),
                    ),
                    timeout=self.batch_timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = BatchTimeoutError(
                    f"Batch {batch.id} timed out after {self.batch_timeout_seconds}s on {provider}"
                )
                LOGGER.warning(error.message, extra={"batch_id": batch.id, "provider": provider})
                return _ProviderAttempt(
                    provider=provider,
                    error=BatchError(error_type=error.error_type, message=error.message),
                )
            except APIClientError as e:
                if e.retryable and attempt < self.max_batch_retries:
                    delay = self.retry_base_delay * (2 ** attempt)
                    LOGGER.warning(
                        f"Transient error on {provider} for batch {batch.id}, retrying in {delay}s: {e.message}",
                        extra={"batch_id": batch.id, "attempt": attempt + 1}
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                LOGGER.error(
                    f"Provider {provider} failed for batch {batch.id}: {e.message}",
                    extra={"batch_id": batch.id, "attempts": attempt + 1}
                )
                return _ProviderAttempt(provider=provider, error=BatchError(error_type="api_error", message=e.message))

            metrics = self._metrics(client, prompt, raw, chunk)
            decoded = decode_batch_payload(raw)
            if isinstance(decoded, Unparsed):
                LOGGER.warning(
                    f"Unrecognized reply from {provider} for batch {batch.id}: {decoded.reason}",
                    extra={"batch_id": batch.id, "raw_preview": decoded.raw_text[:200]}
                )
                return _ProviderAttempt(
                    provider=provider,
                    metrics=metrics,
                    error=BatchError(error_type="unparsed_response", message=decoded.reason),
                )

            if decoded.dropped:
                LOGGER.info(
                    f"Dropped {decoded.dropped} invalid entries from {provider} for batch {batch.id}",
                    extra={"batch_id": batch.id}
                )

            provenance = {
                "source_chunk_id": chunk.chunk_id,
                "source_chunk_index": chunk.chunk_index,
                "batch_id": batch.id,
                "provider": provider,
                "segment_industry": segment.industry,
            }
            output = ProviderOutput(
                provider=provider,
                items=[item.model_copy(update=provenance) for item in decoded.payload.items],
                analysis=[
                    entry.model_copy(update={
                        "source_chunk_index": chunk.chunk_index,
                        "segment_industry": segment.industry,
                    })
                    for entry in decoded.payload.analysis
                ],
            )
            return _ProviderAttempt(provider=provider, output=output, metrics=metrics)

    def _metrics(self, client: UnifiedLLMClient, prompt: str, raw: str, chunk: Chunk) -> JobMetrics:
        input_tokens = self.token_counter.count_tokens(EXECUTION_SYSTEM_PROMPT + prompt)
        if self.image_store is not None:
            input_tokens += self.token_counter.image_token_cost * len(chunk.content.image_urls)
        output_tokens = self.token_counter.count_tokens(raw)
        total = input_tokens + output_tokens
        return JobMetrics(
            cost=round(total * self.cost_per_token.get(client.model_family, 0.0), 6),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total,
        )

    async def finalize_job(self, job_id: str) -> JobRecord:
        """Merge the job's batches and record the final state."""
        job = await self.job_store.get_job(job_id)
        batches = await self.job_store.get_batches(job_id)
        result, _ = self.merge(job, batches)
        self._contexts.pop(job_id, None)

        metrics = JobMetrics()
        for batch in batches:
            if batch.status == BatchStatus.COMPLETED:
                metrics = metrics + batch.metrics

        all_completed = bool(batches) and all(b.status == BatchStatus.COMPLETED for b in batches)
        if all_completed and not job.cancelled:
            return await self.job_store.finalize_job(job_id, JobStatus.COMPLETE, metrics, final_result=result)
        return await self.job_store.finalize_job(job_id, JobStatus.PARTIAL, metrics, partial_result=result)

    def merge(self, job: JobRecord, batches: List[BatchRecord]) -> Tuple[PipelineResult, MergeStats]:
        context = self._contexts.get(job.id)
        if context is None:
            segments = _segments_from_batches(batches)
            return self.merger.merge(batches, segments, cancelled=job.cancelled)
        result, stats = self.merger.merge(
            batches,
            context.segments,
            chunks=context.chunks,
            pdf_urls=context.request.pdf_urls,
            questions=context.questions,
            cancelled=job.cancelled,
        )
        if not job.cancelled:
            result = result.model_copy(update={"run_log": context.run_log + result.run_log})
        return result, stats

    async def merge_job_results(self, job_id: str) -> PipelineResult:
        """Merge the job's terminal batches. Safe to call repeatedly.

        Once the job is finalized the stored result is returned, so every
        later call sees the same arrays whichever process asks.
        """
        job = await self.job_store.get_job(job_id)
        if job.completed_at is not None:
            stored = job.final_result if job.status == JobStatus.COMPLETE else job.partial_result
            if stored is not None:
                return stored
        batches = await self.job_store.get_batches(job_id)
        result, _ = self.merge(job, batches)
        return result

    async def get_job_status(self, job_id: str) -> JobStatusView:
        job = await self.job_store.get_job(job_id)
        batches = await self.job_store.get_batches(job_id)
        return JobStatusView(
            job_id=job.id,
            status=job.status,
            cancelled=job.cancelled,
            total_batches=job.total_batches,
            completed_batches=job.completed_batches,
            failed_batches=sum(1 for b in batches if b.status == BatchStatus.FAILED),
            progress_percent=job.progress_percent,
            metrics=job.metrics,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error=job.error,
        )

    async def get_job_result(self, job_id: str) -> JobResultView:
        job = await self.job_store.get_job(job_id)
        if job.status in (JobStatus.COMPLETE, JobStatus.PARTIAL) and job.completed_at is not None:
            result = job.final_result if job.status == JobStatus.COMPLETE else job.partial_result
            if result is None:
                result = await self.merge_job_results(job_id)
            return JobResultView(
                job_id=job.id,
                status=job.status,
                ready=True,
                progress_percent=job.progress_percent,
                result=result.as_arrays(),
            )
        if job.status == JobStatus.FAILED:
            return JobResultView(
                job_id=job.id,
                status=job.status,
                ready=True,
                progress_percent=job.progress_percent,
                result=PipelineResult.failure(job.error or "Job failed").as_arrays(),
                message=job.error,
            )
        return JobResultView(
            job_id=job.id,
            status=job.status,
            ready=False,
            progress_percent=job.progress_percent,
            message="Job is still processing",
        )

    async def cancel_job(self, job_id: str) -> JobRecord:
        """Stop dispatching new batches; in-flight results are discarded."""
        job = await self.job_store.cancel_job(job_id)
        LOGGER.info(f"Job {job_id} cancelled", extra={"job_id": job_id})
        return job


def _cancelled_outcome(batch_id: str, reason: str) -> BatchOutcome:
    return BatchOutcome(
        batch_id=batch_id,
        status=BatchStatus.FAILED,
        error=BatchError(error_type="cancelled", message=f"Job cancelled; batch {reason}"),
    )


def _segments_from_batches(batches: List[BatchRecord]) -> List[SegmentPlan]:
    segments: Dict[str, SegmentPlan] = {}
    for batch in sorted(batches, key=lambda b: (b.segment_priority, b.id)):
        segment = segments.setdefault(
            batch.segment_industry,
            SegmentPlan(industry=batch.segment_industry, priority=batch.segment_priority),
        )
        segment.chunk_ids.extend(c for c in batch.chunk_ids if c not in segment.chunk_ids)
    return list(segments.values())
