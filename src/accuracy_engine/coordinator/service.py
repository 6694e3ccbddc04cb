"""Single entry point that scores, aggregates and caches one message."""

import time
import uuid

import structlog

from accuracy_engine.assessment.aggregator import WeightedAggregator
from accuracy_engine.assessment.quality_gate import enforce_penalty
from accuracy_engine.cache.historical_context import HistoricalContextStore
from accuracy_engine.cache.realtime_cache import FastRealtimeCache
from accuracy_engine.coordinator.admission import AdmissionController
from accuracy_engine.coordinator.analyzers import AnalyzerSuite
from accuracy_engine.coordinator.idempotency import IdempotencyCache
from accuracy_engine.coordinator.inflight import InFlightRegistry
from accuracy_engine.coordinator.jobs import JobQueue, PersistenceJob
from accuracy_engine.exceptions import AnalyzerError, StoreError
from accuracy_engine.models.accuracy import AccuracySnapshot
from accuracy_engine.models.analysis import (
    AnalysisDepth,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisStatus,
    MessageAnalysis,
)

logger = structlog.get_logger()

GENERIC_ERROR_MESSAGE = "Analysis failed. Please try again."

# Confidence floor by analysis depth
DEPTH_CONFIDENCE = {
    AnalysisDepth.FULL: 90,
    AnalysisDepth.BASIC: 70,
}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestCoordinator:
    """Wraps the scoring pipeline with idempotency, de-duplication and admission control.

    Pipeline per admitted request: analyzers (or caller-submitted scores),
    quality gate, historical context read, weighted aggregation, historical
    context write, realtime cache update, then an optional persistence job.
    Every failure below this class becomes a response status; ``handle``
    never raises.

    Args:
        analyzers: Tier-gated analyzer fan-out.
        aggregator: Weighted aggregator.
        historical: Historical context store.
        cache: Fast realtime cache.
        idempotency: Response cache keyed by request id.
        admission: In-flight ceiling.
        job_queue: Durable persistence queue, if one is wired in.
    """

    def __init__(
        self,
        analyzers: AnalyzerSuite,
        aggregator: WeightedAggregator,
        historical: HistoricalContextStore,
        cache: FastRealtimeCache,
        idempotency: IdempotencyCache,
        admission: AdmissionController,
        job_queue: JobQueue | None = None,
    ):
        self.analyzers = analyzers
        self.aggregator = aggregator
        self.historical = historical
        self.cache = cache
        self.idempotency = idempotency
        self.admission = admission
        self.job_queue = job_queue
        self.inflight: InFlightRegistry[AnalysisResponse] = InFlightRegistry()

    async def handle(self, request: AnalysisRequest) -> AnalysisResponse:
        started = time.perf_counter()
        trace_id = uuid.uuid4().hex
        request_id = request.request_id or str(uuid.uuid4())
        log = logger.bind(trace_id=trace_id, request_id=request_id, user_id=request.user_id)

        if request.request_id:
            cached = await self.idempotency.get(request_id)
            if cached is not None:
                cached.processing_time_ms = _elapsed_ms(started)
                log.info("accuracy_request_replayed", processing_time_ms=cached.processing_time_ms)
                return cached

        if not self.admission.try_acquire():
            response = AnalysisResponse(
                status=AnalysisStatus.DEFERRED,
                request_id=request_id,
                trace_id=trace_id,
                analysis_depth=AnalysisDepth.ERROR,
                retry_after=self.admission.retry_after_seconds,
                processing_time_ms=_elapsed_ms(started),
            )
            log.warning(
                "accuracy_request_deferred",
                in_flight=self.admission.in_flight,
                retry_after=response.retry_after,
            )
            return response

        try:
            if request.user_id:
                response, joined = await self.inflight.run(
                    request.user_id,
                    lambda: self._process(request, request_id, trace_id, log),
                )
                if joined:
                    response = response.model_copy(
                        deep=True, update={"request_id": request_id, "trace_id": trace_id}
                    )
            else:
                response = await self._process(request, request_id, trace_id, log)
                joined = False
        finally:
            self.admission.release()

        response.processing_time_ms = _elapsed_ms(started)
        if response.status in (AnalysisStatus.SUCCESS, AnalysisStatus.PARTIAL):
            await self.idempotency.put(request_id, response)

        log.info(
            "accuracy_request_completed",
            status=response.status.value,
            processing_time_ms=response.processing_time_ms,
            in_flight=self.admission.in_flight,
            pending_users=len(self.inflight),
            analysis_depth=response.analysis_depth.value,
            confidence_score=response.confidence_score,
            joined=joined,
        )
        return response

    async def _process(
        self,
        request: AnalysisRequest,
        request_id: str,
        trace_id: str,
        log: structlog.stdlib.BoundLogger,
    ) -> AnalysisResponse:
        if request.scores is not None:
            analysis = self.analyzers.from_submitted(
                request.user_message, request.user_tier, request.scores, request.statistics
            )
        else:
            try:
                analysis = await self.analyzers.analyze(request.user_message, request.user_tier)
            except AnalyzerError as e:
                log.error("accuracy_analysis_failed", error=str(e))
                return self._error_response(request_id, trace_id)

        try:
            return await self._aggregate(request, request_id, trace_id, analysis, log)
        except Exception:
            log.exception("accuracy_pipeline_failed")
            return self._error_response(request_id, trace_id)

    async def _aggregate(
        self,
        request: AnalysisRequest,
        request_id: str,
        trace_id: str,
        analysis: MessageAnalysis,
        log: structlog.stdlib.BoundLogger,
    ) -> AnalysisResponse:
        gate = enforce_penalty(
            analysis.scores, request.user_message, request.language, analysis.statistics
        )
        feedback = dict(analysis.feedback)
        if gate.feedback:
            feedback["quality"] = " ".join(gate.feedback)
        analysis = analysis.model_copy(
            update={
                "scores": gate.scores,
                "statistics": gate.statistics,
                "errors": [*analysis.errors, *gate.errors],
                "feedback": feedback,
                "penalty_reason": gate.penalty_reason,
            }
        )
        base_confidence = DEPTH_CONFIDENCE[analysis.analysis_depth]

        if not request.user_id:
            return AnalysisResponse(
                status=AnalysisStatus.PARTIAL,
                request_id=request_id,
                trace_id=trace_id,
                message_analysis=analysis,
                confidence_score=base_confidence,
                analysis_depth=analysis.analysis_depth,
            )

        user_id = request.user_id
        previous, message_count, trend, history_readable = await self._load_history(user_id, log)

        result = self.aggregator.aggregate(
            analysis.scores,
            previous,
            message_count,
            trend,
            analysis.statistics.error_count,
        )
        if history_readable:
            await self.historical.record(user_id, result.weighted, message_count, result.trend)
        profile = await self.cache.apply_weighted(user_id, result.weighted)

        if request.persist and self.job_queue is not None:
            await self._enqueue(request_id, user_id, analysis.scores, result.weighted, profile, log)

        return AnalysisResponse(
            status=AnalysisStatus.SUCCESS,
            request_id=request_id,
            trace_id=trace_id,
            message_analysis=analysis,
            weighted_accuracy=result.weighted,
            aggregated=profile,
            weights=result.weights,
            trend=result.trend,
            confidence_score=max(base_confidence, profile.confidence_score),
            analysis_depth=analysis.analysis_depth,
        )

    async def _load_history(self, user_id: str, log: structlog.stdlib.BoundLogger):
        """Return ``(previous, message_count, trend, readable)`` for one aggregation.

        Without a historical context the cached profile stands in. When the
        durable read fails the call aggregates with no history and
        ``readable`` is False, so nothing is written back over the stored
        context.
        """
        try:
            context = await self.historical.fetch(user_id)
        except StoreError as e:
            log.warning("historical_context_unavailable", error=str(e))
            return None, 0, None, False
        if context is not None:
            return context.categories, context.message_count, context.trend, True

        profile = await self.cache.initialize_user(user_id)
        if profile.n_messages > 0:
            return profile.scores, profile.n_messages, None, True
        return None, 0, None, True

    async def _enqueue(self, request_id, user_id, message_scores, weighted, profile, log) -> None:
        job = PersistenceJob(
            request_id=request_id,
            user_id=user_id,
            message_scores=message_scores,
            weighted=weighted,
            aggregated=profile,
        )
        try:
            await self.job_queue.add(job, attempts=3, backoff_seconds=1.0)
        except Exception as e:
            log.error("persistence_enqueue_failed", error=str(e))

    def _error_response(self, request_id: str, trace_id: str) -> AnalysisResponse:
        return AnalysisResponse(
            status=AnalysisStatus.ERROR,
            request_id=request_id,
            trace_id=trace_id,
            message_analysis=MessageAnalysis(
                scores=AccuracySnapshot(),
                analysis_depth=AnalysisDepth.ERROR,
            ),
            analysis_depth=AnalysisDepth.ERROR,
            error_message=GENERIC_ERROR_MESSAGE,
        )
