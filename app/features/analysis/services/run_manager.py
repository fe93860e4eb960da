import asyncio
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from app.features.analysis.schemas.analysis import (
    AIProvider,
    AnalysisRunRequest,
    AnalysisRunSnapshot,
    OutcomeStatus,
    RunState,
    WorkerCredential,
    WorkerSummary,
)
from app.features.analysis.services.aggregator import ResultAggregator
from app.features.analysis.services.scheduler import CANCELLED_MESSAGE, AnalysisScheduler
from app.features.sitemap.services.sitemap_fetcher import SitemapFetcher
from app.features.sitemap.services.sitemap_parser import parse_sitemap, require_urls
from app.platform.config import settings
from app.platform.exceptions import ConfigurationError, RunNotFoundError
from app.platform.logger import get_logger

logger = get_logger(__name__)

MODEL_REQUIRED = (AIProvider.OPENROUTER, AIProvider.GROQ)
FAILED_MESSAGE = "Analysis run stopped unexpectedly before this URL was processed."


def validate_worker_pool(workers: Sequence[WorkerCredential]) -> tuple:
    """Reject unusable pools before anything is dispatched."""
    if not workers:
        raise ConfigurationError("At least one worker credential is required.")

    seen = set()
    for worker in workers:
        if worker.id in seen:
            raise ConfigurationError(f"Duplicate worker id: {worker.id}")
        seen.add(worker.id)

        if worker.provider == AIProvider.GEMINI:
            if not worker.secret() and not settings.GEMINI_API_KEY:
                raise ConfigurationError("GEMINI_API_KEY environment variable not set for Gemini.")
        elif not worker.secret():
            raise ConfigurationError(f"Please enter an API key for {worker.provider.value}.")

        if worker.provider in MODEL_REQUIRED and not (worker.model or "").strip():
            raise ConfigurationError(f"Please enter a model name for {worker.provider.value}.")

    return tuple(workers)


class AnalysisRun:
    def __init__(
        self,
        run_id: str,
        urls: List[str],
        workers: tuple,
        concurrency: int,
        scheduler: AnalysisScheduler,
    ):
        self.run_id = run_id
        self.urls = urls
        self.workers = workers
        self.concurrency = concurrency
        self.scheduler = scheduler
        self.aggregator = ResultAggregator(urls)
        self.state = RunState.RUNNING
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def is_finished(self) -> bool:
        return self.state != RunState.RUNNING

    def snapshot(self) -> AnalysisRunSnapshot:
        return AnalysisRunSnapshot(
            run_id=self.run_id,
            state=self.state,
            concurrency=self.concurrency,
            workers=[WorkerSummary(id=w.id, provider=w.provider, model=w.model) for w in self.workers],
            progress=self.aggregator.progress,
            succeeded=self.aggregator.count(OutcomeStatus.SUCCESS),
            failed=self.aggregator.count(OutcomeStatus.ERROR),
            results=self.aggregator.outcomes,
            created_at=self.created_at,
            finished_at=self.finished_at,
        )


class AnalysisRunManager:
    """
    In-memory registry of analysis runs.

    Starting a run validates the worker pool, resolves the URL list (explicit
    list, pasted XML or remote sitemap) and schedules the analysis as a
    background task on the running event loop. Finished runs are kept until
    `retention` newer runs have finished; nothing is persisted.
    """

    def __init__(
        self,
        retention: int = settings.RUN_RETENTION,
        scheduler_factory: Callable[..., AnalysisScheduler] = AnalysisScheduler,
        fetcher_factory: Callable[[], SitemapFetcher] = SitemapFetcher,
    ):
        self.retention = retention
        self._scheduler_factory = scheduler_factory
        self._fetcher_factory = fetcher_factory
        self._runs: "OrderedDict[str, AnalysisRun]" = OrderedDict()

    async def resolve_urls(self, request: AnalysisRunRequest) -> List[str]:
        if request.urls is not None:
            urls = [url.strip() for url in request.urls if url and url.strip()]
        elif request.sitemap_xml and request.sitemap_xml.strip():
            urls = parse_sitemap(request.sitemap_xml)
        elif request.sitemap_url is not None:
            xml = await self._fetcher_factory().fetch(str(request.sitemap_url))
            urls = parse_sitemap(xml)
        else:
            raise ConfigurationError("Please paste your sitemap XML content or fetch it from a URL.")
        return require_urls(urls)

    async def start_run(self, request: AnalysisRunRequest) -> AnalysisRun:
        workers = validate_worker_pool(request.workers)
        urls = await self.resolve_urls(request)

        scheduler = self._scheduler_factory(workers, concurrency=request.concurrency)
        run = AnalysisRun(
            run_id=uuid.uuid4().hex,
            urls=urls,
            workers=workers,
            concurrency=request.concurrency,
            scheduler=scheduler,
        )
        self._runs[run.run_id] = run
        self._prune()

        logger.info(
            f"Run {run.run_id}: {len(urls)} URLs, {len(workers)} worker(s) "
            f"[{', '.join(w.provider.value for w in workers)}], concurrency {request.concurrency}"
        )
        run.task = asyncio.create_task(self._execute(run))
        return run

    async def _execute(self, run: AnalysisRun) -> None:
        try:
            await run.scheduler.run(run.urls, run.aggregator)
            run.state = RunState.CANCELLED if run.scheduler.cancelled else RunState.COMPLETED
        except asyncio.CancelledError:
            run.state = RunState.CANCELLED
            raise
        except Exception as e:
            logger.exception(f"Run {run.run_id} crashed: {e}")
            run.state = RunState.FAILED
        finally:
            run.finished_at = datetime.now(timezone.utc)
            self._settle_pending(run)
            run.aggregator.close({"run_id": run.run_id, "state": run.state.value})
            logger.info(
                f"Run {run.run_id} {run.state.value}: "
                f"{run.aggregator.count(OutcomeStatus.SUCCESS)} succeeded, "
                f"{run.aggregator.count(OutcomeStatus.ERROR)} failed"
            )

    @staticmethod
    def _settle_pending(run: AnalysisRun) -> None:
        """Resolve slots a shutdown or crash left pending, so the final event has processed == total."""
        message = FAILED_MESSAGE if run.state == RunState.FAILED else CANCELLED_MESSAGE
        for outcome in run.aggregator.outcomes:
            if not outcome.is_terminal:
                run.aggregator.record_error(outcome.index, message)

    def get(self, run_id: str) -> AnalysisRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Analysis run {run_id} not found")
        return run

    def cancel(self, run_id: str) -> AnalysisRun:
        run = self.get(run_id)
        if not run.is_finished:
            logger.info(f"Run {run_id}: cancellation requested")
            run.scheduler.cancel()
        return run

    def _prune(self) -> None:
        finished = [run_id for run_id, run in self._runs.items() if run.is_finished]
        for run_id in finished[: max(0, len(finished) - self.retention)]:
            del self._runs[run_id]

    async def shutdown(self) -> None:
        tasks = [run.task for run in self._runs.values() if run.task and not run.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


run_manager = AnalysisRunManager()


def get_run_manager() -> AnalysisRunManager:
    return run_manager
