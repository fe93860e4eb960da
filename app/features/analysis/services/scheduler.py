import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Sequence

from app.features.analysis.schemas.analysis import WorkerCredential
from app.features.analysis.services.aggregator import ResultAggregator
from app.features.analysis.services.providers import ProviderAdapter, build_adapter
from app.features.analysis.services.retry import RetryPolicy
from app.platform.config import settings
from app.platform.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Analysis was cancelled before this URL was processed."


@dataclass(frozen=True)
class AnalysisTask:
    url: str
    index: int


class AnalysisScheduler:
    """
    Runs every URL through a provider adapter with bounded concurrency.

    `concurrency` lanes share one deque of tasks. A lane pops the next task,
    takes the next worker credential in round-robin order, runs the adapter
    under the retry policy and writes exactly one terminal outcome into the
    aggregator. Lanes stop when the deque is empty or the run is cancelled.

    Everything runs on one event loop: `deque.popleft()` is never interleaved
    with another lane and the aggregator needs no lock.
    """

    def __init__(
        self,
        workers: Sequence[WorkerCredential],
        concurrency: int = settings.ANALYSIS_DEFAULT_CONCURRENCY,
        retry_policy: Optional[RetryPolicy] = None,
        adapter_factory: Callable[[WorkerCredential], ProviderAdapter] = build_adapter,
    ):
        if not workers:
            raise ConfigurationError("At least one worker credential is required.")
        if not 1 <= concurrency <= settings.ANALYSIS_MAX_CONCURRENCY:
            raise ConfigurationError(
                f"Concurrency must be between 1 and {settings.ANALYSIS_MAX_CONCURRENCY}."
            )
        # Snapshot: the pool cannot change under a running analysis
        self.workers = tuple(workers)
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self._adapter_factory = adapter_factory
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._dispatched = 0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop handing out new tasks; in-flight calls finish or time out on their own."""
        self._cancelled = True

    def _next_worker(self) -> WorkerCredential:
        worker = self.workers[self._dispatched % len(self.workers)]
        self._dispatched += 1
        return worker

    def _get_adapter(self, worker: WorkerCredential) -> ProviderAdapter:
        adapter = self._adapters.get(worker.id)
        if adapter is None:
            adapter = self._adapter_factory(worker)
            self._adapters[worker.id] = adapter
        return adapter

    async def run(self, urls: Sequence[str], aggregator: Optional[ResultAggregator] = None) -> ResultAggregator:
        aggregator = aggregator or ResultAggregator(urls)
        queue: Deque[AnalysisTask] = deque(AnalysisTask(url=url, index=i) for i, url in enumerate(urls))
        if not queue:
            return aggregator

        lanes = min(self.concurrency, len(queue))
        logger.info(
            f"Dispatching {len(queue)} URLs across {lanes} lanes and {len(self.workers)} worker(s)"
        )
        try:
            await asyncio.gather(*(self._lane(lane_id, queue, aggregator) for lane_id in range(lanes)))
        finally:
            await self._close_adapters()

        # Only reachable with leftovers after cancel()
        while queue:
            task = queue.popleft()
            aggregator.record_error(task.index, CANCELLED_MESSAGE)

        logger.info(
            f"Run finished: {aggregator.processed}/{aggregator.total} processed"
            + (" (cancelled)" if self._cancelled else "")
        )
        return aggregator

    async def _lane(self, lane_id: int, queue: Deque[AnalysisTask], aggregator: ResultAggregator) -> None:
        while queue and not self._cancelled:
            task = queue.popleft()
            worker = self._next_worker()
            logger.debug(f"Lane {lane_id} took #{task.index} {task.url} -> worker {worker.id}")
            await self._process(task, worker, aggregator)

    async def _process(self, task: AnalysisTask, worker: WorkerCredential, aggregator: ResultAggregator) -> None:
        description = f"{task.url} ({worker.provider.value}/{worker.id})"
        try:
            adapter = self._get_adapter(worker)
        except Exception as e:
            # Bad worker config fails its tasks, not the run
            logger.error(f"Cannot build adapter for worker {worker.id}: {e}")
            aggregator.record_error(task.index, str(e), worker=worker, attempts=0)
            return

        report = await self.retry_policy.run(lambda: adapter.analyze(task.url), description=description)
        if report.ok:
            aggregator.record_success(task.index, report.value, worker=worker, attempts=report.attempts)
        else:
            logger.error(f"Error analyzing URL {task.url} with {worker.provider.value} after all retries: {report.failure.message}")
            aggregator.record_error(task.index, report.failure.message, worker=worker, attempts=report.attempts)

    async def _close_adapters(self) -> None:
        for adapter in self._adapters.values():
            try:
                await adapter.aclose()
            except Exception as e:
                logger.warning(f"Failed to close adapter for {adapter.provider.value}: {e}")
        self._adapters.clear()
