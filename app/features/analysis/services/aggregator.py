import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from app.features.analysis.schemas.analysis import (
    AnalysisOutcome,
    AnalysisResultData,
    OutcomeStatus,
    Progress,
    WorkerCredential,
)

logger = logging.getLogger(__name__)

# (event name, JSON-serialisable payload)
Event = Tuple[str, Dict[str, Any]]


class ResultAggregator:
    """
    Ordered outcome-by-index view of one run plus its progress counter.

    Every slot starts as pending and is resolved exactly once. Each
    resolution bumps `processed` and is broadcast to subscribers
    (the SSE endpoint) as a "result" event.
    """

    def __init__(self, urls: Sequence[str]):
        self._outcomes: List[AnalysisOutcome] = [
            AnalysisOutcome(index=i, url=url) for i, url in enumerate(urls)
        ]
        self._processed = 0
        self._subscribers: Set[asyncio.Queue] = set()
        self._closed_event: Optional[Event] = None

    @property
    def total(self) -> int:
        return len(self._outcomes)

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def progress(self) -> Progress:
        return Progress(processed=self._processed, total=self.total)

    @property
    def outcomes(self) -> List[AnalysisOutcome]:
        return list(self._outcomes)

    @property
    def is_closed(self) -> bool:
        return self._closed_event is not None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self._outcomes if outcome.status == status)

    def record_success(
        self,
        index: int,
        data: AnalysisResultData,
        worker: Optional[WorkerCredential] = None,
        attempts: int = 1,
    ) -> AnalysisOutcome:
        return self._resolve(index, OutcomeStatus.SUCCESS, data=data, worker=worker, attempts=attempts)

    def record_error(
        self,
        index: int,
        message: str,
        worker: Optional[WorkerCredential] = None,
        attempts: int = 0,
    ) -> AnalysisOutcome:
        return self._resolve(index, OutcomeStatus.ERROR, error=message, worker=worker, attempts=attempts)

    def _resolve(self, index, status, data=None, error=None, worker=None, attempts=0) -> AnalysisOutcome:
        current = self._outcomes[index]
        if current.is_terminal:
            raise RuntimeError(f"Outcome {index} ({current.url}) is already {current.status.value}")

        outcome = current.model_copy(
            update={
                "status": status,
                "data": data,
                "error": error,
                "worker_id": worker.id if worker else None,
                "provider": worker.provider if worker else None,
                "attempts": attempts,
            }
        )
        self._outcomes[index] = outcome
        self._processed += 1

        self._publish(
            (
                "result",
                {
                    "outcome": outcome.model_dump(mode="json"),
                    "progress": self.progress.model_dump(),
                },
            )
        )
        return outcome

    # ── Subscriptions ───────────────────────────

    def subscribe(self) -> asyncio.Queue:
        """
        Register a listener queue. A subscriber that arrives after close()
        immediately finds the closing event in its queue.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed_event is not None:
            queue.put_nowait(self._closed_event)
        else:
            self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def close(self, payload: Dict[str, Any]) -> None:
        """Broadcast the final "complete" event; later resolutions are not expected."""
        if self._closed_event is not None:
            return
        self._closed_event = ("complete", {**payload, "progress": self.progress.model_dump(), "final": True})
        self._publish(self._closed_event)
        self._subscribers.clear()

    def _publish(self, event: Event) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)
