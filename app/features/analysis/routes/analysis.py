"""
Analysis run endpoints.

A run is started with a sitemap (pasted XML, remote URL or an explicit URL
list) and a worker pool. Results can be polled through the snapshot endpoint
or pushed to the client over Server-Sent Events as each URL resolves.
"""
import asyncio
import json
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, status
from sse_starlette.sse import EventSourceResponse

from app.features.analysis.schemas.analysis import AnalysisRunRequest, AnalysisRunSnapshot
from app.features.analysis.services.run_manager import (
    AnalysisRun,
    AnalysisRunManager,
    get_run_manager,
)
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.schemas import APIResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post(
    "/runs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=APIResponse[AnalysisRunSnapshot],
    summary="Start an affiliate monetization analysis run",
)
async def start_analysis_run(
    data: AnalysisRunRequest,
    manager: AnalysisRunManager = Depends(get_run_manager),
):
    run = await manager.start_run(data)
    return api_response(
        data=run.snapshot(),
        message=f"Analysis started for {run.aggregator.total} URLs",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/runs/{run_id}", response_model=APIResponse[AnalysisRunSnapshot])
async def get_analysis_run(run_id: str, manager: AnalysisRunManager = Depends(get_run_manager)):
    run = manager.get(run_id)
    return api_response(data=run.snapshot(), message=f"Run is {run.state.value}")


@router.post("/runs/{run_id}/cancel", response_model=APIResponse[AnalysisRunSnapshot])
async def cancel_analysis_run(run_id: str, manager: AnalysisRunManager = Depends(get_run_manager)):
    run = manager.cancel(run_id)
    return api_response(data=run.snapshot(), message="Cancellation requested")


async def run_event_stream(run: AnalysisRun) -> AsyncGenerator[dict, None]:
    """
    Stream one run's events.

    1. An initial "progress" event with the full snapshot
    2. One "result" event per resolved URL
    3. A final "complete" event, after which the stream closes
    Heartbeats are sent while nothing happens.
    """
    # Subscribe before snapshotting so no resolution falls in between
    queue = run.aggregator.subscribe()
    try:
        yield {
            "event": "progress",
            "data": run.snapshot().model_dump_json(),
        }

        while True:
            try:
                event_name, payload = await asyncio.wait_for(
                    queue.get(), timeout=settings.SSE_HEARTBEAT_SECONDS
                )
            except asyncio.TimeoutError:
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({"timestamp": asyncio.get_event_loop().time()}),
                }
                continue

            yield {"event": event_name, "data": json.dumps(payload)}
            if event_name == "complete":
                break
    finally:
        run.aggregator.unsubscribe(queue)
        logger.info(f"SSE: Closed stream for run {run.run_id}")


@router.get(
    "/runs/{run_id}/stream",
    summary="Stream analysis progress (SSE)",
    description="""
    Server-Sent Events for one run.

    **Event Types:**
    - `progress`: full run snapshot, sent once on connect
    - `result`: one URL resolved; `{"outcome": {...}, "progress": {"processed", "total"}}`
    - `complete`: run finished or was cancelled (connection closes)
    - `heartbeat`: keep-alive ping
    """,
)
async def stream_analysis_run(run_id: str, manager: AnalysisRunManager = Depends(get_run_manager)):
    run = manager.get(run_id)
    logger.info(f"SSE: Client connected for run {run_id}")

    return EventSourceResponse(
        run_event_stream(run),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
