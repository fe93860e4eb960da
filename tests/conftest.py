"""
Test configuration and fixtures for the Affiliate Sitemap Analyzer API.

Provider calls never leave the process: adapters are replaced by
FakeAdapter instances and retry sleeps are recorded instead of awaited.
"""

import os
from typing import Callable, Dict, Generator, List

from dotenv import load_dotenv

# Tests must not pick up a developer's real key
load_dotenv()
os.environ["GEMINI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from app.features.analysis.schemas.analysis import (
    ActionItem,
    AIProvider,
    AnalysisResultData,
    Priority,
    WorkerCredential,
)
from app.features.analysis.services.retry import RetryPolicy


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    with TestClient(test_app) as test_client:
        yield test_client


def make_result(url: str, score: int = 72) -> AnalysisResultData:
    return AnalysisResultData(
        url=url,
        monetization_score=score,
        justification="Buyer-intent review page in a high-commission niche.",
        priority=Priority.HIGH,
        suggested_actions=[
            ActionItem(title="Add comparison table", description="Compare the top three products", impact=Priority.HIGH),
            ActionItem(title="Insert affiliate links", description="Link every product mention", impact=Priority.MEDIUM),
            ActionItem(title="Add sticky CTA", description="Keep the buy button visible", impact=Priority.LOW),
        ],
        affiliate_niche="Outdoor gear",
    )


class FakeAdapter:
    """
    Stand-in for a ProviderAdapter.

    `behaviour(url, call_number)` returns an AnalysisResultData or raises;
    it defaults to instant success. Calls are recorded per URL.
    """

    def __init__(self, credential: WorkerCredential, behaviour: Callable = None):
        self.credential = credential
        self.provider = credential.provider
        self.behaviour = behaviour
        self.calls: Dict[str, int] = {}
        self.closed = False

    async def analyze(self, url: str) -> AnalysisResultData:
        self.calls[url] = self.calls.get(url, 0) + 1
        if self.behaviour is None:
            return make_result(url)
        return await self.behaviour(url, self.calls[url])

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry_policy(recording_sleep) -> RetryPolicy:
    """Real policy with fixed jitter and no actual waiting."""
    return RetryPolicy(max_attempts=3, attempt_timeout=5, sleep=recording_sleep, rand=lambda: 0.5)


@pytest.fixture
def openai_worker() -> WorkerCredential:
    return WorkerCredential(id="w-openai", provider=AIProvider.OPENAI, api_key="sk-test")


@pytest.fixture
def groq_worker() -> WorkerCredential:
    return WorkerCredential(id="w-groq", provider=AIProvider.GROQ, api_key="gsk-test", model="llama3-8b-8192")


@pytest.fixture
def result_factory() -> Callable[..., AnalysisResultData]:
    return make_result


@pytest.fixture
def fake_adapter_cls():
    return FakeAdapter
