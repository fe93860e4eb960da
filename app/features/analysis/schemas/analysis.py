import enum
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr

from app.platform.config import settings


class AIProvider(str, enum.Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    CLAUDE = "claude"
    OPENROUTER = "openrouter"
    GROQ = "groq"


class Priority(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class OutcomeStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class RunState(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# ── Analysis result (canonical shape) ───────────


class ActionItem(BaseModel):
    title: str
    description: str = ""
    impact: Priority = Priority.MEDIUM


class AnalysisResultData(BaseModel):
    url: str
    monetization_score: int = Field(..., ge=1, le=100)
    justification: str
    priority: Priority
    suggested_actions: List[ActionItem]
    affiliate_niche: str = ""
    content_gap_analysis: str = ""
    conversion_booster: str = ""


# ── Worker pool ─────────────────────────────────


class WorkerCredential(BaseModel):
    """One configured (provider, API key, optional model) entry of the worker pool."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    provider: AIProvider
    api_key: Optional[SecretStr] = None
    model: Optional[str] = None

    def secret(self) -> str:
        return self.api_key.get_secret_value().strip() if self.api_key else ""


class WorkerSummary(BaseModel):
    """Worker as exposed in run snapshots: never carries the key."""

    id: str
    provider: AIProvider
    model: Optional[str] = None


# ── Outcomes & progress ─────────────────────────


class AnalysisOutcome(BaseModel):
    index: int
    url: str
    status: OutcomeStatus = OutcomeStatus.PENDING
    data: Optional[AnalysisResultData] = None
    error: Optional[str] = None
    worker_id: Optional[str] = None
    provider: Optional[AIProvider] = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != OutcomeStatus.PENDING


class Progress(BaseModel):
    processed: int
    total: int


# ── API payloads ────────────────────────────────


class AnalysisRunRequest(BaseModel):
    """
    Start an analysis run. Exactly one URL source is used, checked in order:
    explicit ``urls``, pasted ``sitemap_xml``, then remote ``sitemap_url``.
    """

    sitemap_xml: Optional[str] = None
    sitemap_url: Optional[HttpUrl] = None
    urls: Optional[List[str]] = None
    workers: List[WorkerCredential]
    concurrency: int = Field(
        default=settings.ANALYSIS_DEFAULT_CONCURRENCY,
        ge=1,
        le=settings.ANALYSIS_MAX_CONCURRENCY,
    )


class AnalysisRunSnapshot(BaseModel):
    run_id: str
    state: RunState
    concurrency: int
    workers: List[WorkerSummary]
    progress: Progress
    succeeded: int
    failed: int
    results: List[AnalysisOutcome]
    created_at: datetime
    finished_at: Optional[datetime] = None
