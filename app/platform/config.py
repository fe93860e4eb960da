from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Affiliate Sitemap Analyzer"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True
    LOG_FILE_NAME: str = "sitemap_analyzer.log"

    # ── Gemini (ambient credential) ─────────────
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # ── Chat-completion providers ───────────────
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4-turbo"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"

    CLAUDE_BASE_URL: str = "https://api.anthropic.com/v1"
    CLAUDE_MODEL: str = "claude-3-haiku-20240307"
    CLAUDE_MAX_TOKENS: int = 4096
    ANTHROPIC_VERSION: str = "2023-06-01"

    # ── Analysis dispatcher ─────────────────────
    ANALYSIS_TEMPERATURE: float = 0.2
    ANALYSIS_REQUEST_TIMEOUT: float = 60.0  # seconds, per provider call
    ANALYSIS_MAX_ATTEMPTS: int = 3
    ANALYSIS_DEFAULT_CONCURRENCY: int = 10
    ANALYSIS_MAX_CONCURRENCY: int = 50

    # ── Sitemap fetching ────────────────────────
    # Tried in order, "{url}" is replaced by the percent-encoded sitemap URL.
    # "direct" fetches the sitemap URL itself.
    SITEMAP_FETCH_ENDPOINTS: List[str] = [
        "direct",
        "https://corsproxy.io/?{url}",
        "https://api.allorigins.win/raw?url={url}",
    ]
    SITEMAP_FETCH_TIMEOUT: float = 30.0

    # ── Streaming / run registry ────────────────
    SSE_HEARTBEAT_SECONDS: float = 15.0
    RUN_RETENTION: int = 50  # finished runs kept in memory

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
