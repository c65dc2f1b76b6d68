"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from jobmail.utils.urls import DEFAULT_TRACKING_PARAMS as URL_TRACKING_PARAMS

from .duration import DurationParseError, parse_duration, validate_duration_range

DEFAULT_EMBEDDING_MODEL = "hf.co/Mungert/all-MiniLM-L6-v2-GGUF"
DEFAULT_EMBEDDING_DIMENSION = 384

DEFAULT_TRACKING_PARAMS = list(URL_TRACKING_PARAMS)

DEFAULT_JOB_KEYWORDS = [
    "job",
    "jobs",
    "career",
    "hiring",
    "position",
    "vacancy",
    "opening",
    "recruiter",
    "application",
    "stellenangebot",
    "projekt",
    "freelance",
]


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _seconds(value, allow_zero: bool = False) -> float:
    try:
        return parse_duration(value, allow_zero=allow_zero)
    except DurationParseError as e:
        raise ValueError(str(e)) from e


class QueueSettings(BaseModel):
    """Worker pool and retry policy for a single task kind."""

    concurrency: Optional[int] = Field(
        None,
        ge=1,
        le=64,
        description="Parallel workers (None = WORKER_CONCURRENCY, default 3)",
    )
    attempts: int = Field(3, ge=1, le=20, description="Deliveries before a task is parked as dead")
    backoff: float = Field(2.0, description="Base retry delay in seconds (doubles per attempt)")
    max_backoff: float = Field(300.0, description="Upper bound for a single retry delay")
    timeout: float = Field(60.0, description="Hard execution timeout per delivery")
    lease_grace: float = Field(
        30.0, description="Extra lease time before a silent worker's task is redelivered"
    )

    @field_validator("backoff", "lease_grace", mode="before")
    @classmethod
    def parse_optional_duration(cls, v):
        """Accept duration strings; zero is allowed."""
        return _seconds(v, allow_zero=True)

    @field_validator("timeout", "max_backoff", mode="before")
    @classmethod
    def parse_required_duration(cls, v):
        """Accept duration strings; zero is rejected."""
        return _seconds(v)

    def backoff_for(self, attempt: int) -> float:
        """Retry delay after the given (1-based) failed attempt."""
        delay = self.backoff * (2 ** max(attempt - 1, 0))
        return min(delay, self.max_backoff)

    @property
    def lease_seconds(self) -> float:
        return self.timeout + self.lease_grace


class QueuesConfig(BaseModel):
    """Per-kind queue settings plus dispatcher timing."""

    extract: QueueSettings = Field(
        default_factory=lambda: QueueSettings(backoff=2, timeout=60)
    )
    enrich: QueueSettings = Field(
        default_factory=lambda: QueueSettings(backoff=5, timeout=120)
    )
    keyword_embedding: QueueSettings = Field(
        default_factory=lambda: QueueSettings(backoff=2, timeout=60)
    )
    poll_interval: float = Field(1.0, description="Idle worker sleep between queue polls")
    reaper_interval: float = Field(60.0, description="How often expired leases are requeued")

    @field_validator("poll_interval", "reaper_interval", mode="before")
    @classmethod
    def parse_interval(cls, v):
        """Accept duration strings."""
        return _seconds(v)


class EmbeddingConfig(BaseModel):
    """Embedding model identity and call budget."""

    model: str = Field(DEFAULT_EMBEDDING_MODEL, min_length=1)
    dimension: int = Field(DEFAULT_EMBEDDING_DIMENSION, ge=1, le=8192)
    timeout: float = Field(20.0, description="Hard timeout for a single embedding call")

    @field_validator("timeout", mode="before")
    @classmethod
    def parse_timeout(cls, v):
        """Accept duration strings."""
        return _seconds(v)

    @field_validator("model")
    @classmethod
    def strip_model(cls, v: str) -> str:
        """Model tags are compared verbatim, so surrounding whitespace is dropped."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("embedding model cannot be empty")
        return stripped


class FilterConfig(BaseModel):
    """Semantic blacklist filter settings."""

    threshold: float = Field(
        0.6, ge=-1.0, le=1.0, description="Cosine similarity at or above which a posting is blacklisted"
    )


class ExtractionConfig(BaseModel):
    """URL and title extraction settings."""

    extra_job_url_patterns: List[str] = Field(
        default_factory=list,
        description="Additional regular expressions recognised as job-board URLs",
    )
    tracking_params: List[str] = Field(default_factory=lambda: list(DEFAULT_TRACKING_PARAMS))
    max_title_length: int = Field(200, ge=20, le=1000)

    @field_validator("tracking_params")
    @classmethod
    def normalize_params(cls, v: List[str]) -> List[str]:
        """Lowercase, strip and drop empty parameter names."""
        return [p.strip().lower() for p in v if p and p.strip()]

    @field_validator("extra_job_url_patterns")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        """Reject patterns that do not compile."""
        import re

        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid job URL pattern '{pattern}': {e}") from e
        return v


class EnrichmentConfig(BaseModel):
    """Content enrichment settings."""

    min_description_length: int = Field(100, ge=0)
    llm_model: Optional[str] = Field(
        None, description="Text generation model for description/salary extraction (None = regex only)"
    )
    max_prompt_chars: int = Field(15000, ge=500)


class PlatformRule(BaseModel):
    """Crawl permission for a job platform, keyed by its domain label."""

    hostname: str = Field(..., min_length=1, description="Domain label, e.g. 'linkedin'")
    can_crawl: bool = True
    skip_reason: Optional[str] = None

    @field_validator("hostname")
    @classmethod
    def normalize_hostname(cls, v: str) -> str:
        """Lowercase and strip the hostname label."""
        stripped = v.strip().lower()
        if not stripped:
            raise ValueError("hostname cannot be empty")
        return stripped


def _default_platforms() -> List[PlatformRule]:
    return [
        PlatformRule(
            hostname="linkedin",
            can_crawl=False,
            skip_reason="Requires multi-level authentication; content is not publicly accessible",
        )
    ]


class ScanConfig(BaseModel):
    """Mail scan settings."""

    interval: float = Field(900.0, description="Seconds between scheduled mail scans")
    max_messages: int = Field(50, ge=1, le=1000)
    job_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_JOB_KEYWORDS))
    classifier_model: Optional[str] = Field(
        None, description="Text generation model used to classify messages (None = keywords)"
    )

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v):
        """Accept duration strings; between one minute and one day."""
        seconds = _seconds(v)
        try:
            validate_duration_range(seconds, min_seconds=60, max_seconds=86400, label="Scan interval")
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return seconds

    @field_validator("job_keywords")
    @classmethod
    def normalize_keywords(cls, v: List[str]) -> List[str]:
        """Lowercase, strip and drop empty keywords."""
        return [k.strip().lower() for k in v if k and k.strip()]


class HttpConfig(BaseModel):
    """Outbound HTTP settings for page fetches and the model server."""

    timeout: int = Field(30, ge=5, le=300, description="Request timeout in seconds")
    user_agent: str = Field("Mozilla/5.0 (compatible; jobmail/0.1)", min_length=1)

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        """Strip whitespace from user agent."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(LogFormat.KEY_VALUE, description="Log output format (json or key-value)")

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for jobmail."""

    queues: QueuesConfig = Field(default_factory=QueuesConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    platforms: List[PlatformRule] = Field(default_factory=_default_platforms)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def validate_platforms(self):
        """Platform labels must be unique."""
        seen = set()
        for rule in self.platforms:
            if rule.hostname in seen:
                raise ValueError(f"Duplicate platform: {rule.hostname} appears multiple times")
            seen.add(rule.hostname)
        return self

    def queue_settings(self, kind: str) -> QueueSettings:
        """Settings for a task kind value ('extract_from_message', 'enrich', ...)."""
        mapping = {
            "extract_from_message": self.queues.extract,
            "enrich": self.queues.enrich,
            "compute_keyword_embedding": self.queues.keyword_embedding,
        }
        try:
            return mapping[kind]
        except KeyError:
            raise ValueError(f"Unknown task kind: {kind}") from None
