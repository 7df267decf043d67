"""
Pydantic models for YAML configuration validation.
One file configures storage, the HTTP client, the run checkpointing and every source.
"""

from __future__ import annotations
from typing import Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from comic_sync.core.engine import CrawlJob
from comic_sync.http.policies import RetryPolicy


class StorageConfig(BaseModel):
    """Where progress, step journal and comics live."""
    backend: Literal["sqlite", "memory"] = Field("sqlite", description="Storage backend")
    state_path: str = Field("data/state.sqlite", description="SQLite file for progress and run journal")
    comics_path: str = Field("data/comics.sqlite", description="SQLite file for the per-language comics tables")


class RetryConfig(BaseModel):
    max_attempts: int = Field(3, ge=1, le=10)
    base_delay_s: float = Field(1.0, ge=0)
    jitter_s: float = Field(0.3, ge=0)
    retry_statuses: List[int] = Field(default_factory=lambda: [429, 500, 502, 503, 504])

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_s=self.base_delay_s,
            jitter_s=self.jitter_s,
            retry_statuses=tuple(self.retry_statuses),
        )


class HttpConfig(BaseModel):
    timeout_s: int = Field(30, ge=1, le=300, description="Per-request timeout in seconds")
    user_agent: Optional[str] = Field(None, description="Overrides the default User-Agent header")
    retry: RetryConfig = Field(default_factory=RetryConfig)


class RunnerConfig(BaseModel):
    """Checkpointing behaviour shared by every source."""
    max_attempts: int = Field(3, ge=1, le=20, description="Failed attempts before a run is abandoned")
    compare_and_swap: bool = Field(True, description="Reject progress commits that lost a concurrent race")


class IntervalConfig(BaseModel):
    """APScheduler IntervalTrigger keywords."""
    minutes: int = Field(0, ge=0)
    hours: int = Field(0, ge=0)
    days: int = Field(0, ge=0)
    weeks: int = Field(0, ge=0)

    @model_validator(mode='after')
    def validate_interval(self):
        if not (self.minutes or self.hours or self.days or self.weeks):
            raise ValueError('schedule interval must be positive')
        return self

    def trigger_kwargs(self) -> Dict[str, int]:
        return {k: v for k, v in self.model_dump().items() if v}


class SourceConfig(BaseModel):
    """Configuration for one translated source."""
    key: str = Field(..., description="Progress key and comics table suffix")
    adapter: Optional[str] = Field(None, description="Adapter key, defaults to key")
    enabled: bool = True
    batch_size: int = Field(10, ge=1, le=50, description="Items fetched per run")
    call_budget: int = Field(50, ge=1, le=1000, description="Outbound calls per run, discovery included")
    delay_ms: int = Field(1000, ge=0, le=60000, description="Delay between item fetches in milliseconds")
    time_budget_s: Optional[float] = Field(None, gt=0, description="Wall-clock budget per run")
    schedule: IntervalConfig = Field(default_factory=lambda: IntervalConfig(days=1))

    @field_validator('key')
    @classmethod
    def validate_key(cls, v):
        if not v or not v.replace('_', '').isalpha() or not v.islower():
            raise ValueError('key must be lowercase letters and underscores')
        return v

    @model_validator(mode='after')
    def validate_budgets(self):
        if self.call_budget < self.batch_size:
            raise ValueError('call_budget must be at least batch_size')
        return self

    @property
    def adapter_key(self) -> str:
        return self.adapter or self.key


class ScheduleConfig(BaseModel):
    """Configuration for scheduled execution."""
    enabled: bool = Field(False, description="Whether scheduling is enabled")


class SyncConfig(BaseModel):
    """Root configuration model."""
    storage: StorageConfig = Field(default_factory=StorageConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    sources: List[SourceConfig] = Field(..., min_length=1)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @model_validator(mode='after')
    def validate_unique_keys(self):
        keys = [s.key for s in self.sources]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f'Duplicate source keys: {duplicates}')
        return self

    def source(self, key: str) -> SourceConfig:
        for s in self.sources:
            if s.key == key:
                return s
        raise KeyError(f"Unknown source: {key}. Configured sources: {', '.join(s.key for s in self.sources)}")


def load_and_validate_config(config_path: str) -> SyncConfig:
    """
    Load and validate a sync configuration from YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is malformed or fails validation
    """
    import yaml

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    try:
        return SyncConfig(**(raw_config or {}))
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path}:\n" +
            '\n'.join(error_messages)
        ) from e


def config_to_jobs(config: SyncConfig) -> List[Tuple[CrawlJob, SourceConfig]]:
    """Turn every enabled source into a CrawlJob."""
    jobs = []
    for source in config.sources:
        if not source.enabled:
            continue
        job = CrawlJob(
            key=source.key,
            batch_size=source.batch_size,
            call_budget=source.call_budget,
            delay_ms=source.delay_ms,
            time_budget_s=source.time_budget_s,
            max_attempts=config.runner.max_attempts,
            compare_and_swap=config.runner.compare_and_swap,
        )
        jobs.append((job, source))
    return jobs
