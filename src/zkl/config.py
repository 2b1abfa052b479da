"""Runtime configuration loaded from the environment (prefix ZKL_) or a .env file."""

from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator, queue and prover settings."""

    model_config = SettingsConfigDict(
        env_prefix="ZKL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Proof job queue
    max_concurrent_jobs: int = Field(default=1, ge=1, description="Jobs executing at once")
    job_retention_seconds: float = Field(default=600.0, gt=0, description="Completed job lifetime")
    diagnostic_tail_chars: int = Field(default=2000, ge=0)

    # Scheduler
    scheduler_max_concurrent: int = Field(default=10, ge=1, description="Edges in flight")
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between polls")
    proof_timeout: float = Field(default=300.0, gt=0, description="Caller-side proof patience")
    verify_balances: bool = True

    # Accumulator
    tree_depth: int = Field(default=32, ge=1, le=64)

    # Prover integration
    prover_mode: Literal["simulated", "subprocess"] = "simulated"
    prover_command: List[str] = Field(default_factory=lambda: ["sp1-host"])
    local_simulation: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
