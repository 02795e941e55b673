"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from droidgram.autonomy.config import AutonomyLevel


Complexity = Literal["quick", "medium", "complex"]


class DroidConfig(BaseModel):
    """Droid CLI invocation settings."""
    bin: str = "droid"
    model: str = ""
    reasoning_effort: str = ""
    auto: str = ""  # low | medium | high, empty means interactive default
    use_spec: bool = False
    spec_model: str = ""
    spec_reasoning_effort: str = ""
    base_timeout_seconds: int = 300  # 5 minutes idle budget for short prompts
    max_timeout_seconds: int = 900  # 15 minutes cap for the dynamic budget
    hard_timeout_seconds: int = 3600  # Absolute ceiling per invocation
    progress_interval_seconds: int = 30


class JobsConfig(BaseModel):
    """Background job routing configuration."""
    async_enabled: bool = False
    complexity_threshold: Complexity = "complex"
    poll_interval_seconds: float = 5.0
    max_concurrent: int = 1
    shutdown_timeout_seconds: float = 30.0


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""
    enabled: bool = False
    token: str = ""  # Bot token from @BotFather
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs or usernames
    streaming_mode: Literal["batch", "stream"] = "batch"


class DeployConfig(BaseModel):
    """Preview deployment defaults."""
    vercel_token: str = ""
    max_retries: int = 2


class GithubConfig(BaseModel):
    """GitHub credentials used for push."""
    token: str = ""


class ConcurrencyConfig(BaseModel):
    """Limits for simultaneous conversations."""
    max_concurrent_conversations: int = 4


class Config(BaseSettings):
    """Root configuration for droidgram."""
    workspace: str = "~/.droidgram/workspace"
    droid: DroidConfig = Field(default_factory=DroidConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    github: GithubConfig = Field(default_factory=GithubConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    default_autonomy: AutonomyLevel = "medium"

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.workspace).expanduser()

    class Config:
        env_prefix = "DROIDGRAM_"
        env_nested_delimiter = "__"
