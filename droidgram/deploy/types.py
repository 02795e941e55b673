"""Type definitions for preview deployment and self-healing."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

DeployTarget = Literal["preview", "production"]

ErrorCategory = Literal[
    "auth",
    "build",
    "config",
    "directory",
    "network",
    "rate_limit",
    "framework",
    "dependency",
    "unknown",
]


class FixAction(str, Enum):
    """Remediation actions the deploy loop can take on its own."""
    INSTALL_DEPS = "install_deps"
    RUN_BUILD = "run_build"
    WRITE_CONFIG = "write_config"
    WAIT_RETRY = "wait_retry"
    EXTEND_TIMEOUT = "extend_timeout"


@dataclass
class DiagnosisResult:
    """Classification of a deployment failure."""
    category: ErrorCategory
    problem: str
    solution: str
    confidence: int
    fix: FixAction | None = None
    matched: str | None = None  # Text fragment that triggered the rule

    @property
    def auto_fixable(self) -> bool:
        return self.fix is not None


@dataclass
class FixResult:
    """Outcome of one remediation action."""
    success: bool
    message: str
    action: FixAction | None = None


@dataclass
class DeployResult:
    """Outcome of a single Vercel CLI deployment."""
    success: bool
    message: str
    url: str | None = None
    inspector_url: str | None = None
    deployment_id: str | None = None
    target: DeployTarget = "preview"
    debug_output: str | None = None


@dataclass
class SelfHealingResult:
    """Outcome of the diagnose-fix-retry loop."""
    success: bool
    message: str
    url: str | None = None
    inspector_url: str | None = None
    diagnosis: DiagnosisResult | None = None
    fix_applied: str | None = None
    retry_count: int = 0
    fixes_attempted: list[FixResult] = field(default_factory=list)


@dataclass
class ProjectScan:
    """What a directory looks like from a deployment point of view."""
    framework: str | None = None
    build_dir: str | None = None
    candidates: list[str] = field(default_factory=list)
    has_package_json: bool = False
    has_vercel_config: bool = False
