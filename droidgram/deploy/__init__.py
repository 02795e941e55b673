"""Preview deployment with error diagnosis and self-healing retries."""

from droidgram.deploy.types import (
    DeployResult,
    DiagnosisResult,
    FixAction,
    FixResult,
    SelfHealingResult,
)
from droidgram.deploy.diagnosis import DIAGNOSIS_RULES, diagnose_error, format_analysis
from droidgram.deploy.vercel import build_vercel_command, deploy_vercel, scan_project
from droidgram.deploy.healing import self_healing_deploy

__all__ = [
    "DeployResult",
    "DiagnosisResult",
    "FixAction",
    "FixResult",
    "SelfHealingResult",
    "DIAGNOSIS_RULES",
    "diagnose_error",
    "format_analysis",
    "build_vercel_command",
    "deploy_vercel",
    "scan_project",
    "self_healing_deploy",
]
