"""Per-session autonomy policy: presets, merging and (de)serialization."""

import json
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

AutonomyLevel = Literal["off", "low", "medium", "high", "full"]

AUTONOMY_LEVELS: tuple[str, ...] = ("off", "low", "medium", "high", "full")

DEFAULT_EXEC_ALLOWLIST = [
    "npm", "yarn", "pnpm", "bun", "node", "npx", "tsx", "ts-node",
    "git", "gh",
    "ls", "cat", "pwd", "echo", "head", "tail", "wc", "grep", "find", "which", "env",
    "curl", "wget",
    "docker", "docker-compose",
    "make", "cargo", "go", "python", "pip",
]

DEFAULT_EXEC_BLOCKLIST = [
    "rm -rf /",
    "rm -rf /*",
    "sudo rm",
    "sudo su",
    "chmod 777",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",
    "> /dev/sda",
    "mv /* ",
]

DEFAULT_PROTECTED_BRANCHES = ["main", "master", "production", "release"]


class GitConfig(BaseModel):
    """Git operations policy."""
    enabled: bool = True
    allow_push: bool = False
    protected_branches: list[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_BRANCHES))
    auto_commit: bool = True
    commit_prefix: str = "[AI] "
    user_name: str = ""
    user_email: str = ""
    gh_token: str = ""
    use_default_token: bool = True


class VercelConfig(BaseModel):
    """Vercel CLI deployment options."""
    token: str = ""
    use_default_token: bool = True
    project_id: str = ""
    project_name: str = ""
    org_id: str = ""
    default_target: Literal["preview", "production"] = "preview"
    debug: bool = False
    archive: bool = False
    prebuilt: bool = False
    no_wait: bool = False
    force: bool = False
    build_env: dict[str, str] = Field(default_factory=dict)
    runtime_env: dict[str, str] = Field(default_factory=dict)
    meta: dict[str, str] = Field(default_factory=dict)
    regions: list[str] = Field(default_factory=list)
    custom_domain: str = ""


class PreviewConfig(BaseModel):
    """Preview deployment policy."""
    enabled: bool = True
    provider: Literal["vercel"] = "vercel"
    auto_deploy: bool = False
    build_dir: str = ""
    vercel: VercelConfig = Field(default_factory=VercelConfig)


class ExecConfig(BaseModel):
    """Shell command execution policy."""
    enabled: bool = True
    timeout: float = 30.0  # seconds
    allowlist: list[str] = Field(default_factory=lambda: list(DEFAULT_EXEC_ALLOWLIST))
    blocklist: list[str] = Field(default_factory=lambda: list(DEFAULT_EXEC_BLOCKLIST))
    # binary -> permitted first argument, e.g. {"git": ["status", "diff"]}
    subcommands: dict[str, list[str]] = Field(default_factory=dict)


class SafetyConfig(BaseModel):
    """Confirmation and size limits."""
    require_confirmation: bool = False
    max_files_per_commit: int = 50
    max_lines_changed: int = 5000
    dry_run_first: bool = False


class AutonomyConfig(BaseModel):
    """Autonomy policy stored in session metadata."""
    level: AutonomyLevel = "medium"
    git: GitConfig = Field(default_factory=GitConfig)
    preview: PreviewConfig = Field(default_factory=PreviewConfig)
    exec: ExecConfig = Field(default_factory=ExecConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)


# Sub-config overrides applied on top of the defaults for each level
AUTONOMY_PRESETS: dict[str, dict[str, Any]] = {
    "off": {
        "git": {"enabled": False, "allow_push": False, "auto_commit": False},
        "preview": {"enabled": False, "auto_deploy": False},
        "exec": {"enabled": False},
        "safety": {"require_confirmation": True, "dry_run_first": True},
    },
    "low": {
        "git": {"enabled": True, "allow_push": False, "auto_commit": False},
        "preview": {"enabled": True, "auto_deploy": False},
        "exec": {"enabled": True},
        "safety": {"require_confirmation": True, "dry_run_first": True},
    },
    "medium": {
        "git": {"enabled": True, "allow_push": False, "auto_commit": True},
        "preview": {"enabled": True, "auto_deploy": False},
        "exec": {"enabled": True},
        "safety": {"require_confirmation": False, "dry_run_first": False},
    },
    "high": {
        "git": {"enabled": True, "allow_push": True, "auto_commit": True},
        "preview": {"enabled": True, "auto_deploy": True},
        "exec": {"enabled": True},
        "safety": {"require_confirmation": False, "dry_run_first": False},
    },
    "full": {
        "git": {
            "enabled": True,
            "allow_push": True,
            "auto_commit": True,
            "protected_branches": [],
        },
        "preview": {"enabled": True, "auto_deploy": True},
        "exec": {"enabled": True, "blocklist": []},
        "safety": {
            "require_confirmation": False,
            "dry_run_first": False,
            "max_files_per_commit": 1000,
            "max_lines_changed": 50000,
        },
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_preset(level: str) -> AutonomyConfig:
    """
    Build the config for a named autonomy level.

    Raises:
        ValueError: If the level is unknown.
    """
    if level not in AUTONOMY_PRESETS:
        raise ValueError(f"Unknown autonomy level: {level}. Use one of: {', '.join(AUTONOMY_LEVELS)}")
    data = _deep_merge(AutonomyConfig().model_dump(), AUTONOMY_PRESETS[level])
    data["level"] = level
    return AutonomyConfig.model_validate(data)


def merge_config(partial: dict[str, Any], base: AutonomyConfig | None = None) -> AutonomyConfig:
    """Overlay a partial dict onto a config (defaults when no base is given)."""
    source = (base or AutonomyConfig()).model_dump()
    return AutonomyConfig.model_validate(_deep_merge(source, partial))


def serialize_config(config: AutonomyConfig) -> str:
    """Serialize a config for session metadata."""
    return config.model_dump_json()


def deserialize_config(raw: str | dict | None) -> AutonomyConfig:
    """Restore a config from session metadata, falling back to defaults."""
    if not raw:
        return AutonomyConfig()
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return merge_config(data)
    except (json.JSONDecodeError, ValidationError, TypeError, AttributeError) as e:
        logger.warning(f"Invalid autonomy config in session metadata, using defaults: {e}")
        return AutonomyConfig()


def format_autonomy_status(config: AutonomyConfig) -> str:
    """Render the current policy as a chat message."""
    def flag(value: bool) -> str:
        return "on" if value else "off"

    lines = [
        f"Autonomy level: {config.level}",
        "",
        f"Git: {flag(config.git.enabled)} (push {flag(config.git.allow_push)}, "
        f"auto-commit {flag(config.git.auto_commit)})",
        f"Protected branches: {', '.join(config.git.protected_branches) or 'none'}",
        f"Preview deploy: {flag(config.preview.enabled)} (auto {flag(config.preview.auto_deploy)})",
        f"Exec: {flag(config.exec.enabled)} (timeout {config.exec.timeout:g}s, "
        f"{len(config.exec.allowlist)} allowed commands)",
        f"Confirmation required: {flag(config.safety.require_confirmation)}",
        "",
        f"Levels: {', '.join(AUTONOMY_LEVELS)}",
    ]
    return "\n".join(lines)
