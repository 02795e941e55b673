"""Autonomy policy and git operations."""

from droidgram.autonomy.config import (
    AUTONOMY_LEVELS,
    AUTONOMY_PRESETS,
    AutonomyConfig,
    AutonomyLevel,
    ExecConfig,
    GitConfig,
    PreviewConfig,
    SafetyConfig,
    VercelConfig,
    apply_preset,
    deserialize_config,
    merge_config,
    serialize_config,
)

__all__ = [
    "AUTONOMY_LEVELS",
    "AUTONOMY_PRESETS",
    "AutonomyConfig",
    "AutonomyLevel",
    "ExecConfig",
    "GitConfig",
    "PreviewConfig",
    "SafetyConfig",
    "VercelConfig",
    "apply_preset",
    "deserialize_config",
    "merge_config",
    "serialize_config",
]
