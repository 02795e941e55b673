"""Command-sequence parsing and sandboxed execution."""

from droidgram.exec.types import (
    ExecResult,
    ParsedCommand,
    ParsedSequence,
    SmartExecResult,
)
from droidgram.exec.parser import (
    clean_command,
    extract_commands_from_message,
    format_command_sequence,
    parse_command_sequence,
    validate_commands,
)
from droidgram.exec.safety import (
    ABSOLUTE_BLOCKLIST,
    FULL_AUTONOMY_ALLOWLIST,
    is_absolutely_blocked,
    is_blocked,
)
from droidgram.exec.sandbox import exec_sandbox, exec_sequence, quick_exec
from droidgram.exec.smart import (
    COMMAND_TEMPLATES,
    SmartExecOptions,
    exec_template,
    list_templates,
    smart_exec_sequence,
    smart_exec_single,
)

__all__ = [
    "ExecResult",
    "ParsedCommand",
    "ParsedSequence",
    "SmartExecResult",
    "clean_command",
    "extract_commands_from_message",
    "format_command_sequence",
    "parse_command_sequence",
    "validate_commands",
    "ABSOLUTE_BLOCKLIST",
    "FULL_AUTONOMY_ALLOWLIST",
    "is_absolutely_blocked",
    "is_blocked",
    "exec_sandbox",
    "exec_sequence",
    "quick_exec",
    "COMMAND_TEMPLATES",
    "SmartExecOptions",
    "exec_template",
    "list_templates",
    "smart_exec_sequence",
    "smart_exec_single",
]
