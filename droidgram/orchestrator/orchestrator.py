"""Route chat messages to commands, Smart Exec, deploys or Droid."""

import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from droidgram.autonomy.config import AUTONOMY_LEVELS, AutonomyConfig, apply_preset, format_autonomy_status
from droidgram.channels.base import ChatPlatform
from droidgram.clients.base import AssistantClient, MessageChunk
from droidgram.clients.droid import AUTONOMY_MODES, REASONING_EFFORTS, DroidClient, DroidClientOptions
from droidgram.config.schema import Config
from droidgram.deploy.healing import self_healing_deploy
from droidgram.exec.parser import extract_commands_from_message
from droidgram.exec.smart import (
    COMMAND_TEMPLATES,
    SmartExecOptions,
    exec_template,
    list_templates,
    smart_exec_sequence,
    smart_exec_single,
)
from droidgram.git.operations import git_branch, git_commit, git_push, git_status
from droidgram.jobs.notifier import format_job_list, format_job_status, format_queued
from droidgram.jobs.queue import Job, JobQueue
from droidgram.orchestrator.complexity import (
    estimate_task_complexity,
    job_priority,
    job_timeout,
    should_route_to_job_queue,
)
from droidgram.orchestrator.errors import analyze_error, format_error_analysis
from droidgram.orchestrator.locks import ConversationLockManager
from droidgram.session.manager import LAST_JOB_KEY, Session, SessionManager
from droidgram.utils.helpers import ensure_dir

RESET_PHRASES = re.compile(
    r"^(new\s*chat|fresh\s*start|start\s*over|clear\s*(chat|session|context))$", re.I
)
ACTIVATE_PHRASE = re.compile(r"^activate\s+(.+?)\s*[-(]\s*(.+?)\s*\)?$", re.I)
AGENT_SEPARATOR = re.compile(r"\s+and\s+|\s*,\s*", re.I)

# Batch mode drops tool-trace sections from the final message
TOOL_SECTION_PREFIXES = ("🔧", "💭", "📝", "✏️", "🗑️", "📂", "🔍")

FALLBACK_ERROR = "⚠️ An error occurred. Try /reset to start a fresh session."

CWD_KEY = "cwd"
DROID_OPTIONS_KEY = "droid_options"

NOVA_AGENTS: dict[str, tuple[str, str]] = {
    "POLARIS": ("⭐", "Strategic Commander"),
    "VEGA": ("🔭", "Navigator & Architect"),
    "SIRIUS": ("✨", "Design Sovereign"),
    "RIGEL": ("🔷", "Frontend Prime"),
    "ANTARES": ("❤️", "Backend Prime"),
    "ARCTURUS": ("🛡️", "Guardian"),
}

HELP_TEXT = """🤖 Droidgram Commands

Session
/reset - start a fresh Droid session
/getcwd, /setcwd <path> - working directory
/droid-model <id>, /droid-reasoning <level>, /droid-auto <level>

Autonomy
/autonomy - show settings
/autonomy <off|low|medium|high|full> - apply a preset
/autonomy exec|git|git-push|preview <on|off>
/autonomy exec-allow <command>
/autonomy reset

Commands
/exec <command or numbered list>
/dryrun <numbered list> - validate without running
/exec-template [name] [--dry-run]

Deploy and git
/deploy [dir] [prod] - self-healing Vercel deploy
/git-status, /git-commit <msg>, /git-push [branch], /git-branch <name>

Agents and jobs
/team, /activate <AGENT> [mission], /deactivate
/jobs, /job <id>, /cancel <id>

Anything else goes straight to Droid."""


def parse_command(text: str) -> tuple[str, str, list[str]]:
    """Split "/name@bot rest" into (name, rest, rest.split())."""
    head, _, rest = text.strip().partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    rest = rest.strip()
    return name, rest, rest.split()


def normalize_agent(name: str) -> str | None:
    candidate = name.strip().upper()
    return candidate if candidate in NOVA_AGENTS else None


def activation_banner(agent: str, mission: str | None) -> str:
    emoji, role = NOVA_AGENTS[agent]
    lines = [f"{emoji} {agent} ACTIVATED", f"Role: {role}"]
    if mission:
        lines.append(f"Mission: {mission}")
    return "\n".join(lines)


def build_prompt(prompt: str, agent: str | None, mission: str | None) -> str:
    """Prefix the prompt with the active agent persona, if any."""
    if not agent or agent not in NOVA_AGENTS:
        return prompt
    emoji, role = NOVA_AGENTS[agent]
    header = [f"You are {agent} ({role}). Sign outputs with {emoji} {agent}."]
    if mission and mission != prompt:
        header.append(f"Mission: {mission}")
    return "\n".join(header) + "\n\n" + prompt


def filter_tool_sections(message: str) -> str:
    sections = [s for s in message.split("\n\n") if not s.lstrip().startswith(TOOL_SECTION_PREFIXES)]
    return "\n\n".join(sections).strip()


def select_batch_reply(chunks: list[MessageChunk]) -> str:
    """Last assistant message minus tool traces, else system messages."""
    assistant = [c.content for c in chunks if c.type == "assistant" and c.content]
    if assistant:
        last = assistant[-1]
        return filter_tool_sections(last) or last
    system = [c.content for c in chunks if c.type == "system" and c.content]
    return "\n\n".join(system)


class Orchestrator:
    """
    Entry point for every inbound chat message.

    handle_message never raises: unexpected errors are analyzed and sent
    back to the conversation as text.
    """

    def __init__(
        self,
        config: Config,
        sessions: SessionManager,
        queue: JobQueue | None = None,
        client_factory: Callable[[DroidClientOptions], AssistantClient] | None = None,
        locks: ConversationLockManager | None = None,
    ):
        self.config = config
        self.sessions = sessions
        self.queue = queue
        self.client_factory = client_factory or DroidClient
        self.locks = locks or ConversationLockManager(config.concurrency.max_concurrent_conversations)
        self._commands: dict[str, Callable] = {
            "help": self._cmd_help,
            "start": self._cmd_help,
            "reset": self._cmd_reset,
            "new": self._cmd_reset,
            "getcwd": self._cmd_getcwd,
            "setcwd": self._cmd_setcwd,
            "autonomy": self._cmd_autonomy,
            "exec": self._cmd_exec,
            "exec-sequence": self._cmd_exec,
            "dryrun": self._cmd_dryrun,
            "exec-dry": self._cmd_dryrun,
            "exec-template": self._cmd_exec_template,
            "deploy": self._cmd_deploy,
            "git-status": self._cmd_git_status,
            "git-commit": self._cmd_git_commit,
            "git-push": self._cmd_git_push,
            "git-branch": self._cmd_git_branch,
            "team": self._cmd_team,
            "deactivate": self._cmd_deactivate,
            "droid-model": self._cmd_droid_model,
            "droid-reasoning": self._cmd_droid_reasoning,
            "droid-auto": self._cmd_droid_auto,
            "jobs": self._cmd_jobs,
            "job": self._cmd_job,
            "cancel": self._cmd_cancel,
        }

    async def dispatch(
        self,
        platform: ChatPlatform,
        conversation_id: str,
        message: str,
        user: dict[str, Any] | None = None,
    ) -> None:
        """Handle a message under the per-conversation lock."""
        await self.locks.acquire_lock(
            conversation_id,
            lambda: self.handle_message(platform, conversation_id, message, user),
        )

    async def handle_message(
        self,
        platform: ChatPlatform,
        conversation_id: str,
        message: str,
        user: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._route(platform, conversation_id, message)
        except Exception as e:
            logger.error(f"Error handling message in {conversation_id}: {e}")
            try:
                reply = format_error_analysis(analyze_error(e))
            except Exception as analysis_error:
                logger.error(f"Error analysis failed: {analysis_error}")
                reply = FALLBACK_ERROR
            try:
                await platform.send_message(conversation_id, reply)
            except Exception as send_error:
                logger.error(f"Failed to deliver error message to {conversation_id}: {send_error}")

    async def _route(self, platform: ChatPlatform, conversation_id: str, message: str) -> None:
        text = message.strip()
        if not text:
            return

        session = self.sessions.get_or_create(f"{platform.platform_type}:{conversation_id}")
        is_command = text.startswith("/")

        if not is_command and RESET_PHRASES.match(text):
            await platform.send_message(conversation_id, self._reset(session))
            return

        mission: str | None = None

        if not is_command:
            match = ACTIVATE_PHRASE.match(text)
            if match:
                agents = [a for a in AGENT_SEPARATOR.split(match.group(1).strip()) if a]
                reply, ok = self._activate(session, agents[0] if agents else "", match.group(2).strip())
                await platform.send_message(conversation_id, reply)
                if not ok:
                    return
                mission = match.group(2).strip()

        if is_command:
            name, rest, args = parse_command(text)
            if name == "activate":
                mission_text = " ".join(args[1:]).strip()
                reply, ok = self._activate(session, args[0] if args else "", mission_text)
                await platform.send_message(conversation_id, reply)
                if not ok or not mission_text:
                    return
                mission = mission_text
            else:
                logger.info(f"Slash command /{name} in {conversation_id}")
                handler = self._commands.get(name)
                if handler is None:
                    reply = f"❌ Unknown command: /{name}\n\nUse /help to see available commands."
                else:
                    reply = await handler(session, conversation_id, rest, args)
                if reply:
                    await platform.send_message(conversation_id, reply)
                return

        await self._run_ai(platform, session, conversation_id, mission or text)

    # ── Droid execution ──────────────────────────────────────────────

    def _cwd(self, session: Session) -> str:
        cwd = session.metadata.get(CWD_KEY)
        if cwd:
            return cwd
        return str(ensure_dir(self.config.workspace_path))

    def _droid_options(self, session: Session, **overrides: Any) -> DroidClientOptions:
        stored = dict(session.metadata.get(DROID_OPTIONS_KEY) or {})
        stored.update(overrides)
        return DroidClientOptions.from_config(self.config.droid, **stored)

    async def _run_ai(self, platform: ChatPlatform, session: Session, conversation_id: str, prompt: str) -> None:
        agent = session.active_agent
        cwd = self._cwd(session)
        full_prompt = build_prompt(prompt, agent, session.active_mission)
        session.add_message("user", prompt)

        complexity = estimate_task_complexity(prompt, has_nova_agent=bool(agent))
        logger.info(f"Task complexity for {conversation_id}: {complexity}")

        if self.queue is not None and should_route_to_job_queue(complexity, self.config.jobs):
            try:
                job = await self._create_job(session, conversation_id, full_prompt, cwd, complexity)
            except Exception as e:
                logger.warning(f"Job creation failed, running synchronously: {e}")
            else:
                session.metadata[LAST_JOB_KEY] = job.id
                self.sessions.save(session)
                await platform.send_message(conversation_id, format_queued(job, session.active_mission))
                return

        async def on_progress(_elapsed: int, text: str) -> None:
            await platform.send_message(conversation_id, f"⏳ {text}")

        client = self.client_factory(self._droid_options(session, on_progress=on_progress))
        mode = platform.get_streaming_mode()
        chunks: list[MessageChunk] = []

        async for chunk in client.send_query(full_prompt, cwd, session.droid_session_id):
            chunks.append(chunk)
            if chunk.type == "result" and chunk.session_id:
                session.droid_session_id = chunk.session_id
            elif mode == "stream" and chunk.type in ("assistant", "system") and chunk.content:
                await platform.send_message(conversation_id, chunk.content)

        if mode == "batch":
            reply = select_batch_reply(chunks)
            if reply:
                await platform.send_message(conversation_id, reply)

        final = select_batch_reply(chunks)
        if final:
            session.add_message("assistant", final)
        self.sessions.save(session)

    async def _create_job(
        self,
        session: Session,
        conversation_id: str,
        prompt: str,
        cwd: str,
        complexity: str,
    ) -> Job:
        agent = session.active_agent
        name = prompt[:50] + ("..." if len(prompt) > 50 else "")
        job = Job(
            job_type="nova_mission" if agent else "droid_exec",
            name=f"Task: {name}",
            payload={
                "prompt": prompt,
                "cwd": cwd,
                "session_id": session.droid_session_id,
                "droid_options": dict(session.metadata.get(DROID_OPTIONS_KEY) or {}),
                "nova_agent": agent,
                "nova_mission": session.active_mission,
            },
            conversation_id=conversation_id,
            session_key=session.key,
            priority=job_priority(complexity),
            timeout_seconds=job_timeout(complexity),
            metadata={"complexity": complexity, "prompt_length": len(prompt)},
            agent=agent,
        )
        return await self.queue.create_job(job)

    # ── Session commands ─────────────────────────────────────────────

    def _reset(self, session: Session) -> str:
        had_state = bool(session.droid_session_id or session.messages)
        session.clear()
        self.sessions.save(session)
        if had_state:
            return (
                "✅ Context cleared!\n\n"
                "💬 Send your next message to continue fresh.\n"
                "💡 Your settings are preserved."
            )
        return "💡 Already fresh! Just send your message."

    async def _cmd_help(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        return HELP_TEXT

    async def _cmd_reset(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        return self._reset(session)

    async def _cmd_getcwd(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        return f"📂 {self._cwd(session)}"

    async def _cmd_setcwd(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not rest:
            return "❌ Usage: /setcwd <path>"
        path = Path(rest).expanduser()
        if not path.is_absolute():
            path = Path(self._cwd(session)) / path
        path = path.resolve()
        if not path.is_dir():
            return f"❌ Directory not found: {path}"
        session.metadata[CWD_KEY] = str(path)
        session.droid_session_id = None
        self.sessions.save(session)
        return f"✅ Working directory: {path}\n\n💡 Droid session reset for the new directory."

    def _set_droid_option(self, session: Session, key: str, value: str | None) -> None:
        options = dict(session.metadata.get(DROID_OPTIONS_KEY) or {})
        if value is None:
            options.pop(key, None)
        else:
            options[key] = value
        session.metadata[DROID_OPTIONS_KEY] = options
        self.sessions.save(session)

    async def _cmd_droid_model(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not args:
            current = (session.metadata.get(DROID_OPTIONS_KEY) or {}).get("model") or self.config.droid.model
            return f"🤖 Droid model: {current or 'default'}\n\nUse /droid-model <id> or /droid-model default"
        value = None if args[0].lower() == "default" else args[0]
        self._set_droid_option(session, "model", value)
        return f"✅ Droid model: {value or 'default'}"

    async def _cmd_droid_reasoning(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        value = args[0].lower() if args else ""
        if value not in REASONING_EFFORTS:
            return f"❌ Usage: /droid-reasoning <{'|'.join(REASONING_EFFORTS)}>"
        self._set_droid_option(session, "reasoning_effort", value)
        return f"✅ Droid reasoning effort: {value}"

    async def _cmd_droid_auto(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        value = args[0].lower() if args else ""
        if value not in AUTONOMY_MODES:
            return f"❌ Usage: /droid-auto <{'|'.join(AUTONOMY_MODES)}>"
        self._set_droid_option(session, "auto", None if value == "normal" else value)
        return f"✅ Droid autonomy: {value}"

    # ── Autonomy ─────────────────────────────────────────────────────

    def _autonomy(self, session: Session) -> AutonomyConfig:
        return session.get_autonomy(self.config.default_autonomy)

    def _save_autonomy(self, session: Session, config: AutonomyConfig) -> None:
        session.set_autonomy(config)
        self.sessions.save(session)

    async def _cmd_autonomy(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        config = self._autonomy(session)
        if not args:
            return format_autonomy_status(config) + "\n\nUse /autonomy <level> to change"

        sub = args[0].lower()
        value = args[1].lower() if len(args) > 1 else ""

        if sub == "level":
            sub, value = value, ""
        if sub in AUTONOMY_LEVELS:
            self._save_autonomy(session, apply_preset(sub))
            messages = {
                "off": "🔒 Autonomy OFF - All autonomous features disabled",
                "low": "✅ Autonomy LOW - Read-only operations only",
                "medium": "⚠️ Autonomy MEDIUM - Commits allowed, push disabled",
                "high": "🚨 Autonomy HIGH - Push enabled, minimal confirmation",
                "full": "💀 Autonomy FULL - All restrictions removed (dangerous!)",
            }
            return messages[sub]

        toggles = {
            "exec": ("exec", "enabled", "Command execution"),
            "git": ("git", "enabled", "Git operations"),
            "git-push": ("git", "allow_push", "Git push"),
            "preview": ("preview", "enabled", "Preview deployments"),
        }
        if sub in toggles:
            if value not in ("on", "off"):
                return f"❌ Usage: /autonomy {sub} <on|off>"
            section, field_name, label = toggles[sub]
            setattr(getattr(config, section), field_name, value == "on")
            self._save_autonomy(session, config)
            return f"✅ {label}: {value.upper()}"

        if sub == "exec-allow":
            if len(args) < 2:
                return "❌ Usage: /autonomy exec-allow <command>"
            command = args[1]
            if command not in config.exec.allowlist:
                config.exec.allowlist.append(command)
                self._save_autonomy(session, config)
            return f"✅ Added to allowlist: {command}"

        if sub == "reset":
            self._save_autonomy(session, apply_preset(self.config.default_autonomy))
            return "✅ Autonomy config reset to defaults"

        return "❌ Unknown autonomy subcommand. Use /autonomy for help."

    # ── Exec ─────────────────────────────────────────────────────────

    def _exec_options(self, session: Session, dry_run: bool = False) -> SmartExecOptions:
        config = self._autonomy(session)
        return SmartExecOptions(
            cwd=self._cwd(session),
            config=config.exec,
            level=config.level,
            dry_run=dry_run,
            stop_on_error=True,
        )

    async def _cmd_exec(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not rest:
            return (
                "❌ Usage: /exec <command>\n\n"
                "Examples:\n"
                "/exec npm test\n"
                "/exec 1. rm -rf .next 2. npm run build\n\n"
                "Or use /exec-template for common sequences."
            )
        options = self._exec_options(session)
        if extract_commands_from_message(rest).total_count:
            return (await smart_exec_sequence(rest, options)).message
        return (await smart_exec_single(rest, options)).message

    async def _cmd_dryrun(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not rest:
            return "❌ Usage: /dryrun <commands>\n\nValidates commands without executing them."
        return (await smart_exec_sequence(rest, self._exec_options(session, dry_run=True))).message

    async def _cmd_exec_template(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not args:
            return list_templates()
        name = args[0].lower()
        if name not in COMMAND_TEMPLATES:
            return (
                f"❌ Unknown template: {args[0]}\n\n"
                f"Available: {', '.join(COMMAND_TEMPLATES)}\n\n"
                "Use /exec-template to see all templates."
            )
        dry_run = "--dry-run" in args or "-n" in args
        return (await exec_template(name, self._exec_options(session, dry_run=dry_run))).message

    # ── Deploy and git ───────────────────────────────────────────────

    async def _cmd_deploy(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        config = self._autonomy(session)
        if not config.preview.enabled:
            return "❌ Preview deployments disabled.\n\nEnable with: /autonomy preview on"

        target = "preview"
        build_dir = config.preview.build_dir
        for arg in args:
            if arg.lower() in ("prod", "production"):
                target = "production"
            else:
                build_dir = arg

        result = await self_healing_deploy(
            self._cwd(session),
            build_dir,
            config.preview.vercel,
            target=target,
            max_retries=self.config.deploy.max_retries,
            token=self.config.deploy.vercel_token or None,
        )
        return result.message

    async def _cmd_git_status(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        return (await git_status(self._cwd(session))).message

    async def _cmd_git_commit(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not rest:
            return "❌ Usage: /git-commit <message>"
        return (await git_commit(self._cwd(session), rest, self._autonomy(session))).message

    async def _cmd_git_push(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        result = await git_push(
            self._cwd(session),
            self._autonomy(session),
            branch=args[0] if args else None,
            default_token=self.config.github.token or None,
        )
        return result.message

    async def _cmd_git_branch(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if not args:
            return "❌ Usage: /git-branch <name>"
        return (await git_branch(self._cwd(session), args[0], self._autonomy(session))).message

    # ── Agents ───────────────────────────────────────────────────────

    def _activate(self, session: Session, raw_agent: str, mission: str) -> tuple[str, bool]:
        if not raw_agent:
            return "❌ Usage: /activate <agent> [mission]\n\nUse /team to see agents.", False
        agent = normalize_agent(raw_agent)
        if agent is None:
            return f"❌ Unknown agent: {raw_agent}\n\nUse /team to see agents.", False
        session.set_agent(agent, mission or None)
        if mission:
            # New agent and mission start from a fresh Droid session
            session.droid_session_id = None
        self.sessions.save(session)
        logger.info(f"Activated {agent} for {session.key}")
        return activation_banner(agent, mission or None), True

    async def _cmd_team(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        lines = ["Agents", ""]
        for name, (emoji, role) in NOVA_AGENTS.items():
            marker = " (active)" if session.active_agent == name else ""
            lines.append(f"{emoji} {name} - {role}{marker}")
        lines += ["", "Use /activate <AGENT> <mission>"]
        return "\n".join(lines)

    async def _cmd_deactivate(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        agent = session.active_agent
        if not agent:
            return "💡 No active agent."
        session.set_agent(None)
        self.sessions.save(session)
        return f"{NOVA_AGENTS.get(agent, ('✅', ''))[0]} {agent} deactivated."

    # ── Jobs ─────────────────────────────────────────────────────────

    async def _cmd_jobs(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        if self.queue is None:
            return "💡 Background jobs are disabled."
        return format_job_list(await self.queue.list_by_conversation(conversation_id))

    async def _find_job(self, session: Session, conversation_id: str, args: list[str]) -> Job | str:
        if self.queue is None:
            return "💡 Background jobs are disabled."
        job_id = args[0] if args else session.metadata.get(LAST_JOB_KEY)
        if not job_id:
            return "❌ Usage: /job <id>"
        job = await self.queue.get_job(job_id)
        if job is None or job.conversation_id != conversation_id:
            return f"❌ Job not found: {job_id}"
        return job

    async def _cmd_job(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        job = await self._find_job(session, conversation_id, args)
        if isinstance(job, str):
            return job
        return format_job_status(job)

    async def _cmd_cancel(self, session: Session, conversation_id: str, rest: str, args: list[str]) -> str:
        job = await self._find_job(session, conversation_id, args)
        if isinstance(job, str):
            return job
        if await self.queue.cancel_job(job.id):
            return f"🚫 Cancelled job `{job.short_id}`"
        return f"💡 Job `{job.short_id}` already {job.status}."
