"""Vercel CLI deployments and project scanning."""

import json
import os
import re
import shutil
from pathlib import Path

from loguru import logger

from droidgram.autonomy.config import VercelConfig
from droidgram.deploy.types import DeployResult, DeployTarget, ProjectScan
from droidgram.exec.sandbox import exec_env, run_argv
from droidgram.utils.helpers import redact_secrets

BUILD_DIR_CANDIDATES = ["dist", "build", "out", "public", ".next", "_site", "www", "_build"]

URL_PATTERN = re.compile(r"https://[^\s]+\.vercel\.app")
INSPECTOR_PATTERN = re.compile(r"https://vercel\.com/[^\s]+")
DEPLOYMENT_ID_PATTERN = re.compile(r"dpl_[a-zA-Z0-9]+")

DEFAULT_TIMEOUT = 180.0
DEBUG_TIMEOUT = 300.0

# Output-folder markers, checked inside the build dir and the project root
FOLDER_MARKERS = {
    "_next": "Next.js",
    "_nuxt": "Nuxt",
    "_astro": "Astro",
    ".svelte-kit": "SvelteKit",
}

# package.json dependency -> framework, most specific first
DEPENDENCY_FRAMEWORKS = [
    ("next", "Next.js"),
    ("nuxt", "Nuxt"),
    ("@sveltejs/kit", "SvelteKit"),
    ("astro", "Astro"),
    ("gatsby", "Gatsby"),
    ("solid-start", "Solid"),
    ("@angular/core", "Angular"),
    ("react-scripts", "Create React App"),
    ("vite", "Vite"),
    ("vue", "Vue"),
]

# Framework display name -> vercel.json "framework" slug
VERCEL_FRAMEWORK_SLUGS = {
    "Next.js": "nextjs",
    "Nuxt": "nuxtjs",
    "Vite": "vite",
    "Create React App": "create-react-app",
    "Gatsby": "gatsby",
    "Astro": "astro",
    "SvelteKit": "sveltekit",
    "Vue": "vue",
    "Angular": "angular",
    "Solid": "solidstart",
}


def get_vercel_token(config: VercelConfig, default_token: str | None = None) -> str | None:
    """User token first, then the operator default when allowed."""
    if config.token:
        return config.token
    if config.use_default_token:
        return default_token or os.environ.get("VERCEL_TOKEN") or None
    return None


def build_vercel_command(build_dir: str, config: VercelConfig, target: DeployTarget = "preview") -> list[str]:
    """Build the vercel CLI argument vector."""
    argv = ["vercel", build_dir, "--yes"]

    if target == "production":
        argv.append("--prod")
    if config.org_id:
        argv.extend(["--scope", config.org_id])
    if config.debug:
        argv.append("--debug")
    if config.archive:
        argv.append("--archive=tgz")
    if config.prebuilt:
        argv.append("--prebuilt")
    if config.no_wait:
        argv.append("--no-wait")
    if config.force:
        argv.append("--force")
    if config.regions:
        argv.extend(["--regions", ",".join(config.regions)])
    for key, value in config.build_env.items():
        argv.extend(["--build-env", f"{key}={value}"])
    for key, value in config.runtime_env.items():
        argv.extend(["--env", f"{key}={value}"])
    for key, value in config.meta.items():
        argv.extend(["--meta", f"{key}={value}"])

    return argv


def parse_vercel_output(output: str) -> tuple[str | None, str | None, str | None]:
    """Extract (url, inspector_url, deployment_id) from CLI output."""
    url = URL_PATTERN.search(output)
    inspector = INSPECTOR_PATTERN.search(output)
    deployment_id = DEPLOYMENT_ID_PATTERN.search(output)
    return (
        url.group(0) if url else None,
        inspector.group(0) if inspector else None,
        deployment_id.group(0) if deployment_id else None,
    )


def read_package_json(cwd: str | Path) -> dict | None:
    """Parse package.json, or None if missing or invalid."""
    path = Path(cwd) / "package.json"
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Unreadable package.json in {cwd}: {e}")
        return None


def detect_framework(cwd: str | Path, build_dir: str | None = None) -> str | None:
    """Guess the framework from output folders, then package.json dependencies."""
    root = Path(cwd)
    for directory in filter(None, [root / build_dir if build_dir else None, root]):
        for marker, framework in FOLDER_MARKERS.items():
            if (directory / marker).exists():
                return framework

    package = read_package_json(root)
    if package:
        deps = {**package.get("dependencies", {}), **package.get("devDependencies", {})}
        for dependency, framework in DEPENDENCY_FRAMEWORKS:
            if dependency in deps:
                return framework
    return None


def detect_build_dir(cwd: str | Path) -> str | None:
    """First existing build output folder, "." for a bare static site, else None."""
    root = Path(cwd)
    for candidate in BUILD_DIR_CANDIDATES:
        if (root / candidate).is_dir():
            return candidate
    if (root / "index.html").exists():
        return "."
    return None


def scan_project(cwd: str | Path) -> ProjectScan:
    """Summarize what could be deployed from cwd."""
    root = Path(cwd)
    candidates = [c for c in BUILD_DIR_CANDIDATES if (root / c).is_dir()]
    if (root / "index.html").exists():
        candidates.insert(0, ".")
    build_dir = detect_build_dir(root)
    return ProjectScan(
        framework=detect_framework(root, build_dir if build_dir != "." else None),
        build_dir=build_dir,
        candidates=candidates,
        has_package_json=(root / "package.json").exists(),
        has_vercel_config=(root / "vercel.json").exists(),
    )


def _no_build_dir_message(cwd: Path) -> str:
    scan = scan_project(cwd)
    msg = "❌ No deployable directory found.\n\n"
    if scan.candidates:
        msg += "📁 Available directories:\n"
        msg += "".join(f"  • {d}\n" for d in scan.candidates)
        msg += "\nUse: /deploy <directory>"
    else:
        msg += (
            "💡 Options:\n"
            "  • Run your build: npm run build\n"
            "  • Deploy current dir: /deploy .\n"
            "  • Specify folder: /deploy dist"
        )
    return msg


def _failure_message(output: str, build_dir: str, debug: bool) -> str:
    msg = "❌ Vercel deploy failed\n\n"
    if "Invalid token" in output or "401" in output:
        msg += "🔑 Invalid or expired token.\n\nGet a new token: https://vercel.com/account/tokens"
    elif "rate limit" in output.lower() or "429" in output:
        msg += "⏱️ Rate limited. Wait a few minutes and try again."
    elif "ETIMEDOUT" in output or "ECONNRESET" in output:
        msg += f"🌐 Network error. Check your connection.\n\nRetry: /deploy {build_dir}".rstrip()
    elif debug and output:
        msg += f"📊 Debug:\n```\n{redact_secrets(output[:1500])}\n```"
    else:
        tail = redact_secrets(output.strip()[-500:]) if output.strip() else "(no output)"
        msg += f"{tail}\n\n💡 Enable debug output in your autonomy preview settings"
    return msg


async def deploy_vercel(
    cwd: str,
    build_dir: str,
    config: VercelConfig,
    target: DeployTarget = "preview",
    token: str | None = None,
    timeout: float | None = None,
) -> DeployResult:
    """Deploy a directory with the Vercel CLI."""
    if not shutil.which("vercel"):
        return DeployResult(
            success=False,
            message="❌ Vercel CLI not installed.\n\nInstall: npm install -g vercel",
            target=target,
        )

    token = token or get_vercel_token(config)
    if not token:
        return DeployResult(
            success=False,
            message=(
                "❌ Vercel requires authentication.\n\n"
                "Set DROIDGRAM_DEPLOY__VERCEL_TOKEN or add a token to your autonomy settings.\n"
                "Get token: https://vercel.com/account/tokens"
            ),
            target=target,
        )

    root = Path(cwd)
    if build_dir in (".", "./"):
        full_path = root
    elif build_dir:
        full_path = (root / build_dir).resolve()
    else:
        detected = detect_build_dir(root)
        if not detected:
            return DeployResult(success=False, message=_no_build_dir_message(root), target=target)
        full_path = (root / detected).resolve()

    if not full_path.exists():
        return DeployResult(
            success=False,
            message=(
                f"❌ Directory not found: {build_dir or 'auto-detect failed'}\n\n"
                "💡 Run your build first: npm run build"
            ),
            target=target,
        )

    argv = build_vercel_command(str(full_path), config, target)
    env = exec_env()
    env["VERCEL_TOKEN"] = token
    timeout = timeout or (DEBUG_TIMEOUT if config.debug else DEFAULT_TIMEOUT)
    logger.info(f"Vercel deploy ({target}) of {full_path}, timeout {timeout:g}s")

    try:
        exit_code, stdout, stderr, timed_out = await run_argv(argv, cwd, timeout, env=env)
    except OSError as e:
        return DeployResult(success=False, message=f"❌ Failed to start vercel: {e}", target=target)

    output = redact_secrets(stdout + stderr)

    if timed_out:
        return DeployResult(
            success=False,
            message=f"❌ Vercel deploy timed out after {timeout:g}s",
            target=target,
            debug_output=output + f"\nDeployment timed out after {timeout:g}s",
        )

    if exit_code != 0:
        logger.warning(f"Vercel deploy failed with exit {exit_code}")
        return DeployResult(
            success=False,
            message=_failure_message(output, build_dir, config.debug),
            target=target,
            debug_output=output,
        )

    url, inspector_url, deployment_id = parse_vercel_output(output)
    msg = f"✅ Deployed to Vercel!\n\n🎯 Target: {target.upper()}\n"
    if url:
        msg += f"🔗 URL: {url}\n"
    if inspector_url:
        msg += f"🔍 Inspector: {inspector_url}\n"
    if deployment_id:
        msg += f"📋 ID: {deployment_id}\n"
    if config.debug:
        msg += f"\n📊 Debug Output:\n```\n{output[:2000]}\n```"

    return DeployResult(
        success=True,
        message=msg.rstrip(),
        url=url,
        inspector_url=inspector_url,
        deployment_id=deployment_id,
        target=target,
        debug_output=output if config.debug else None,
    )
