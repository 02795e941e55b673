"""
Self-healing deployment.

Attempt -> (success: done) | (failure: diagnose -> (fixable: fix -> attempt)
| (not fixable or retries exhausted: done, failed)).

The loop is bounded: at most max_retries + 1 deploy attempts, and a
failed fix ends it immediately.
"""

from loguru import logger

from droidgram.autonomy.config import VercelConfig
from droidgram.deploy.diagnosis import diagnose_error, format_analysis
from droidgram.deploy.fixes import attempt_auto_fix
from droidgram.deploy.types import DeployTarget, FixAction, FixResult, SelfHealingResult
from droidgram.deploy.vercel import DEBUG_TIMEOUT, deploy_vercel


async def self_healing_deploy(
    cwd: str,
    build_dir: str,
    vercel_config: VercelConfig,
    target: DeployTarget = "preview",
    max_retries: int = 2,
    token: str | None = None,
) -> SelfHealingResult:
    """Deploy to Vercel, diagnosing and fixing failures between attempts."""
    # Debug output feeds the diagnosis
    config = vercel_config.model_copy(update={"debug": True})
    max_retries = max(0, max_retries)
    fixes: list[FixResult] = []
    fix_applied: str | None = None
    diagnosis = None
    timeout: float | None = None
    attempt = 0

    while attempt <= max_retries:
        logger.info(f"Deploy attempt {attempt + 1}/{max_retries + 1} for {cwd}")
        result = await deploy_vercel(cwd, build_dir, config, target, token=token, timeout=timeout)

        if result.success:
            message = result.message
            if attempt:
                message += f"\n\n🔧 Self-healed after {attempt} retr{'y' if attempt == 1 else 'ies'}"
                if fix_applied:
                    message += f" ({fix_applied})"
            return SelfHealingResult(
                success=True,
                message=message,
                url=result.url,
                inspector_url=result.inspector_url,
                diagnosis=diagnosis,
                fix_applied=fix_applied,
                retry_count=attempt,
                fixes_attempted=fixes,
            )

        diagnosis = diagnose_error(result.debug_output or "", result.message)
        logger.warning(
            f"Deploy attempt {attempt + 1} failed: {diagnosis.category} "
            f"({diagnosis.confidence}%), auto-fixable={diagnosis.auto_fixable}"
        )

        if not diagnosis.auto_fixable:
            return SelfHealingResult(
                success=False,
                message=f"{result.message}\n\n{format_analysis(diagnosis)}",
                diagnosis=diagnosis,
                fix_applied=fix_applied,
                retry_count=attempt,
                fixes_attempted=fixes,
            )

        if attempt == max_retries:
            break

        fix = await attempt_auto_fix(cwd, diagnosis, build_dir)
        fixes.append(fix)
        if not fix.success:
            return SelfHealingResult(
                success=False,
                message=(
                    f"{result.message}\n\n{format_analysis(diagnosis, fix)}\n\n"
                    "Auto-fix failed, stopping."
                ),
                diagnosis=diagnosis,
                fix_applied=fix_applied,
                retry_count=attempt,
                fixes_attempted=fixes,
            )

        fix_applied = fix.message
        if fix.action is FixAction.EXTEND_TIMEOUT:
            timeout = (timeout or DEBUG_TIMEOUT) * 2
        attempt += 1

    return SelfHealingResult(
        success=False,
        message=(
            f"❌ Deployment failed after {max_retries + 1} attempts\n\n"
            f"{format_analysis(diagnosis)}"
        ),
        diagnosis=diagnosis,
        fix_applied=fix_applied,
        retry_count=attempt,
        fixes_attempted=fixes,
    )
