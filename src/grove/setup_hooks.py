"""
Install grove's lifecycle hooks into an agent tool's settings.

For Claude Code this adds command hooks to ``~/.claude/settings.json`` that
call ``grove session-<event>``. Claude passes the hook payload (including
``session_id`` and ``cwd``) on stdin, which the CLI reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import shutil

from .sessions import AgentType

logger = logging.getLogger("grove")

DEFAULT_COMMAND = "grove"

# Claude hook event -> grove CLI subcommand.
CLAUDE_HOOK_EVENTS = {
    "SessionStart": "session-start --agent-type claude",
    "Stop": "session-idle",
    "Notification": "session-attention",
    "SessionEnd": "session-end",
}


@dataclass
class SetupHooksResult:
    success: bool
    message: str
    details: list[str] = field(default_factory=list)


def default_claude_settings_path() -> Path:
    return Path.home() / ".claude" / "settings.json"


def _hook_marker(command: str) -> str:
    return f"{command} session-"


def _has_grove_hook(entries: list, marker: str) -> bool:
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for hook in entry.get("hooks") or []:
            if (
                isinstance(hook, dict)
                and hook.get("type") == "command"
                and marker in str(hook.get("command") or "")
            ):
                return True
    return False


def _read_settings(settings_path: Path) -> tuple[dict | None, SetupHooksResult | None]:
    if not settings_path.exists():
        return None, SetupHooksResult(
            False,
            "Claude Code settings not found",
            [
                f"Expected location: {settings_path}",
                "Make sure Claude Code is installed and has been run at least once.",
            ],
        )
    try:
        settings = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        return None, SetupHooksResult(False, "Failed to read Claude Code settings", [str(exc)])
    if not isinstance(settings, dict):
        return None, SetupHooksResult(
            False, "Failed to read Claude Code settings", ["Settings file is not a JSON object"]
        )
    return settings, None


def setup_claude_hooks(
    settings_path: Path | None = None,
    command: str = DEFAULT_COMMAND,
) -> SetupHooksResult:
    """Merge grove's hooks into Claude Code settings, backing up the original."""
    settings_path = settings_path or default_claude_settings_path()
    settings, failure = _read_settings(settings_path)
    if failure is not None:
        return failure

    hooks = settings.setdefault("hooks", {})
    if not isinstance(hooks, dict):
        return SetupHooksResult(
            False, "Failed to read Claude Code settings", ["'hooks' is not an object"]
        )

    marker = _hook_marker(command)
    added: list[str] = []
    skipped: list[str] = []
    for event, subcommand in CLAUDE_HOOK_EVENTS.items():
        entries = hooks.setdefault(event, [])
        if not isinstance(entries, list):
            skipped.append(event)
            continue
        if _has_grove_hook(entries, marker):
            skipped.append(event)
            continue
        entries.append(
            {
                "matcher": "*",
                "hooks": [{"type": "command", "command": f"{command} {subcommand}"}],
            }
        )
        added.append(event)

    backup_path = settings_path.with_name(settings_path.name + ".backup")
    try:
        shutil.copyfile(settings_path, backup_path)
        settings_path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to write Claude settings %s: %s", settings_path, exc)
        return SetupHooksResult(False, "Failed to write Claude Code settings", [str(exc)])

    details: list[str] = []
    if added:
        details.append(f"Added hooks: {', '.join(added)}")
    if skipped:
        details.append(f"Already configured: {', '.join(skipped)}")
    details.append(f"Backup saved to: {backup_path}")
    logger.info("Configured Claude hooks in %s (added=%s)", settings_path, added)
    return SetupHooksResult(True, "Claude Code hooks configured successfully!", details)


def verify_claude_hooks(
    settings_path: Path | None = None,
    command: str = DEFAULT_COMMAND,
) -> SetupHooksResult:
    """Report which of grove's hooks are present in Claude Code settings."""
    settings_path = settings_path or default_claude_settings_path()
    settings, failure = _read_settings(settings_path)
    if failure is not None:
        return failure

    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}
    marker = _hook_marker(command)
    configured = [
        event
        for event in CLAUDE_HOOK_EVENTS
        if isinstance(hooks.get(event), list) and _has_grove_hook(hooks[event], marker)
    ]
    missing = [event for event in CLAUDE_HOOK_EVENTS if event not in configured]
    details = []
    if configured:
        details.append(f"Configured: {', '.join(configured)}")
    if missing:
        details.append(f"Missing: {', '.join(missing)}")
    if missing:
        return SetupHooksResult(False, "Claude Code hooks are incomplete", details)
    return SetupHooksResult(True, "Claude Code hooks are configured", details)


def setup_agent_hooks(
    agent_type: AgentType | str,
    settings_path: Path | None = None,
    command: str = DEFAULT_COMMAND,
) -> SetupHooksResult:
    try:
        agent = AgentType(agent_type)
    except ValueError:
        return SetupHooksResult(False, f"Unknown agent type: {agent_type}")
    if agent == AgentType.CLAUDE:
        return setup_claude_hooks(settings_path, command)
    return SetupHooksResult(
        False,
        f"{agent.value} hooks not yet implemented",
        ["Only Claude Code reports lifecycle hooks to grove today."],
    )


def verify_agent_hooks(
    agent_type: AgentType | str,
    settings_path: Path | None = None,
    command: str = DEFAULT_COMMAND,
) -> SetupHooksResult:
    try:
        agent = AgentType(agent_type)
    except ValueError:
        return SetupHooksResult(False, f"Unknown agent type: {agent_type}")
    if agent == AgentType.CLAUDE:
        return verify_claude_hooks(settings_path, command)
    return SetupHooksResult(False, f"{agent.value} hooks not yet implemented")
