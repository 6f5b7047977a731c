"""
Grove Sessions MCP Server

FastMCP-based server exposing the agent session registry: which coding-agent
sessions are running, in which grove and worktree, and in what state. The
same module provides the ``grove`` command line, whose ``session-*``
subcommands are what agent lifecycle hooks invoke.
"""

import argparse
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import functools
import json
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from grove.hooks import HOOK_EVENTS
from grove.poller import SessionPoller

from .context import AppContext, build_app_context
from .logging_setup import configure_logging
from .tools import register_all_tools
from .utils import HINTS, error_response

logger = logging.getLogger("grove")

DEFAULT_PORT = 8767


# =============================================================================
# Lifespan Management
# =============================================================================


@asynccontextmanager
async def app_lifespan(
    server: FastMCP,
    app_ctx: AppContext,
    poller: Optional[SessionPoller] = None,
) -> AsyncIterator[AppContext]:
    """Hand the shared context to tools and start background polling if enabled."""
    logger.info("Grove Sessions MCP Server starting (store: %s)", app_ctx.store.path)

    if poller is not None and not poller.running:
        poller.start()

    try:
        yield app_ctx
    finally:
        # The poller is a daemon thread and keeps running across per-session
        # lifespans in HTTP mode.
        logger.info("Grove Sessions MCP Server shutting down")


# =============================================================================
# FastMCP Server Factory
# =============================================================================


def create_mcp_server(
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
    enable_poller: bool = False,
    app_ctx: AppContext | None = None,
) -> FastMCP:
    """Create and configure the FastMCP server instance."""
    app_ctx = app_ctx or build_app_context()
    poller = app_ctx.poller() if enable_poller else None
    server = FastMCP(
        "Grove Sessions",
        lifespan=functools.partial(app_lifespan, app_ctx=app_ctx, poller=poller),
        host=host,
        port=port,
    )
    register_all_tools(server)
    register_resources(server)
    return server


# =============================================================================
# MCP Resources
# =============================================================================


def register_resources(server: FastMCP) -> None:
    """Register read-only session resources."""

    @server.resource("sessions://list")
    async def resource_sessions(ctx: Context[ServerSession, AppContext]) -> list[dict]:
        """All tracked sessions. A read-only alternative to list_sessions."""
        store = ctx.request_context.lifespan_context.store
        return [session.to_dict() for session in store.read().sessions]

    @server.resource("sessions://{session_id}/status")
    async def resource_session_status(
        session_id: str, ctx: Context[ServerSession, AppContext]
    ) -> dict:
        """
        Status of one tracked session.

        Args:
            session_id: Session id assigned by the agent tool
        """
        store = ctx.request_context.lifespan_context.store
        session = store.get_session(session_id)
        if session is None:
            return error_response(
                f"Session not found: {session_id}",
                hint=HINTS["session_not_found"],
            )
        return session.to_dict()


# =============================================================================
# Server Entry Point
# =============================================================================


def run_server(transport: str = "stdio", port: int = DEFAULT_PORT):
    """
    Run the MCP server.

    Args:
        transport: Transport mode - "stdio" or "streamable-http"
        port: Port for HTTP transport
    """
    log_path = configure_logging()
    if transport == "streamable-http":
        logger.info("Starting Grove Sessions MCP Server (HTTP on port %s). Logs: %s", port, log_path)
        server = create_mcp_server(host="127.0.0.1", port=port, enable_poller=True)
        server.run(transport="streamable-http")
    else:
        logger.info("Starting Grove Sessions MCP Server (stdio). Logs: %s", log_path)
        create_mcp_server().run(transport="stdio")


# =============================================================================
# Command Line
# =============================================================================

HOOK_COMMANDS = {f"session-{event}": event for event in HOOK_EVENTS}


def _read_hook_payload() -> dict:
    """Read the JSON payload agent hooks pass on stdin, if any."""
    if sys.stdin is None or sys.stdin.isatty():
        return {}
    try:
        raw = sys.stdin.read()
    except OSError:
        return {}
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON hook payload on stdin")
        return {}
    return payload if isinstance(payload, dict) else {}


def _run_hook(args: argparse.Namespace, app_ctx: AppContext) -> int:
    event = HOOK_COMMANDS[args.command]
    session_id = args.session_id
    cwd = getattr(args, "cwd", None)
    if not session_id or (event == "start" and not cwd):
        payload = _read_hook_payload()
        session_id = session_id or str(payload.get("session_id") or "")
        cwd = cwd or str(payload.get("cwd") or "")

    result = app_ctx.hooks().handle(
        event,
        session_id,
        agent_type=getattr(args, "agent_type", "claude"),
        cwd=cwd,
    )
    stream = sys.stdout if result.success else sys.stderr
    print(result.message, file=stream)
    return 0 if result.success else 1


def _run_sessions(args: argparse.Namespace, app_ctx: AppContext) -> int:
    store = app_ctx.store
    sessions = store.get_all_active_sessions() if args.running else store.read().sessions
    if args.grove:
        sessions = [s for s in sessions if s.grove_id == args.grove]
    if args.workspace:
        sessions = [s for s in sessions if s.workspace_path == args.workspace]

    if args.json:
        print(json.dumps([s.to_dict() for s in sessions], indent=2))
        return 0
    if not sessions:
        print("No sessions tracked.")
        return 0
    for session in sessions:
        running = "running" if session.is_running else "stopped"
        print(
            f"{session.status.value:<9} {running:<7} {session.agent_type.value:<7} "
            f"{session.session_id}  grove={session.grove_id or '-'}  {session.workspace_path or ''}"
        )
    return 0


def _run_reconcile(args: argparse.Namespace, app_ctx: AppContext) -> int:
    report = app_ctx.reconcile()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Added {report.added}, updated {report.updated}, removed {report.removed}.")
        for error in report.errors:
            print(f"Error: {error}", file=sys.stderr)
    return 0


def _run_setup_hooks(args: argparse.Namespace) -> int:
    from grove.setup_hooks import setup_agent_hooks, verify_agent_hooks

    if args.verify:
        result = verify_agent_hooks(args.agent_type, command=args.hook_command)
    else:
        result = setup_agent_hooks(args.agent_type, command=args.hook_command)
    stream = sys.stdout if result.success else sys.stderr
    print(result.message, file=stream)
    for detail in result.details:
        print(f"  {detail}", file=stream)
    return 0 if result.success else 1


def _run_config(args: argparse.Namespace, config_parser: argparse.ArgumentParser) -> int:
    from grove.config import init_config, render_config_json
    from grove.errors import ConfigError

    try:
        if args.config_command == "init":
            print(init_config(force=args.force))
        elif args.config_command == "show":
            print(render_config_json())
        else:
            config_parser.print_help()
            return 2
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> tuple[argparse.ArgumentParser, argparse.ArgumentParser]:
    parser = argparse.ArgumentParser(description="Grove agent session tracking")
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run the MCP server in HTTP mode (streamable-http) instead of stdio",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Port for HTTP mode (default: {DEFAULT_PORT})",
    )
    subparsers = parser.add_subparsers(dest="command")

    for name, event in HOOK_COMMANDS.items():
        hook_parser = subparsers.add_parser(name, help=f"Record a session {event} hook")
        hook_parser.add_argument(
            "--session-id",
            default=None,
            help="Agent session id (read from the hook payload on stdin if omitted)",
        )
        if event == "start":
            hook_parser.add_argument(
                "--agent-type",
                default="claude",
                help="Agent type: claude, gemini, codex or custom (default: claude)",
            )
            hook_parser.add_argument(
                "--cwd",
                default=None,
                help="Session working directory (read from stdin payload if omitted)",
            )

    sessions_parser = subparsers.add_parser("sessions", help="List tracked sessions")
    sessions_parser.add_argument("--grove", default=None, help="Only sessions in this grove id")
    sessions_parser.add_argument("--workspace", default=None, help="Only sessions in this directory")
    sessions_parser.add_argument(
        "--running", action="store_true", help="Only running, not-ended sessions"
    )
    sessions_parser.add_argument("--json", action="store_true", help="Print JSON")

    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Rescan agent logs and update the session registry"
    )
    reconcile_parser.add_argument("--json", action="store_true", help="Print JSON")

    hooks_parser = subparsers.add_parser(
        "setup-hooks", help="Install grove lifecycle hooks into an agent's settings"
    )
    hooks_parser.add_argument("--agent-type", default="claude", help="Agent type (default: claude)")
    hooks_parser.add_argument(
        "--verify", action="store_true", help="Only report whether hooks are installed"
    )
    hooks_parser.add_argument(
        "--command",
        dest="hook_command",
        default="grove",
        help="Command the hooks should invoke (default: grove)",
    )

    config_parser = subparsers.add_parser("config", help="Manage grove configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    init_parser = config_subparsers.add_parser("init", help="Write default config to disk")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing config file")
    config_subparsers.add_parser("show", help="Show effective config (file + env overrides)")

    return parser, config_parser


def main(argv: list[str] | None = None):
    """CLI entry point with argument parsing."""
    parser, config_parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        if args.http:
            run_server(transport="streamable-http", port=args.port)
        else:
            run_server(transport="stdio")
        return

    if args.command == "config":
        code = _run_config(args, config_parser)
    elif args.command == "setup-hooks":
        code = _run_setup_hooks(args)
    else:
        try:
            configure_logging(rotate=False)
        except OSError as exc:
            print(f"Warning: file logging unavailable: {exc}", file=sys.stderr)
        app_ctx = build_app_context()
        if args.command in HOOK_COMMANDS:
            code = _run_hook(args, app_ctx)
        elif args.command == "sessions":
            code = _run_sessions(args, app_ctx)
        else:
            code = _run_reconcile(args, app_ctx)

    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
