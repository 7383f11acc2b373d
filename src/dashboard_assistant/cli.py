import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dashboard_assistant.app_container import AssistantRuntime, build_runtime
from dashboard_assistant.config import DEFAULT_CONFIG_DIR, AssistantConfig, load_config
from dashboard_assistant.domain.errors import DispatchError
from dashboard_assistant.domain.sessions import UserContext
from dashboard_assistant.domain.tools import KIND_LOCAL
from dashboard_assistant.tools.catalog import all_tools

_EXIT_WORDS = {"exit", "quit", ":q"}


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(config: AssistantConfig) -> None:
    print(f"Config dir: {config.config_dir}")
    print(f"Env file: {config.env_path}")
    print(f"State DB: {config.state_db_path}")
    print(f"Execution proxy: {config.proxy_base_url}")
    print(f"Language model: {config.model_base_url if config.model_enabled else 'disabled'}")
    print(f"Snapshot interval: {config.snapshot_interval}")
    print(f"Recall limit: {config.recall_limit}")


def _user_from_args(args: argparse.Namespace) -> UserContext:
    return UserContext(user_id=args.user, user_email=args.email or "", user_name=args.name or "")


async def _run_chat(runtime: AssistantRuntime) -> int:
    orchestrator = runtime.orchestrator
    await orchestrator.initialize()
    print("Dashboard assistant. Type 'exit' to quit.")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        text = line.strip()
        if not text:
            continue
        if text.lower() in _EXIT_WORDS:
            break
        reply = await orchestrator.process_request(text)
        print(reply.response)
        if reply.suggested_actions:
            print(f"[{' | '.join(reply.suggested_actions)}]")
    return 0


async def _run_tools(runtime: AssistantRuntime) -> int:
    registry = runtime.orchestrator.registry
    await registry.initialize()
    enabled = {tool.tool_id for tool in registry.enabled_tools()}
    for tool in all_tools():
        if tool.kind == KIND_LOCAL:
            status = "builtin"
        elif tool.tool_id in enabled:
            status = "enabled"
        else:
            status = "disabled" if registry.config_for(tool.tool_id) else "-"
        granted = sorted(registry.permissions_for(tool.tool_id))
        suffix = f" granted={','.join(granted)}" if granted else ""
        print(f"{tool.tool_id:<26} {tool.kind:<16} {status:<9}{suffix}")
    return 0


async def _run_grant(runtime: AssistantRuntime, tool_id: str, actions: List[str], credential: Optional[str]) -> int:
    registry = runtime.orchestrator.registry
    await registry.initialize()
    try:
        row = await registry.grant(tool_id, credential=credential, permissions=actions)
    except DispatchError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    print(f"Granted {tool_id}: {', '.join(sorted(row.permissions)) or '(no actions)'}")
    return 0


async def _run_revoke(runtime: AssistantRuntime, tool_id: str) -> int:
    registry = runtime.orchestrator.registry
    await registry.initialize()
    if registry.get_tool(tool_id) is None:
        print(f"Unknown tool '{tool_id}'.", file=sys.stderr)
        return 2
    if not await registry.revoke(tool_id):
        print(f"{tool_id} has no grant for user {registry.user_id}; nothing to revoke.", file=sys.stderr)
        return 1
    print(f"Revoked {tool_id} (permissions kept for re-enable)")
    return 0


async def _dispatch(args: argparse.Namespace, config: AssistantConfig) -> int:
    runtime = build_runtime(config, _user_from_args(args))
    try:
        if args.command == "chat":
            return await _run_chat(runtime)
        if args.command == "tools":
            return await _run_tools(runtime)
        if args.command == "grant":
            return await _run_grant(runtime, args.tool_id, args.actions, args.credential)
        if args.command == "revoke":
            return await _run_revoke(runtime, args.tool_id)
        return 2
    finally:
        await runtime.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dashboard assistant dispatch core")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/dashboard-assistant)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--log-level", default=None, help="Override ASSISTANT_LOG_LEVEL")
    parser.add_argument("--user", default="local-user", help="User id the session acts for")
    parser.add_argument("--email", default="", help="User email passed to the model")
    parser.add_argument("--name", default="", help="User display name")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("chat", help="Interactive assistant session")
    sub.add_parser("tools", help="List catalog tools and this user's grants")
    grant = sub.add_parser("grant", help="Enable a tool and grant actions")
    grant.add_argument("tool_id")
    grant.add_argument("actions", nargs="*", help="Action ids to allow")
    grant.add_argument("--credential", default=None, help="API key for remote tools")
    revoke = sub.add_parser("revoke", help="Disable a tool (keeps its permissions)")
    revoke.add_argument("tool_id")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(Path(args.config_dir))

    _configure_logging(args.log_level or config.log_level)

    if args.print_config:
        _print_config(config)
        return
    if not args.command:
        parser.print_help()
        return

    sys.exit(asyncio.run(_dispatch(args, config)))


if __name__ == "__main__":
    main()
