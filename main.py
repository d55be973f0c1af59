#!/usr/bin/env python3
"""
SDLC Assistant - tool-using chat and chunked repository analysis.
"""

import argparse
import logging
import sys
from typing import List

from dateutil import parser as date_parser

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep assistant imports lazy (inside functions) so `--serve` does not pay
# for modes it doesn't use.
#


def format_timestamp_for_display(timestamp_str: str) -> str:
    """Format ISO timestamp to compact display format (YYYY-MM-DD HH:MMZ)."""
    if not timestamp_str:
        return "N/A"
    try:
        dt = date_parser.isoparse(timestamp_str)
        return dt.strftime("%Y-%m-%d %H:%MZ")
    except (ValueError, TypeError, AttributeError):
        return timestamp_str[:16]


async def _chat_once(session_id: str, message: str) -> str:
    from assistant.runtime import get_runtime

    rt = get_runtime()
    await rt.registry.refresh()
    result = await rt.orchestrator.handle_turn(session_id, message)
    return result.assistant_text


async def _print_history(session_id: str) -> None:
    from assistant.memory.session_store import get_session_store

    history = await get_session_store().load(session_id)
    if not history:
        print(f"No chat history for session {session_id}")
        return
    for m in history:
        print(f"[{format_timestamp_for_display(m.timestamp)}] {m.role}: {m.content}")


async def _list_tools() -> List[str]:
    from assistant.providers.tool_provider import build_tool_provider

    tools = await build_tool_provider().list_tools()
    return [f"{t.name}: {t.description}" for t in tools]


async def _analyze_repo(repo: str, *, branch: str, max_tokens: int, dry_run: bool) -> dict:
    from assistant.analysis.aggregator import ResultAggregator
    from assistant.analysis.pipeline import RepositoryAnalysisPipeline
    from assistant.providers.github_provider import normalize_repository_name

    pipeline = RepositoryAnalysisPipeline.from_env()
    name = normalize_repository_name(repo)
    if dry_run:
        prepared = await pipeline.prepare(name, branch=branch, max_tokens_per_chunk=max_tokens)
        payload = prepared.to_chunk_payload()
        # File contents make the plan unreadable on a terminal.
        for c in payload["chunks"]:
            for f in c["files"]:
                f.pop("content", None)
        return payload
    report = await pipeline.run(name, branch=branch, max_tokens_per_chunk=max_tokens)
    return ResultAggregator.render(report)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="SDLC assistant: tool-using chat and repository analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP API
  python main.py --serve --port 3000

  # One chat turn against a session
  python main.py --chat "Review the security posture of payments-api" --session demo

  # Show how a repository would be chunked (no model calls)
  python main.py --analyze-repo acme/payments-api --dry-run
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=3000, help="Server listen port (default: 3000)")

    parser.add_argument("--chat", metavar="MESSAGE", help="Send one message and print the assistant reply")
    parser.add_argument("--session", default=None, help="Session id for --chat / --history (default: policy default)")
    parser.add_argument("--history", action="store_true", help="Print the stored transcript for --session")
    parser.add_argument("--list-tools", action="store_true", help="List tools advertised by the configured providers")

    parser.add_argument("--analyze-repo", metavar="REPO", help="Run chunked SDLC analysis for a repository")
    parser.add_argument("--branch", default="main", help="Branch for --analyze-repo (default: main)")
    parser.add_argument("--max-tokens", type=int, default=100_000, help="Max tokens per chunk (default: 100000)")
    parser.add_argument("--dry-run", action="store_true", help="With --analyze-repo: print the chunk plan only")

    args = parser.parse_args()

    try:
        if args.serve:
            from assistant.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        import asyncio
        import json

        from assistant.chat.policy import load_chat_policy

        session_id = args.session or load_chat_policy().default_session_id

        if args.chat:
            print(asyncio.run(_chat_once(session_id, args.chat)))
            return

        if args.history:
            asyncio.run(_print_history(session_id))
            return

        if args.list_tools:
            for line in asyncio.run(_list_tools()):
                print(line)
            return

        if args.analyze_repo:
            out = asyncio.run(
                _analyze_repo(args.analyze_repo, branch=args.branch, max_tokens=args.max_tokens, dry_run=args.dry_run)
            )
            print(json.dumps(out, indent=2, sort_keys=False))
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
