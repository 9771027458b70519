# backend/compass/cli.py
"""
compass validate FILE...     check flow JSON files, exit 1 on any error
compass play FLOW_TYPE       walk a built-in flow in the terminal
compass analyze TEXT         print the triage for a piece of text
compass serve                run the HTTP API under uvicorn
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from compass.core.config import get_settings
from compass.core.errors import CompassError, ImportFailed
from compass.core.logging import setup_logging
from compass.domain.crisis import triage
from compass.domain.flows.graph import FlowType, parse_flow
from compass.domain.flows.runner import EventKind, FlowRunner, RunnerEvent
from compass.domain.flows.state import RunnerState
from compass.domain.flows.validator import FlowValidator


def cmd_validate(paths: Sequence[str]) -> int:
    validator = FlowValidator()
    failed = False
    for p in paths:
        path = Path(p)
        try:
            graph = parse_flow(path.read_text(encoding="utf-8"))
        except (OSError, ImportFailed) as e:
            print(f"{path}: cannot load: {e}")
            failed = True
            continue
        issues = validator.validate(graph)
        errors = [i for i in issues if i.is_error]
        print(f"{path}: {graph.id or '<no id>'} - {len(errors)} error(s), {len(issues) - len(errors)} warning(s)")
        for issue in issues:
            where = f" [{issue.node_id}]" if issue.node_id else ""
            detail = f": {issue.detail}" if issue.detail else ""
            print(f"  {issue.severity.value:7} {issue.code.value}{where}{detail}")
        failed = failed or bool(errors)
    return 1 if failed else 0


def _print_event(event: RunnerEvent) -> None:
    if event.kind is EventKind.MESSAGE and event.message and not event.message.from_user:
        print(f"  {event.message.text}")
    elif event.kind is EventKind.OPTIONS:
        for i, option in enumerate(event.options, 1):
            print(f"    {i}) {option.text}")


async def _play(flow_type: str, reveal_delay: Optional[float]) -> int:
    runner = FlowRunner(reveal_delay=reveal_delay, auto_advance_pause=reveal_delay)
    runner.subscribe(_print_event)
    await runner.start(flow_type)
    await runner.settle()

    while runner.state is RunnerState.AWAITING_INPUT:
        raw = (await asyncio.to_thread(input, "> ")).strip()
        if raw.lower() in {"q", "quit", "exit"}:
            await runner.close()
            return 0
        try:
            if raw.isdigit() and 1 <= int(raw) <= len(runner.options):
                await runner.select_option(int(raw) - 1)
            else:
                result = await runner.respond(raw)
                if not result.is_valid:
                    print(f"  ({result.code.value})")
        except CompassError as e:
            print(f"  ({e.code}) {e}")
        await runner.settle()

    if runner.state is RunnerState.ERROR:
        return 1
    return 0


def cmd_analyze(text: str) -> int:
    print(json.dumps(triage(text).to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_serve(host: str, port: int) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "compass.interfaces.http.main:app",
        host=host,
        port=port,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="compass")
    sub = parser.add_subparsers(dest="command", required=True)

    p_val = sub.add_parser("validate", help="Validate flow JSON files")
    p_val.add_argument("paths", nargs="+")

    p_play = sub.add_parser("play", help="Play a built-in flow in the terminal")
    p_play.add_argument("flow_type", choices=[t.value for t in FlowType if t is not FlowType.CUSTOM])
    p_play.add_argument("--delay", type=float, default=None, help="Seconds between messages")

    p_an = sub.add_parser("analyze", help="Triage a piece of text")
    p_an.add_argument("text", nargs="+")

    p_srv = sub.add_parser("serve", help="Run the HTTP API")
    p_srv.add_argument("--host", default="0.0.0.0")
    p_srv.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    if args.command == "validate":
        return cmd_validate(args.paths)
    if args.command == "play":
        return asyncio.run(_play(args.flow_type, args.delay))
    if args.command == "serve":
        return cmd_serve(args.host, args.port)
    return cmd_analyze(" ".join(args.text))


if __name__ == "__main__":
    sys.exit(main())
