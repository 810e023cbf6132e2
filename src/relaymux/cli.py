from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import __version__
from .contracts.v1 import DispatchResult
from .kernel import ansi, relay_parser
from .kernel.directory import PaneNotFoundError, load_workspace_file
from .kernel.dispatch_log import FileDispatchLog
from .kernel.settings import get_relay_settings
from .relay.dispatch import DISPATCH_FAILED_STATUS, DispatchError, DispatchOrchestrator, format_status
from .runners import tmux
from .util.obslog import setup_root_json_logging
from .util.time import format_clock


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _split_ids(raw: str) -> List[str]:
    return [p for p in raw.replace(",", " ").split() if p]


def cmd_strip(_: argparse.Namespace) -> int:
    sys.stdout.write(ansi.strip(sys.stdin.read()))
    sys.stdout.flush()
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    path = Path(args.workspace).expanduser()
    try:
        directory = load_workspace_file(path)
    except (OSError, ValueError) as e:
        _print_json({"ok": False, "error": f"cannot load workspace file: {e}"})
        return 2

    parsed = relay_parser.parse(args.line, args.source, directory)
    if parsed is None:
        _print_json({"ok": False})
        return 1
    _print_json({"ok": True, "result": parsed.model_dump()})
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    s = get_relay_settings()
    limit = args.limit if args.limit is not None else s.log_preview
    if limit < 0:
        _print_json({"ok": False, "error": "--limit must be >= 0"})
        return 2
    store = FileDispatchLog(keep_last=s.log_keep_last)
    entries = store.logs_for(args.parent, limit=limit)
    if args.text:
        for e in entries:
            result = DispatchResult(success_pane_ids=e.success_pane_ids, failed_pane_ids=e.failed_pane_ids)
            print(f"{format_clock(e.created_at)} {e.status} {format_status(result, e.command)}")
        return 0
    _print_json({"ok": True, "result": {"entries": [e.model_dump() for e in entries]}})
    return 0


def _tmux_source(explicit: str) -> Optional[str]:
    return (explicit or "").strip() or tmux.current_pane()


def cmd_tmux_send(args: argparse.Namespace) -> int:
    source = _tmux_source(args.source)
    if not source:
        _print_json({"ok": False, "error": "not inside tmux (set --source)"})
        return 2

    directory = tmux.TmuxDirectory()
    parsed = relay_parser.parse(args.line, source, directory)
    if parsed is None:
        _print_json({"ok": False, "error": "not a relay line"})
        return 1

    s = get_relay_settings()
    orchestrator = DispatchOrchestrator(
        tmux.TmuxSessionWriter(),
        FileDispatchLog(keep_last=s.log_keep_last),
        directory=directory,
        line_terminator=s.line_terminator,
        max_workers=s.dispatch_workers,
    )
    try:
        result = orchestrator.dispatch_and_wait(source, parsed.targets, parsed.command)
    except DispatchError:
        print(s.status_prefix + DISPATCH_FAILED_STATUS)
        return 1
    finally:
        orchestrator.shutdown()

    print(s.status_prefix + format_status(result, parsed.command))
    return 0 if result.failed == 0 else 1


def cmd_tmux_targets(args: argparse.Namespace) -> int:
    source = _tmux_source(args.source)
    if not source:
        _print_json({"ok": False, "error": "not inside tmux (set --source)"})
        return 2

    directory = tmux.TmuxDirectory()
    try:
        if args.clear:
            targets = directory.set_managed_targets(source, [])
        elif args.set is not None:
            targets = directory.set_managed_targets(source, _split_ids(args.set))
        else:
            targets = directory.managed_targets(source)
    except PaneNotFoundError:
        _print_json({"ok": False, "error": f"pane not found: {source}"})
        return 2
    except RuntimeError as e:
        _print_json({"ok": False, "error": str(e)})
        return 2
    _print_json({"ok": True, "result": {"pane_id": source, "targets": targets}})
    return 0


def cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="relaymux", description="Relay @-addressed commands between terminal panes")
    p.add_argument("--log-level", default="WARNING", help="Log level for stderr JSONL logs (default: WARNING)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_strip = sub.add_parser("strip", help="Strip ANSI CSI/OSC sequences from stdin")
    p_strip.set_defaults(func=cmd_strip)

    p_parse = sub.add_parser("parse", help="Parse a relay line against a workspace file (dry run)")
    p_parse.add_argument("line", help='Relay line, e.g. "@2,3 make test"')
    p_parse.add_argument("--workspace", required=True, help="Workspace YAML file")
    p_parse.add_argument("--source", required=True, help="Pane id the line was typed in")
    p_parse.set_defaults(func=cmd_parse)

    p_logs = sub.add_parser("logs", help="Show recorded dispatches of a parent pane (newest first)")
    p_logs.add_argument("--parent", required=True, help="Parent pane id")
    p_logs.add_argument("-n", "--limit", type=int, default=None, help="Show at most N entries (default: relay.log_preview)")
    p_logs.add_argument("--text", action="store_true", help="One line per entry instead of JSON")
    p_logs.set_defaults(func=cmd_logs)

    p_tmux = sub.add_parser("tmux", help="Relay between panes of the current tmux window")
    tmux_sub = p_tmux.add_subparsers(dest="action", required=True)

    p_send = tmux_sub.add_parser("send", help="Relay a line from a tmux pane")
    p_send.add_argument("line", help='Relay line, e.g. "@all git pull"')
    p_send.add_argument("--source", default="", help="Source pane id (default: $TMUX_PANE)")
    p_send.set_defaults(func=cmd_tmux_send)

    p_targets = tmux_sub.add_parser("targets", help="Show or edit the @all receivers of a tmux pane")
    p_targets.add_argument("--source", default="", help="Source pane id (default: $TMUX_PANE)")
    mode = p_targets.add_mutually_exclusive_group()
    mode.add_argument("--set", default=None, help="Comma-separated pane ids (e.g. %%3,%%4)")
    mode.add_argument("--clear", action="store_true", help="Remove the list (then @all means every sibling)")
    p_targets.set_defaults(func=cmd_tmux_targets)

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_root_json_logging(component="cli", level=args.log_level)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
