#!/usr/bin/env python3

# Entry of minish

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Iterator, Optional

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

PROMPT = "minish> "
CONTINUATION_PROMPT = "... "
HEREDOC_PROMPT = "heredoc> "

from blocks import BlockCollector, read_heredoc  # local modules in the same folder
from cmdparse import contains_heredoc, parse_heredoc_header
from evaluator import execute_line, execute_with_input
from jobs import DEFAULT_MAX_WORKERS
from session import ShellSession, default_history_file

log = logging.getLogger("minish")

LOG_FORMAT = "[%(levelname)s %(name)s] %(message)s"


def setup_logging(debug: bool = False) -> None:
    level_name = os.environ.get("MINISH_LOG")
    level = logging.DEBUG if debug else logging.WARNING
    if level_name:
        level = getattr(logging, level_name.upper(), level)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    log.debug("Logging configured at %s", logging.getLevelName(level))


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass


def max_jobs_from_env() -> int:
    raw = os.environ.get("MINISH_MAX_JOBS")
    if not raw:
        return DEFAULT_MAX_WORKERS
    try:
        return max(1, int(raw))
    except ValueError:
        log.warning("Ignoring invalid MINISH_MAX_JOBS=%r", raw)
        return DEFAULT_MAX_WORKERS


def submit(text: str, session: ShellSession, next_line: Callable[[], Optional[str]]) -> int:
    """Run one complete command, reading a heredoc body through ``next_line`` if needed."""
    if contains_heredoc(text):
        header = parse_heredoc_header(text)
        if header is not None:
            command, delimiter, strip_tabs = header
            log.debug("Heredoc header: cmd=%r delimiter=%r strip_tabs=%s", command, delimiter, strip_tabs)
            body = read_heredoc(delimiter, strip_tabs, next_line)
            return execute_with_input(command, body, session)
    return execute_line(text, session)


def guarded_submit(text: str, session: ShellSession, next_line: Callable[[], Optional[str]]) -> int:
    """submit() that reports any unexpected failure instead of ending the session."""
    try:
        return submit(text, session, next_line)
    except Exception as e:
        log.debug("Unhandled error for %r", text, exc_info=True)
        print(f"minish: parse/exec error: {e}", file=sys.stderr)
        return 1


def repl(session: ShellSession) -> int:
    setup_readline()
    collector = BlockCollector()

    def heredoc_line() -> Optional[str]:
        try:
            return input(HEREDOC_PROMPT)
        except EOFError:
            return None

    last_exit = 0
    while True:
        try:
            line = input(CONTINUATION_PROMPT if collector.incomplete else PROMPT)
        except EOFError:
            # Ctrl-D -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C -> drop the pending block and prompt again
            print()
            collector.reset()
            continue

        if collector.add_line(line):
            continue
        text = collector.complete_command()
        collector.reset()
        if not text.strip():
            continue

        last_exit = guarded_submit(text, session, heredoc_line)
        if session.exit_requested:
            print("good bye")
            break
    return last_exit


def run_script(path: Path, session: ShellSession) -> int:
    if not path.exists():
        print(f"Error: Script file {path} not found", file=sys.stderr)
        return 1
    lines: Iterator[str] = iter(path.read_text(encoding="utf-8").splitlines())

    def heredoc_line() -> Optional[str]:
        return next(lines, None)

    collector = BlockCollector()
    last_exit = 0
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if collector.add_line(line):
            continue
        text = collector.complete_command()
        collector.reset()
        last_exit = guarded_submit(text, session, heredoc_line)
        if session.exit_requested:
            print("good bye")
            return last_exit

    if collector.incomplete:
        print("Error: Incomplete block structure at end of file", file=sys.stderr)
        return 1
    return last_exit


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="minish - a small interactive command interpreter with builtin commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  minish                  # interactive session
  minish script.msh       # run a script file
  minish --debug          # log debug output to stderr

Environment:
  MINISH_HISTFILE   history file (default .minish_history)
  MINISH_LOG        log level name, overrides --debug
  MINISH_MAX_JOBS   background worker threads (default 8)
"""
    )

    parser.add_argument("script", nargs="?", help="script file to run instead of the interactive prompt")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")

    return parser.parse_args(args)


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(args.debug)
    session = ShellSession(history_file=default_history_file(), max_jobs=max_jobs_from_env())
    try:
        session.load_history()
    except OSError as e:
        log.warning("Could not load history: %s", e)

    if args.script:
        rc = run_script(Path(args.script), session)
    else:
        rc = repl(session)

    try:
        session.save_history()
    except OSError as e:
        log.warning("Could not save history: %s", e)
    sys.exit(rc)


if __name__ == "__main__":
    main()
