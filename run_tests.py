#!/usr/bin/env python3
"""
Self-contained smoke test runner with no external dependencies.
It exercises the interpreter in a temporary sandbox using only the stdlib.

Exit code 0 on success; non-zero with a brief failure summary otherwise.
"""

from __future__ import annotations

import io
import os
import sys
import tempfile
import shutil
from pathlib import Path

# Allow importing from src/
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from evaluator import execute_line  # type: ignore
from session import ShellSession  # type: ignore


# --- Simple color utilities (no deps) ---
def _use_color() -> bool:
    return sys.stdout.isatty() and os.environ.get("NO_COLOR") is None


def _c(code: str, text: str) -> str:
    if not _use_color():
        return text
    return f"\033[{code}m{text}\033[0m"


def green(s: str) -> str: return _c("32", s)
def red(s: str) -> str: return _c("31", s)
def yellow(s: str) -> str: return _c("33", s)
def bold(s: str) -> str: return _c("1", s)


def run_line(line: str, sess: ShellSession) -> str:
    """Run one line and return what it printed."""
    buf = io.StringIO()
    code = execute_line(line, sess, out=buf)
    assert code == 0, f"{line!r} exited with {code}"
    return buf.getvalue()


def test_pwd_and_fs_ops(sess: ShellSession, tmp: Path):
    run_line("mkdir -p a/b", sess)
    assert (tmp / "a" / "b").is_dir()
    assert run_line("ls", sess) == "a/\n"
    run_line("cd a", sess)
    assert run_line("pwd", sess).strip() == str(tmp / "a")


def test_pipeline_grep(sess: ShellSession, tmp: Path):
    (tmp / "text.txt").write_text("alpha\nBeta\ngamma\n")
    assert run_line("cat text.txt | grep ^B", sess) == "Beta\n"


def test_redirection(sess: ShellSession, tmp: Path):
    run_line("echo out > o.txt", sess)
    run_line("echo more >> o.txt", sess)
    assert (tmp / "o.txt").read_text() == "outmore"
    assert run_line("grep more < o.txt", sess) == "outmore\n"


def test_control_flow(sess: ShellSession, tmp: Path):
    assert run_line("if cat nope; then echo bad; else echo ok; fi", sess) == "ok\n"
    assert run_line("for x in 1 2; do echo $x; done", sess) == "1\n2\n"


def test_functions_and_substitution(sess: ShellSession, tmp: Path):
    run_line("function twice() { echo $1; echo $1; }", sess)
    assert run_line("twice $(echo hey)", sess) == "hey\nhey\n"


def test_background(sess: ShellSession, tmp: Path):
    assert run_line("sleep 0.1 &", sess) == "[1] sleep 0.1\n"
    sess.jobs.wait_all(timeout=5)
    assert "Done" in run_line("jobs", sess)


def test_env_contains_sanitized_vars(sess: ShellSession, tmp: Path):
    assert f"HOME={tmp}" in run_line("env", sess).splitlines()


def main() -> int:
    failures = []
    errors = []
    passed = 0
    tmp = Path(tempfile.mkdtemp(prefix="minish-test-"))
    cwd = Path.cwd()
    try:
        os.chdir(tmp)
        sess = ShellSession(inherit_env=False)
        sess.env.set("HOME", str(tmp))

        tests = [
            test_pwd_and_fs_ops,
            test_pipeline_grep,
            test_redirection,
            test_control_flow,
            test_functions_and_substitution,
            test_background,
            test_env_contains_sanitized_vars,
        ]

        for t in tests:
            try:
                # Ensure each test starts at the sandbox root
                os.chdir(tmp)
                t(sess, tmp)
                passed += 1
                print(f"{green('[PASS]')} {bold(t.__name__)}")
            except AssertionError as e:
                print(f"{red('[FAIL]')} {bold(t.__name__)}: {e}")
                failures.append((t.__name__, str(e)))
            except Exception as e:
                print(f"{yellow('[ERROR]')} {bold(t.__name__)}: {e}")
                errors.append((t.__name__, f"ERROR: {e}"))

        total = len(tests)
        failed = len(failures)
        errored = len(errors)
        print("\n" + bold("Summary:"))
        print(f"  Total: {total}  {green('Passed: ' + str(passed))}  {red('Failed: ' + str(failed))}  {yellow('Errors: ' + str(errored))}")

        if failures:
            print("\n" + bold(red("Failures:")))
            for name, msg in failures:
                print(f"  - {name}: {msg}")
        if errors:
            print("\n" + bold(yellow("Errors:")))
            for name, msg in errors:
                print(f"  - {name}: {msg}")

        return 0 if (failed == 0 and errored == 0) else 1
    finally:
        os.chdir(cwd)
        shutil.rmtree(tmp, ignore_errors=True)


if __name__ == "__main__":
    sys.exit(main())
