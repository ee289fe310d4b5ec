import os
import sys
from pathlib import Path
import pytest


@pytest.fixture(scope="session", autouse=True)
def add_src_to_path():
    # Ensure we can import modules from src/
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    sys.path.insert(0, str(src))
    yield
    # Cleanup path insertion
    try:
        sys.path.remove(str(src))
    except ValueError:
        pass


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    safe_env = {
        "HOME": str(tmp_path),
        "LANG": os.environ.get("LANG", "C"),
    }
    monkeypatch.setenv("HOME", safe_env["HOME"])
    monkeypatch.setenv("MINISH_HISTFILE", str(tmp_path / ".minish_history"))
    return tmp_path, safe_env


@pytest.fixture()
def session(sandbox):
    from session import ShellSession
    tmp_path, safe_env = sandbox
    sess = ShellSession(inherit_env=False, history_file=tmp_path / ".minish_history", max_jobs=2)
    # Only the pruned environment is visible to the shell
    for name, value in safe_env.items():
        sess.env.set(name, value)
    return sess


@pytest.fixture()
def run(session):
    """Run one line in the session; returns the exit status."""
    from evaluator import execute_line

    def _run(line: str) -> int:
        return execute_line(line, session)

    return _run
