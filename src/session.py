"""Session-wide stores for minish.

Each store guards its own data with a short-lived lock; there is no
cross-store lock ordering, so foreground and background evaluation may
interleave between stores but never corrupt one.
"""
from __future__ import annotations

import logging
import os
import threading
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from cmdtree import Command
from jobs import JobController, DEFAULT_MAX_WORKERS

log = logging.getLogger("minish.session")

HISTORY_CAPACITY = 1000
DEFAULT_HISTORY_FILE = ".minish_history"

V = TypeVar("V")


class _LockedTable(Generic[V]):
    """A name -> value mapping behind a lock. Last write wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, V] = {}

    def get(self, name: str) -> Optional[V]:
        with self._lock:
            return self._data.get(name)

    def set(self, name: str, value: V) -> None:
        with self._lock:
            self._data[name] = value

    def unset(self, name: str) -> None:
        with self._lock:
            self._data.pop(name, None)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._data

    def items(self) -> List[Tuple[str, V]]:
        with self._lock:
            return list(self._data.items())


class Environment(_LockedTable[str]):
    """Session variables shadowing the inherited process environment."""

    def __init__(self, inherited: Optional[Mapping[str, str]] = None) -> None:
        super().__init__()
        self.inherited: Mapping[str, str] = os.environ if inherited is None else inherited

    def get(self, name: str) -> Optional[str]:
        value = super().get(name)
        if value is not None:
            return value
        return self.inherited.get(name)

    def items(self) -> List[Tuple[str, str]]:
        merged = dict(self.inherited)
        merged.update(super().items())
        return list(merged.items())


class AliasTable(_LockedTable[str]):
    pass


class FunctionTable(_LockedTable[Command]):
    def names(self) -> List[str]:
        return [name for name, _ in self.items()]


class History:
    """Bounded command log; oldest entries fall off the front."""

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self._lock = threading.Lock()
        self._commands: Deque[str] = deque(maxlen=capacity)

    def add(self, command: str) -> None:
        if not command.strip():
            return
        with self._lock:
            if self._commands and self._commands[-1] == command:
                return
            self._commands.append(command)

    def entries(self) -> List[Tuple[int, str]]:
        with self._lock:
            return [(i + 1, cmd) for i, cmd in enumerate(self._commands)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)

    def get(self, number: int) -> Optional[str]:
        """Entry by 1-based position."""
        with self._lock:
            if 1 <= number <= len(self._commands):
                return self._commands[number - 1]
            return None

    def last(self) -> Optional[str]:
        with self._lock:
            return self._commands[-1] if self._commands else None

    def recent(self, n: int) -> Optional[str]:
        """The n-th most recent entry (1 is the last one)."""
        with self._lock:
            if 1 <= n <= len(self._commands):
                return self._commands[-n]
            return None

    def find_prefix(self, prefix: str) -> Optional[str]:
        with self._lock:
            for cmd in reversed(self._commands):
                if cmd.startswith(prefix):
                    return cmd
            return None

    def search(self, query: str) -> List[Tuple[int, str]]:
        # The last entry is the search command itself.
        entries = self.entries()[:-1]
        query = query.lower()
        return [(num, cmd) for num, cmd in entries if query in cmd.lower()]

    def clear(self) -> None:
        with self._lock:
            self._commands.clear()

    # --- persistence ---
    def load(self, path: Path) -> None:
        if not path.exists():
            log.debug("No history file at %s", path)
            return
        lines = [line.strip() for line in path.read_text(encoding="utf-8", errors="replace").splitlines()]
        with self._lock:
            self._commands.clear()
            self._commands.extend(line for line in lines if line)
        log.debug("History loaded from: %s", path)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            text = "".join(cmd + "\n" for cmd in self._commands)
        path.write_text(text, encoding="utf-8")
        log.debug("History saved to: %s", path)


def default_history_file() -> Path:
    override = os.environ.get("MINISH_HISTFILE")
    if override:
        return Path(override)
    return Path(DEFAULT_HISTORY_FILE)


class ShellSession:
    """Holds session-wide shell context: variables, aliases, functions, history and jobs."""

    def __init__(
        self,
        inherit_env: bool = True,
        history_file: Optional[Path] = None,
        max_jobs: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.env = Environment(None if inherit_env else {})
        self.aliases = AliasTable()
        self.functions = FunctionTable()
        self.history = History()
        self.jobs = JobController(max_workers=max_jobs)
        self.history_file: Optional[Path] = history_file
        self.exit_requested: bool = False

    def load_history(self) -> None:
        if self.history_file is not None:
            self.history.load(self.history_file)

    def save_history(self) -> None:
        if self.history_file is not None:
            self.history.save(self.history_file)
