"""Builtin operations invoked by the evaluator.

Handlers return their output text. Filesystem failures surface as OSError
and are wrapped by the evaluator; semantic failures raise ShellError
subclasses directly.
"""
from __future__ import annotations

import fnmatch
import logging
import os
import re
import shutil
import time
from typing import List, Mapping, Optional, Sequence

import cmdtree as ct
from errors import InvalidArgument, InvalidPattern
from jobs import JobStatus
from session import ShellSession

log = logging.getLogger("minish.handlers")

VERSION = "0.1.0"
HOME_INDICATOR = "~"
PREVIOUS_DIR_INDICATOR = "-"


def handle_echo(message: str) -> str:
    return message


def handle_help() -> str:
    width = max(len(info.usage) for info in ct.COMMANDS)
    lines = ["Available commands:"]
    lines.extend(f"  {info.usage:<{width}} - {info.description}" for info in ct.COMMANDS)
    lines.append("Options:")
    lines.append("  --debug    Enable debug mode with detailed logging")
    return "\n".join(lines)


def handle_repeat(count: int, message: str) -> str:
    return "\n".join([message] * count)


def handle_version() -> str:
    return f"minish v{VERSION}"


# ---- files ----

def handle_cat(filename: str, input: Optional[str]) -> str:
    if input is not None:
        return input
    if os.path.isdir(filename):
        log.warning("Attempted to cat a directory: %s", filename)
        raise IsADirectoryError(21, "Is a directory", filename)
    log.debug("Reading file: %s", filename)
    with open(filename, encoding="utf-8") as f:
        return f.read()


def handle_write(filename: str, content: str) -> str:
    log.debug("Writing to file: %s (%d bytes)", filename, len(content))
    with open(filename, "w", encoding="utf-8") as f:
        f.write(content)
    return f"File written successfully: {filename}"


def handle_ls() -> str:
    names = []
    for entry in sorted(os.scandir("."), key=lambda e: e.name):
        names.append(entry.name + "/" if entry.is_dir() else entry.name)
    return "\n".join(names)


def handle_cd(path: str, session: ShellSession) -> None:
    if path == PREVIOUS_DIR_INDICATOR:
        target = session.env.get("OLDPWD")
        if target is None:
            raise InvalidArgument("cd: OLDPWD not set")
    elif path == HOME_INDICATOR:
        target = session.env.get("HOME") or os.path.expanduser("~")
    else:
        target = path
    old = os.getcwd()
    os.chdir(target)
    session.env.set("OLDPWD", old)
    log.debug("Changed directory to: %s", target)


def handle_pwd() -> str:
    return os.getcwd()


def handle_mkdir(path: str, parents: bool) -> None:
    if parents:
        os.makedirs(path, exist_ok=True)
    else:
        os.mkdir(path)
    log.info("Created directory: %s", path)


def handle_rm(path: str, recursive: bool, force: bool) -> None:
    try:
        if recursive and os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except OSError as e:
        if not force:
            raise
        log.debug("force mode: ignoring error - %s", e)
        return
    log.info("Deleted: %s", path)


def handle_cp(source: str, destination: str, recursive: bool) -> None:
    if os.path.isdir(source):
        if not recursive:
            raise InvalidArgument("source is a directory (use -r for recursive copy)")
        shutil.copytree(source, destination, dirs_exist_ok=True)
    else:
        if os.path.isdir(destination):
            destination = os.path.join(destination, os.path.basename(source))
        shutil.copyfile(source, destination)
    log.info("Copied %s to %s", source, destination)


def handle_mv(source: str, destination: str) -> None:
    if os.path.isfile(source) and os.path.isdir(destination):
        destination = os.path.join(destination, os.path.basename(source))
    os.rename(source, destination)


def handle_find(name: str, path: Optional[str]) -> str:
    """Recursive name match with * and ? wildcards."""
    lines: List[str] = []

    def walk(directory: str) -> None:
        for entry in sorted(os.scandir(directory), key=lambda e: e.name):
            entry_path = os.path.join(directory, entry.name)
            if fnmatch.fnmatchcase(entry.name, name):
                lines.append(entry_path)
            if entry.is_dir(follow_symlinks=False):
                walk(entry_path)

    walk(path or ".")
    return "\n".join(lines)


def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidPattern(str(e)) from e


def handle_grep(pattern: str, files: Sequence[str], input: Optional[str]) -> str:
    regex = _compile(pattern)
    lines: List[str] = []
    if not files:
        if input is not None:
            lines = [line for line in input.splitlines() if regex.search(line)]
        return "\n".join(lines)
    for filename in files:
        with open(filename, encoding="utf-8", errors="replace") as f:
            for num, line in enumerate(f.read().splitlines(), start=1):
                if not regex.search(line):
                    continue
                if len(files) > 1:
                    lines.append(f"{filename}:{num}: {line}")
                else:
                    lines.append(f"{num}: {line}")
    return "\n".join(lines)


# ---- session state ----

def handle_alias(name: Optional[str], command: Optional[str], session: ShellSession) -> str:
    if name is None:
        return "\n".join(f"{n} = {c}" for n, c in sorted(session.aliases.items()))
    session.aliases.set(name, command or "")
    log.debug("Alias set: %s = %s", name, command)
    return ""


def handle_sleep(seconds: float) -> None:
    try:
        time.sleep(seconds)
    except OverflowError:
        raise InvalidArgument(f"sleep: {seconds:g} seconds is too long") from None


def handle_jobs(session: ShellSession) -> str:
    jobs = session.jobs.list_jobs()
    if not jobs:
        return "No jobs"
    lines = []
    last = len(jobs) - 1
    for i, job in enumerate(jobs):
        marker = "+" if i == last else "-" if i == last - 1 else " "
        status = "Running" if job.status is JobStatus.RUNNING else "Done"
        lines.append(f"[{job.id}]{marker} {status:10} {job.command}")
    return "\n".join(lines)


def handle_fg(job_id: Optional[int], session: ShellSession) -> str:
    """Report on a job. Never waits for it."""
    if job_id is None:
        job = session.jobs.latest()
        if job is None:
            raise InvalidArgument("No jobs")
    else:
        job = session.jobs.get(job_id)
        if job is None:
            raise InvalidArgument(f"No such job: {job_id}")
    if job.status is JobStatus.RUNNING:
        return f"Job [{job.id}] ({job.command}) is still running"
    return f"Job [{job.id}] ({job.command}) has finished"


def handle_environment(action: ct.EnvAction, session: ShellSession,
                       scopes: Sequence[Mapping[str, str]] = ()) -> str:
    """Loop variables and function arguments in ``scopes`` shadow the environment."""
    match action:
        case ct.EnvShow(name=name):
            value = next((frame[name] for frame in reversed(scopes) if name in frame), None)
            if value is None:
                value = session.env.get(name)
            if value is None:
                raise InvalidArgument(f"Environment variable '{name}' not set")
            return value
        case ct.EnvSet(name=name, value=value):
            session.env.set(name, value)
            return ""
    merged = dict(session.env.items())
    for frame in scopes:
        merged.update(frame)
    return "\n".join(f"{name}={value}" for name, value in sorted(merged.items()))


def format_history(entries: Sequence[tuple]) -> str:
    return "\n".join(f"{num:4}  {cmd}" for num, cmd in entries)


def history_entry(index: int, session: ShellSession) -> str:
    command = session.history.get(index)
    if command is None:
        raise InvalidArgument(f"history: {index}: history position out of range")
    return command
