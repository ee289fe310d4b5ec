"""Command tree data model for minish.

This module defines the node types produced by the parser and consumed by
the evaluator, the two evaluation outcomes, and the static registry of leaf
commands used for arity validation and ``help`` output.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, ClassVar, Optional, Tuple, Union


# --- Tree nodes ---

@dataclass(frozen=True)
class Node:
    """Base class for every command node.

    ``expandable`` names the string fields that receive variable expansion
    right before the node is dispatched. Structural nodes leave it empty;
    their children are expanded when they are evaluated in turn.
    """

    expandable: ClassVar[Tuple[str, ...]] = ()

    def expand_fields(self, expand: Callable[[str], str]) -> "Node":
        if not self.expandable:
            return self
        changes = {}
        for name in self.expandable:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, tuple):
                changes[name] = tuple(expand(v) for v in value)
            else:
                changes[name] = expand(value)
        return replace(self, **changes)


@dataclass(frozen=True)
class Help(Node):
    pass


@dataclass(frozen=True)
class Version(Node):
    pass


@dataclass(frozen=True)
class Echo(Node):
    message: str
    expandable: ClassVar[Tuple[str, ...]] = ("message",)


@dataclass(frozen=True)
class Repeat(Node):
    count: int
    message: str
    expandable: ClassVar[Tuple[str, ...]] = ("message",)


@dataclass(frozen=True)
class Cat(Node):
    """Show a file; an empty filename means "read the external input"."""
    filename: str = ""
    expandable: ClassVar[Tuple[str, ...]] = ("filename",)


@dataclass(frozen=True)
class Write(Node):
    filename: str
    content: str
    expandable: ClassVar[Tuple[str, ...]] = ("filename", "content")


@dataclass(frozen=True)
class Ls(Node):
    pass


@dataclass(frozen=True)
class Cd(Node):
    path: str
    expandable: ClassVar[Tuple[str, ...]] = ("path",)


@dataclass(frozen=True)
class Pwd(Node):
    pass


@dataclass(frozen=True)
class Mkdir(Node):
    path: str
    parents: bool = False
    expandable: ClassVar[Tuple[str, ...]] = ("path",)


@dataclass(frozen=True)
class Rm(Node):
    path: str
    recursive: bool = False
    force: bool = False
    expandable: ClassVar[Tuple[str, ...]] = ("path",)


@dataclass(frozen=True)
class Cp(Node):
    source: str
    destination: str
    recursive: bool = False
    expandable: ClassVar[Tuple[str, ...]] = ("source", "destination")


@dataclass(frozen=True)
class Mv(Node):
    source: str
    destination: str
    expandable: ClassVar[Tuple[str, ...]] = ("source", "destination")


@dataclass(frozen=True)
class Find(Node):
    name: str
    path: Optional[str] = None
    expandable: ClassVar[Tuple[str, ...]] = ("name", "path")


@dataclass(frozen=True)
class Grep(Node):
    pattern: str
    files: Tuple[str, ...] = ()
    expandable: ClassVar[Tuple[str, ...]] = ("pattern", "files")


@dataclass(frozen=True)
class Alias(Node):
    """``alias`` with no name lists the table, otherwise sets ``name``."""
    name: Optional[str] = None
    command: Optional[str] = None
    expandable: ClassVar[Tuple[str, ...]] = ("name", "command")


@dataclass(frozen=True)
class Sleep(Node):
    seconds: float


@dataclass(frozen=True)
class Jobs(Node):
    pass


@dataclass(frozen=True)
class Fg(Node):
    job_id: Optional[int] = None


@dataclass(frozen=True)
class EnvList:
    pass


@dataclass(frozen=True)
class EnvShow:
    name: str


@dataclass(frozen=True)
class EnvSet:
    name: str
    value: str


EnvAction = Union[EnvList, EnvShow, EnvSet]


@dataclass(frozen=True)
class Environment(Node):
    action: EnvAction


@dataclass(frozen=True)
class HistoryList:
    pass


@dataclass(frozen=True)
class HistorySearch:
    query: str


@dataclass(frozen=True)
class HistoryExecute:
    index: int


HistoryAction = Union[HistoryList, HistorySearch, HistoryExecute]


@dataclass(frozen=True)
class History(Node):
    action: HistoryAction


@dataclass(frozen=True)
class Quit(Node):
    """``exit`` / ``quit``: ends the session."""


@dataclass(frozen=True)
class Pipeline(Node):
    """Raw stage texts; each is parsed when its turn comes."""
    commands: Tuple[str, ...]


@dataclass(frozen=True)
class Redirect(Node):
    command: Node
    op: str  # one of '>', '>>', '<'
    target: str
    expandable: ClassVar[Tuple[str, ...]] = ("target",)


@dataclass(frozen=True)
class Background(Node):
    command: Node


@dataclass(frozen=True)
class If(Node):
    condition: Node
    then_part: Node
    else_part: Optional[Node] = None


@dataclass(frozen=True)
class While(Node):
    condition: Node
    body: Node


@dataclass(frozen=True)
class For(Node):
    variable: str
    items: Tuple[str, ...]
    body: Node


@dataclass(frozen=True)
class Function(Node):
    name: str
    body: Node


@dataclass(frozen=True)
class FunctionCall(Node):
    name: str
    args: Tuple[str, ...] = ()
    expandable: ClassVar[Tuple[str, ...]] = ("args",)


@dataclass(frozen=True)
class Compound(Node):
    commands: Tuple[Node, ...]


Command = Node

# --- Evaluation outcomes ---

@dataclass(frozen=True)
class Continue:
    """Successful evaluation carrying output text."""
    output: str = ""


@dataclass(frozen=True)
class Exit:
    """Request to end the session."""


Result = Union[Continue, Exit]


# --- Leaf command registry ---

@dataclass(frozen=True)
class CommandInfo:
    name: str
    description: str
    usage: str
    min_args: int
    max_args: Optional[int]  # None means unlimited


COMMANDS: Tuple[CommandInfo, ...] = (
    CommandInfo("help", "Show this help message", "help", 0, 0),
    CommandInfo("echo", "Display message", "echo <message...>", 1, None),
    CommandInfo("cat", "Display file contents", "cat <filename>", 0, 1),
    CommandInfo("write", "Write content to file", "write <filename> <content...>", 2, None),
    CommandInfo("ls", "List directory contents", "ls", 0, 0),
    CommandInfo("repeat", "Repeat message count times", "repeat <count> <message...>", 2, None),
    CommandInfo("exit", "Exit the program", "exit", 0, 0),
    CommandInfo("cd", "Change directory", "cd <directory>", 0, 1),
    CommandInfo("quit", "Exit the program", "quit", 0, 0),
    CommandInfo("pwd", "Output the current working directory", "pwd", 0, 0),
    CommandInfo("rm", "Remove files", "rm [-r|-f|-rf] <path>", 1, 2),
    CommandInfo("cp", "Copy files", "cp [-r] <source> <destination>", 2, 3),
    CommandInfo("mv", "Move/rename files or directories", "mv <source> <destination>", 2, 2),
    CommandInfo("mkdir", "Make directories", "mkdir [-p] <directory>", 1, 2),
    CommandInfo("grep", "Search for pattern in files", "grep <pattern> <file...>", 1, None),
    CommandInfo("alias", "Set or show command aliases", "alias [name=command]", 0, 1),
    CommandInfo("find", "Find files by name", "find [directory] <filename>", 1, 2),
    CommandInfo("sleep", "Sleep for specified seconds", "sleep <seconds>", 1, 1),
    CommandInfo("version", "Show version information", "version", 0, 0),
    CommandInfo("jobs", "List background jobs", "jobs", 0, 0),
    CommandInfo("fg", "Show job status", "fg [job_id]", 0, 1),
    CommandInfo("env", "Show or set environment variables", "env [VAR[=value]]", 0, 1),
    CommandInfo("history", "Show, search or replay command history", "history [N | search <query>]", 0, None),
)


def find_command(name: str) -> Optional[CommandInfo]:
    for info in COMMANDS:
        if info.name == name:
            return info
    return None


# --- Formatting (job display / debug aid) ---

def format_command(command: Node) -> str:
    """Render a node back into shell-like text."""
    match command:
        case Echo(message=message):
            return f"echo {message}"
        case Repeat(count=count, message=message):
            return f"repeat {count} {message}"
        case Cat(filename=filename):
            return f"cat {filename}".rstrip()
        case Write(filename=filename, content=content):
            return f"write {filename} {content}"
        case Cd(path=path):
            return f"cd {path}"
        case Mkdir(path=path, parents=parents):
            return f"mkdir {'-p ' if parents else ''}{path}"
        case Rm(path=path, recursive=recursive, force=force):
            flags = ("r" if recursive else "") + ("f" if force else "")
            return f"rm {'-' + flags + ' ' if flags else ''}{path}"
        case Cp(source=source, destination=destination, recursive=recursive):
            return f"cp {'-r ' if recursive else ''}{source} {destination}"
        case Mv(source=source, destination=destination):
            return f"mv {source} {destination}"
        case Find(name=name, path=path):
            return f"find {path + ' ' if path else ''}{name}"
        case Grep(pattern=pattern, files=files):
            return " ".join(("grep", pattern) + tuple(files))
        case Alias(name=name, command=cmd):
            return f"alias {name}={cmd}" if name is not None else "alias"
        case Sleep(seconds=seconds):
            return f"sleep {seconds:g}"
        case Fg(job_id=job_id):
            return "fg" if job_id is None else f"fg {job_id}"
        case Environment(action=EnvShow(name=name)):
            return f"env {name}"
        case Environment(action=EnvSet(name=name, value=value)):
            return f"env {name}={value}"
        case Environment():
            return "env"
        case History(action=HistorySearch(query=query)):
            return f"history search {query}"
        case History(action=HistoryExecute(index=index)):
            return f"history {index}"
        case History():
            return "history"
        case Pipeline(commands=commands):
            return " | ".join(commands)
        case Redirect(command=inner, op=op, target=target):
            return f"{format_command(inner)} {op} {target}"
        case Background(command=inner):
            return f"{format_command(inner)} &"
        case If(condition=cond, then_part=then_part, else_part=else_part):
            text = f"if {format_command(cond)}; then {format_command(then_part)}; "
            if else_part is not None:
                text += f"else {format_command(else_part)}; "
            return text + "fi"
        case While(condition=cond, body=body):
            return f"while {format_command(cond)}; do {format_command(body)}; done"
        case For(variable=variable, items=items, body=body):
            return f"for {variable} in {' '.join(items)}; do {format_command(body)}; done"
        case Function(name=name, body=body):
            return f"function {name}() {{ {format_command(body)}; }}"
        case FunctionCall(name=name, args=args):
            return " ".join((name,) + tuple(args))
        case Compound(commands=commands):
            return "; ".join(format_command(c) for c in commands)
        case Quit():
            return "exit"
    # Remaining nodes carry no arguments: the registry name is the class name.
    return type(command).__name__.lower()

