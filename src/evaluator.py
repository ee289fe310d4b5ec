"""Tree-walking evaluator.

Every node evaluates to ``Continue(output)`` or ``Exit``. Leaf string fields
are variable-expanded right before dispatch; pipelines and redirects share
one "external input" channel: the ``input`` argument of :meth:`Evaluator.evaluate`.
"""
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, TextIO, Tuple

import cmdtree as ct
import handlers as h
from cmdparse import parse_command
from errors import InvalidArgument, LoopLimitError, ShellError, ShellIOError, UnknownCommand
from expansion import expand_command_substitutions, expand_history, expand_variables
from session import ShellSession

log = logging.getLogger("minish.evaluator")

MAX_WHILE_ITERATIONS = 1000

# Builtin failures reported as IO errors
IO_ERRORS = (OSError, UnicodeDecodeError)

Scope = Dict[str, str]


class Evaluator:
    """Evaluates commands for one control path.

    Loop variables and function arguments live in this evaluator's own scope
    stack, never in the shared environment. Background jobs run on a fork
    holding a copy of the stack as it was when the job was spawned.
    """

    def __init__(self, session: ShellSession, scopes: Optional[List[Scope]] = None,
                 out: Optional[TextIO] = None) -> None:
        self.session = session
        self.scopes: List[Scope] = scopes if scopes is not None else []
        self._out = out
        self._replaying: List[int] = []

    # --- variables ---
    def lookup(self, name: str) -> Optional[str]:
        for frame in reversed(self.scopes):
            if name in frame:
                return frame[name]
        return self.session.env.get(name)

    def expand(self, text: str) -> str:
        return expand_variables(text, self.lookup)

    @contextmanager
    def scope(self, bindings: Optional[Scope] = None) -> Iterator[Scope]:
        frame: Scope = dict(bindings or {})
        self.scopes.append(frame)
        try:
            yield frame
        finally:
            self.scopes.pop()

    def fork(self) -> "Evaluator":
        return Evaluator(self.session, [dict(frame) for frame in self.scopes], self._out)

    # --- parsing helpers ---
    def substitute(self, inner: str) -> str:
        """Run the body of a $(...) and return its output; failures yield ''."""
        try:
            result = self.evaluate(self.parse(inner))
        except ShellError as e:
            log.debug("Command substitution %r failed: %s", inner, e)
            return ""
        if isinstance(result, ct.Exit):
            return ""
        return result.output

    def parse(self, text: str) -> ct.Command:
        return parse_command(text, self.session, substitute=self.substitute)

    # --- output ---
    def emit(self, text: str) -> None:
        out = self._out if self._out is not None else sys.stdout
        out.write(text + "\n")
        out.flush()

    def execute(self, command: ct.Command, input: Optional[str] = None) -> bool:
        """Evaluate and print any output. Returns True when the session should end."""
        result = self.evaluate(command, input)
        if isinstance(result, ct.Exit):
            return True
        if result.output:
            self.emit(result.output)
        return False

    # --- evaluation ---
    def evaluate(self, command: ct.Command, input: Optional[str] = None) -> ct.Result:
        log.debug("Executing command: %s", command)
        command = command.expand_fields(self.expand)
        match command:
            case ct.Pipeline(commands=stages):
                return self._pipeline(stages, input)
            case ct.Redirect(command=inner, op=op, target=target):
                return self._redirect(inner, op, target, input)
            case ct.Background(command=inner):
                return self._background(inner)
            case ct.If(condition=condition, then_part=then_part, else_part=else_part):
                return self._if(condition, then_part, else_part, input)
            case ct.While(condition=condition, body=body):
                return self._while(condition, body)
            case ct.For(variable=variable, items=items, body=body):
                return self._for(variable, items, body)
            case ct.Function(name=name, body=body):
                self.session.functions.set(name, body)
                log.debug("Function defined: %s", name)
                return ct.Continue()
            case ct.FunctionCall(name=name, args=args):
                return self._call(name, args)
            case ct.Compound(commands=commands):
                for child in commands:
                    if self.execute(child, input):
                        return ct.Exit()
                return ct.Continue()
            case ct.History(action=ct.HistoryExecute(index=index)):
                return self._replay(index, input)
            case ct.Quit():
                return ct.Exit()
        try:
            return ct.Continue(self._builtin(command, input))
        except IO_ERRORS as e:
            raise ShellIOError.wrap(e) from e

    def _builtin(self, command: ct.Command, input: Optional[str]) -> str:
        session = self.session
        match command:
            case ct.Help():
                return h.handle_help()
            case ct.Version():
                return h.handle_version()
            case ct.Echo(message=message):
                return h.handle_echo(message)
            case ct.Repeat(count=count, message=message):
                return h.handle_repeat(count, message)
            case ct.Cat(filename=filename):
                return h.handle_cat(filename, input)
            case ct.Write(filename=filename, content=content):
                self.emit(h.handle_write(filename, content))
                return ""
            case ct.Ls():
                return h.handle_ls()
            case ct.Cd(path=path):
                h.handle_cd(path, session)
            case ct.Pwd():
                return h.handle_pwd()
            case ct.Mkdir(path=path, parents=parents):
                h.handle_mkdir(path, parents)
            case ct.Rm(path=path, recursive=recursive, force=force):
                h.handle_rm(path, recursive, force)
            case ct.Cp(source=source, destination=destination, recursive=recursive):
                h.handle_cp(source, destination, recursive)
            case ct.Mv(source=source, destination=destination):
                h.handle_mv(source, destination)
            case ct.Find(name=name, path=path):
                return h.handle_find(name, path)
            case ct.Grep(pattern=pattern, files=files):
                return h.handle_grep(pattern, files, input)
            case ct.Alias(name=name, command=alias_command):
                listing = h.handle_alias(name, alias_command, session)
                if listing:
                    self.emit(listing)
            case ct.Sleep(seconds=seconds):
                h.handle_sleep(seconds)
            case ct.Jobs():
                return h.handle_jobs(session)
            case ct.Fg(job_id=job_id):
                self.emit(h.handle_fg(job_id, session))
            case ct.Environment(action=action):
                return h.handle_environment(action, session, self.scopes)
            case ct.History(action=ct.HistorySearch(query=query)):
                return h.format_history(session.history.search(query))
            case ct.History():
                return h.format_history(session.history.entries())
            case _:
                raise ShellError(f"cannot evaluate {type(command).__name__}")
        return ""

    # --- structural nodes ---
    def _pipeline(self, stages: Tuple[str, ...], input: Optional[str]) -> ct.Result:
        data = input
        for i, stage in enumerate(stages):
            log.debug("Pipeline stage %d/%d: %s", i + 1, len(stages), stage)
            result = self.evaluate(self.parse(stage), data)
            if isinstance(result, ct.Exit):
                return result
            data = result.output
        return ct.Continue(data or "")

    def _redirect(self, inner: ct.Command, op: str, target: str, input: Optional[str]) -> ct.Result:
        log.debug("Redirect %s %s", op, target)
        if op == "<":
            try:
                with open(target, encoding="utf-8") as f:
                    content = f.read()
            except IO_ERRORS as e:
                raise ShellIOError.wrap(e) from e
            return self.evaluate(inner, content)

        result = self.evaluate(inner, input)
        if isinstance(result, ct.Exit):
            return result
        mode = "a" if op == ">>" else "w"
        try:
            with open(target, mode, encoding="utf-8") as f:
                f.write(result.output)
        except OSError as e:
            raise ShellIOError.wrap(e) from e
        return ct.Continue()

    def _background(self, inner: ct.Command) -> ct.Result:
        worker = self.fork()
        display = ct.format_command(inner.expand_fields(self.expand))

        def run() -> None:
            worker.execute(inner)

        job = self.session.jobs.spawn(display, run)
        return ct.Continue(f"[{job.id}] {display}")

    def _if(self, condition: ct.Command, then_part: ct.Command,
            else_part: Optional[ct.Command], input: Optional[str]) -> ct.Result:
        try:
            exiting = self.execute(condition, input)
        except LoopLimitError:
            raise
        except ShellError as e:
            log.debug("if: condition failed: %s", e)
            if else_part is not None and self.execute(else_part, input):
                return ct.Exit()
            return ct.Continue()
        if exiting or self.execute(then_part, input):
            return ct.Exit()
        return ct.Continue()

    def _while(self, condition: ct.Command, body: ct.Command) -> ct.Result:
        iterations = 0
        while True:
            if iterations >= MAX_WHILE_ITERATIONS:
                raise LoopLimitError("While loop exceeded maximum iterations")
            try:
                exiting = self.execute(condition)
            except LoopLimitError:
                raise
            except ShellError as e:
                log.debug("while: condition failed after %d iterations: %s", iterations, e)
                break
            if exiting or self.execute(body):
                return ct.Exit()
            iterations += 1
        return ct.Continue()

    def _replay(self, index: int, input: Optional[str]) -> ct.Result:
        if index in self._replaying:
            raise InvalidArgument(f"history: {index}: entry replays itself")
        replay = h.history_entry(index, self.session)
        log.debug("Replaying history entry %d: %s", index, replay)
        self._replaying.append(index)
        try:
            return self.evaluate(self.parse(replay), input)
        finally:
            self._replaying.pop()

    def _for(self, variable: str, items: Tuple[str, ...], body: ct.Command) -> ct.Result:
        with self.scope() as frame:
            for item in items:
                frame[variable] = item
                if self.execute(body):
                    return ct.Exit()
        return ct.Continue()

    def _call(self, name: str, args: Tuple[str, ...]) -> ct.Result:
        body = self.session.functions.get(name)
        if body is None:
            raise UnknownCommand(f"function '{name}' not found")
        bindings = {str(i): arg for i, arg in enumerate(args, start=1)}
        with self.scope(bindings):
            result = self.evaluate(body)
        if isinstance(result, ct.Exit):
            # exit inside a function only ends the function
            return ct.Continue()
        return result


# ---- top level ----

def execute_line(line: str, session: ShellSession, out: Optional[TextIO] = None) -> int:
    """Expand history, record, parse and evaluate one complete input line.

    Returns 0 on success and 1 when an error was reported on stderr. Sets
    ``session.exit_requested`` when the line asked the session to end.
    """
    if not line.strip():
        return 0
    evaluator = Evaluator(session, out=out)
    try:
        line = expand_history(line, session.history)
        session.history.add(line)
        if evaluator.execute(evaluator.parse(line)):
            session.exit_requested = True
    except ShellError as e:
        print(f"minish: {e}", file=sys.stderr)
        return 1
    return 0


def execute_with_input(command: str, content: str, session: ShellSession,
                       out: Optional[TextIO] = None) -> int:
    """Run ``command`` with a heredoc body as its external input."""
    evaluator = Evaluator(session, out=out)
    try:
        body = expand_command_substitutions(evaluator.expand(content), evaluator.substitute)
        if evaluator.execute(evaluator.parse(command), body):
            session.exit_requested = True
    except ShellError as e:
        print(f"minish: {e}", file=sys.stderr)
        return 1
    return 0
