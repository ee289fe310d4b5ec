"""Structural parser: turns one line of (history-expanded) input into a Command tree.

Dispatch order matters and is fixed:

  command substitution -> leading-word alias -> trailing '&' -> if/while/for/function
  -> top-level ';' -> '|' -> redirect ('>>', '>', '<') -> registry leaf -> function call

Quotes are kept verbatim in the resulting text; they only stop the
splitters from treating ';', '|', '&', '>' and '<' inside them as operators.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import cmdtree as ct
from errors import InvalidArgument, ParseError, UnknownCommand
from expansion import expand_alias, expand_command_substitutions
from session import ShellSession

log = logging.getLogger("minish.parser")

# Keywords that open / close a block when they start a statement.
BLOCK_OPENERS = {"if", "while", "for"}
BLOCK_CLOSERS = {"fi", "done"}
# Words after which the next word starts a new statement.
_STATEMENT_LEADERS = {";", "then", "do", "else", "{", "}"}

REDIRECT_OPERATORS = (">>", ">", "<")


# ---- Lexing (word vs ';') ----

@dataclass(frozen=True)
class Word:
    text: str
    start: int
    end: int


def lex(text: str) -> List[Word]:
    """Split into whitespace-separated words with ';' as a word of its own.

    Quoted regions stay inside the word they appear in.
    """
    words: List[Word] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == ";":
            words.append(Word(";", i, i + 1))
            i += 1
            continue
        start = i
        quote: Optional[str] = None
        while i < n:
            c = text[i]
            if quote:
                if c == quote:
                    quote = None
            elif c in ("'", '"'):
                quote = c
            elif c.isspace() or c == ";":
                break
            i += 1
        words.append(Word(text[start:i], start, i))
    return words


def split_words(text: str) -> List[str]:
    """Whitespace split that keeps quoted spans (quotes included) together."""
    return [w.text for w in lex(text)]


def in_statement_position(words: Sequence[Word], i: int) -> bool:
    return i == 0 or words[i - 1].text in _STATEMENT_LEADERS


def opens_brace(word: str) -> bool:
    """True for "{" and for a brace glued to a word, as in "{echo" or "f(){"."""
    return word.startswith("{") or "(){" in word


def closes_brace(word: str) -> bool:
    """True for "}" and for words with a "}" glued on, but not a bare "${NAME}"."""
    return word.endswith("}") and word.count("}") > word.count("${")


def _depth_change(words: Sequence[Word], i: int) -> int:
    word = words[i].text
    if opens_brace(word) or closes_brace(word):
        return int(opens_brace(word)) - int(closes_brace(word))
    if in_statement_position(words, i):
        if word in BLOCK_OPENERS:
            return 1
        if word in BLOCK_CLOSERS:
            return -1
    return 0


def find_keyword(words: Sequence[Word], start: int, keywords: Sequence[str]) -> int:
    """Index of the first top-level keyword from ``start``, or -1.

    Nested if/while/for blocks and brace groups are skipped over. Braces
    match anywhere; other keywords only where a statement begins.
    """
    depth = 0
    for i in range(start, len(words)):
        word = words[i].text
        if depth == 0 and word in keywords and (word in ("{", "}") or in_statement_position(words, i)):
            return i
        depth += _depth_change(words, i)
        if depth < 0:
            depth = 0
    return -1


def split_statements(text: str) -> List[str]:
    """Split on top-level ';' only; separators inside blocks are kept."""
    words = lex(text)
    parts: List[str] = []
    depth = 0
    seg_start = 0
    for i, w in enumerate(words):
        if w.text == ";" and depth == 0:
            parts.append(text[seg_start:w.start])
            seg_start = w.end
            continue
        depth = max(0, depth + _depth_change(words, i))
    parts.append(text[seg_start:])
    return [p.strip() for p in parts if p.strip()]


# ---- Operator scanning ----

def find_unquoted(text: str, op: str) -> int:
    """Position of the first ``op`` outside quotes, or -1."""
    quote: Optional[str] = None
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if quote:
            if c == quote:
                quote = None
        elif c in ("'", '"'):
            quote = c
        elif text.startswith(op, i):
            return i
        i += 1
    return -1


def split_pipe(text: str) -> List[str]:
    parts: List[str] = []
    rest = text
    while True:
        pos = find_unquoted(rest, "|")
        if pos == -1:
            parts.append(rest)
            break
        parts.append(rest[:pos])
        rest = rest[pos + 1:]
    return [p.strip() for p in parts if p.strip()]


def split_redirect(text: str) -> Optional[Tuple[str, str, str]]:
    """(command, operator, target), or None when there is no usable redirect.

    '>>' wins over '>', which wins over '<'. An operator with nothing after
    it is not a redirect.
    """
    for op in REDIRECT_OPERATORS:
        pos = find_unquoted(text, op)
        if pos == -1:
            continue
        target = text[pos + len(op):].strip()
        if not target:
            return None
        return text[:pos].strip(), op, target
    return None


def has_trailing_ampersand(text: str) -> bool:
    stripped = text.rstrip()
    if not stripped.endswith("&"):
        return False
    quote: Optional[str] = None
    for c in stripped:
        if quote:
            if c == quote:
                quote = None
        elif c in ("'", '"'):
            quote = c
    return quote is None


# ---- Heredoc header ----

def contains_heredoc(line: str) -> bool:
    return "<<" in line and "<<<" not in line


def parse_heredoc_header(line: str) -> Optional[Tuple[str, str, bool]]:
    """Split ``cmd <<DELIM`` / ``cmd <<-DELIM`` into (cmd, delimiter, strip_tabs)."""
    for marker, strip_tabs in (("<<-", True), ("<<", False)):
        pos = line.find(marker)
        if pos == -1:
            continue
        parts = line[pos + len(marker):].split()
        if not parts:
            return None
        return line[:pos].strip(), parts[0], strip_tabs
    return None


# ---- Entry point ----

Substitute = Callable[[str], str]


def parse_command(text: str, session: ShellSession, substitute: Optional[Substitute] = None) -> ct.Command:
    """Parse one line of input.

    ``substitute`` runs the body of a $(...) and returns its output; without
    it command substitution is left untouched.
    """
    log.debug("Parsing input: %r", text)
    if substitute is not None and "$(" in text:
        text = expand_command_substitutions(text, substitute)
    return _parse(text, session)


def _parse(text: str, session: ShellSession, *, aliases: bool = True) -> ct.Command:
    text = text.strip()
    if not text:
        raise ParseError("No command provided")
    if aliases:
        text = expand_alias(text, session.aliases).strip()

    if has_trailing_ampersand(text):
        inner = text.rstrip()[:-1].strip()
        return ct.Background(_parse(inner, session, aliases=False))

    head = text.split(None, 1)[0]
    if head == "if":
        return parse_if(text, session)
    if head == "while":
        return parse_while(text, session)
    if head == "for":
        return parse_for(text, session)
    if head == "function":
        return parse_function(text, session)

    statements = split_statements(text)
    if not statements:
        raise ParseError("No command provided")
    if len(statements) > 1:
        return ct.Compound(tuple(_parse(s, session) for s in statements))
    if len(statements) == 1 and statements[0] != text:
        # Stray separators around a single statement
        return _parse(statements[0], session, aliases=False)

    if find_unquoted(text, "|") != -1:
        return _parse_pipeline(text)

    redirect = split_redirect(text)
    if redirect is not None:
        inner, op, target = redirect
        log.debug("Redirect %s %s", op, target)
        return ct.Redirect(_parse(inner, session, aliases=False), op, target)

    return parse_leaf(split_words(text), session)


def _parse_pipeline(text: str) -> ct.Command:
    stages = split_pipe(text)
    if not stages:
        raise ParseError("No command provided")
    redirect = split_redirect(stages[-1])
    if redirect is not None:
        # A redirect on the last stage applies to the whole pipeline
        last, op, target = redirect
        return ct.Redirect(ct.Pipeline(tuple(stages[:-1]) + (last,)), op, target)
    return ct.Pipeline(tuple(stages))


# ---- Block parsers ----

def _segment(text: str, start: int, end: int) -> str:
    return text[start:end].strip().rstrip(";").strip()


def _with_trailer(block: ct.Command, text: str, end: int,
                  keyword: str, session: ShellSession) -> ct.Command:
    """Attach statements written after a block's closing keyword, which ends at ``end``."""
    rest = text[end:].strip()
    if not rest:
        return block
    if not rest.startswith(";"):
        raise ParseError(f"unexpected text after '{keyword}': {rest}")
    rest = rest.lstrip(";").strip()
    if not rest:
        return block
    tail = _parse(rest, session)
    if isinstance(tail, ct.Compound):
        return ct.Compound((block,) + tail.commands)
    return ct.Compound((block, tail))


def parse_if(text: str, session: ShellSession) -> ct.Command:
    words = lex(text)
    then_i = find_keyword(words, 1, ("then",))
    if then_i == -1:
        raise ParseError("if: 'then' not found")
    end_i = find_keyword(words, then_i + 1, ("else", "fi"))
    else_i = -1
    if end_i != -1 and words[end_i].text == "else":
        else_i = end_i
        end_i = find_keyword(words, else_i + 1, ("fi",))
    if end_i == -1:
        raise ParseError("if: 'fi' not found")

    condition = _parse(_segment(text, words[0].end, words[then_i].start), session)
    then_stop = words[else_i].start if else_i != -1 else words[end_i].start
    then_part = _parse(_segment(text, words[then_i].end, then_stop), session)
    else_part = None
    if else_i != -1:
        else_part = _parse(_segment(text, words[else_i].end, words[end_i].start), session)
    return _with_trailer(ct.If(condition, then_part, else_part), text, words[end_i].end, "fi", session)


def parse_while(text: str, session: ShellSession) -> ct.Command:
    words = lex(text)
    do_i = find_keyword(words, 1, ("do",))
    if do_i == -1:
        raise ParseError("while: 'do' not found")
    done_i = find_keyword(words, do_i + 1, ("done",))
    if done_i == -1:
        raise ParseError("while: 'done' not found")
    condition = _parse(_segment(text, words[0].end, words[do_i].start), session)
    body = _parse(_segment(text, words[do_i].end, words[done_i].start), session)
    return _with_trailer(ct.While(condition, body), text, words[done_i].end, "done", session)


def parse_for(text: str, session: ShellSession) -> ct.Command:
    words = lex(text)
    if len(words) < 3 or words[2].text != "in" or words[1].text == ";":
        raise ParseError("for: 'in' not found")
    variable = words[1].text
    do_i = find_keyword(words, 3, ("do",))
    if do_i == -1:
        raise ParseError("for: 'do' not found")
    done_i = find_keyword(words, do_i + 1, ("done",))
    if done_i == -1:
        raise ParseError("for: 'done' not found")
    items = tuple(w.text for w in words[3:do_i] if w.text != ";")
    body = _parse(_segment(text, words[do_i].end, words[done_i].start), session)
    return _with_trailer(ct.For(variable, items, body), text, words[done_i].end, "done", session)


def parse_function(text: str, session: ShellSession) -> ct.Command:
    open_paren = text.find("(")
    if open_paren == -1:
        raise ParseError("function: '(' not found")
    close_paren = text.find(")", open_paren)
    if close_paren == -1:
        raise ParseError("function: ')' not found")
    if text[open_paren + 1:close_paren].strip():
        raise ParseError("function: parameters not supported")
    name = text[len("function"):open_paren].strip()
    if not name or len(name.split()) != 1:
        raise ParseError("function: invalid name")

    header_end = close_paren + 1
    rest = text[header_end:].lstrip()
    if not rest.startswith("{"):
        raise ParseError("function: '{' not found")
    brace = text.index("{", header_end)
    body_text = text[brace + 1:]
    words = lex(body_text)
    close_i = find_keyword(words, 0, ("}",))
    if close_i != -1:
        body_end, trailer_start = words[close_i].start, words[close_i].end
    else:
        # closing brace attached to the last word, as in "{echo hi}"
        body_end = _attached_close(words)
        if body_end == -1:
            raise ParseError("function: '}' not found")
        trailer_start = body_end + 1
    body = _parse(_segment(body_text, 0, body_end), session)
    return _with_trailer(ct.Function(name, body), body_text, trailer_start, "}", session)


def _attached_close(words: Sequence[Word]) -> int:
    """Offset of a '}' glued to the end of a word closing the body, or -1."""
    depth = 0
    for i, word in enumerate(words):
        depth += _depth_change(words, i)
        if depth < 0 and closes_brace(word.text):
            return word.end - 1
    return -1


# ---- Leaf commands ----

def _validate_args(info: ct.CommandInfo, args: Sequence[str]) -> None:
    log.debug("Validating args for %r: %d args provided", info.name, len(args))
    if len(args) < info.min_args:
        raise InvalidArgument(
            f"{info.name} requires at least {info.min_args} argument(s)\nUsage: {info.usage}"
        )
    if info.max_args is not None and len(args) > info.max_args:
        raise InvalidArgument(
            f"{info.name} accepts at most {info.max_args} argument(s)\nUsage: {info.usage}"
        )


def _usage_error(info: ct.CommandInfo) -> InvalidArgument:
    return InvalidArgument(f"Usage: {info.usage}")


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ParseError(f"'{value}' is not a valid number") from None


def parse_leaf(words: List[str], session: ShellSession) -> ct.Command:
    name, args = words[0], words[1:]
    info = ct.find_command(name)
    if info is None:
        if name in session.functions:
            return ct.FunctionCall(name, tuple(args))
        raise UnknownCommand(f"{name} {' '.join(args)}".rstrip())

    _validate_args(info, args)
    log.debug("Recognized command: %r with %d args", name, len(args))

    match name:
        case "help":
            return ct.Help()
        case "version":
            return ct.Version()
        case "pwd":
            return ct.Pwd()
        case "ls":
            return ct.Ls()
        case "jobs":
            return ct.Jobs()
        case "exit" | "quit":
            return ct.Quit()
        case "echo":
            return ct.Echo(" ".join(args))
        case "cat":
            return ct.Cat(args[0] if args else "")
        case "write":
            return ct.Write(args[0], " ".join(args[1:]))
        case "repeat":
            try:
                count = int(args[0])
            except ValueError:
                raise ParseError(f"{args[0]} isn't a valid number") from None
            if count <= 0:
                raise ParseError("count must be positive")
            return ct.Repeat(count, " ".join(args[1:]))
        case "cd":
            return ct.Cd(args[0] if args else "~")
        case "mkdir":
            match args:
                case ["-p", path]:
                    return ct.Mkdir(path, parents=True)
                case [path] if not path.startswith("-"):
                    return ct.Mkdir(path)
            raise _usage_error(info)
        case "rm":
            match args:
                case [path] if not path.startswith("-"):
                    return ct.Rm(path)
                case ["-r", path]:
                    return ct.Rm(path, recursive=True)
                case ["-f", path]:
                    return ct.Rm(path, force=True)
                case ["-rf" | "-fr", path]:
                    return ct.Rm(path, recursive=True, force=True)
            raise _usage_error(info)
        case "cp":
            match args:
                case ["-r", source, destination]:
                    return ct.Cp(source, destination, recursive=True)
                case [source, destination]:
                    return ct.Cp(source, destination)
            raise _usage_error(info)
        case "mv":
            return ct.Mv(args[0], args[1])
        case "find":
            if len(args) == 1:
                return ct.Find(args[0])
            return ct.Find(args[1], path=args[0])
        case "grep":
            return ct.Grep(args[0], tuple(args[1:]))
        case "alias":
            if not args:
                return ct.Alias()
            alias_name, sep, command = args[0].partition("=")
            if not sep:
                raise ParseError("alias needs =")
            return ct.Alias(alias_name, command)
        case "sleep":
            try:
                seconds = float(args[0])
            except ValueError:
                raise ParseError(f"'{args[0]}' is not a valid number") from None
            if seconds < 0 or not math.isfinite(seconds):
                raise ParseError(f"'{args[0]}' is not a valid number")
            return ct.Sleep(seconds)
        case "fg":
            return ct.Fg(_parse_int(args[0]) if args else None)
        case "env":
            if not args:
                return ct.Environment(ct.EnvList())
            var, sep, value = args[0].partition("=")
            if sep:
                return ct.Environment(ct.EnvSet(var, value))
            return ct.Environment(ct.EnvShow(var))
        case "history":
            if not args:
                return ct.History(ct.HistoryList())
            if args[0] == "search":
                if len(args) < 2:
                    raise _usage_error(info)
                return ct.History(ct.HistorySearch(" ".join(args[1:])))
            if len(args) != 1:
                raise _usage_error(info)
            return ct.History(ct.HistoryExecute(_parse_int(args[0])))
    raise UnknownCommand(name)
