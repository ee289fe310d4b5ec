"""Textual expansion passes: variables, command substitution, history events, aliases."""
from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional

from errors import InvalidArgument
from session import AliasTable, History

log = logging.getLogger("minish.expansion")

Lookup = Callable[[str], Optional[str]]
Substitute = Callable[[str], str]

_HISTORY_EVENT = re.compile(r"(?<!\S)!(!|-?\d+|[A-Za-z_][^\s]*)(?!\S)")


def _is_name_char(ch: str) -> bool:
    return ch == "_" or ch.isalnum()


def expand_variables(text: str, lookup: Lookup) -> str:
    """Expand $NAME and ${NAME}.

    - Unresolved names expand to the empty string.
    - ${} and an unclosed ${ are left literal.
    - A lone $ (not followed by a name character or brace) is kept.
    - $( is left alone for command substitution.
    """
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch != "$" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "{":
            close = text.find("}", i + 2)
            if close == -1:
                # Unclosed: keep everything from here on verbatim
                out.append(text[i:])
                break
            name = text[i + 2:close]
            if not name:
                out.append("${}")
            else:
                out.append(lookup(name) or "")
            i = close + 1
            continue
        if _is_name_char(nxt):
            j = i + 1
            while j < n and _is_name_char(text[j]):
                j += 1
            out.append(lookup(text[i + 1:j]) or "")
            i = j
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _matching_paren(text: str, start: int) -> int:
    """Index of the ')' closing the '(' at ``start``, or -1."""
    depth = 0
    for j in range(start, len(text)):
        c = text[j]
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
            if depth == 0:
                return j
    return -1


def expand_command_substitutions(text: str, run: Substitute) -> str:
    """Replace every $(...) with the trimmed output of ``run(inner)``.

    Inner text is expanded first, so nested substitutions resolve innermost
    first. An unterminated $( is left as literal text.
    """
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("$(", i):
            close = _matching_paren(text, i + 1)
            if close == -1:
                out.append(text[i:])
                break
            inner = expand_command_substitutions(text[i + 2:close], run).strip()
            out.append(run(inner).rstrip() if inner else "")
            i = close + 1
            continue
        out.append(text[i])
        i += 1
    return "".join(out)


def expand_history(line: str, history: History) -> str:
    """Replace !!, !n, !-n and !prefix events with the matching history entry.

    Raises InvalidArgument when an event cannot be resolved.
    """
    if "!" not in line:
        return line

    def resolve(m: re.Match) -> str:
        event = m.group(1)
        if event == "!":
            found = history.last()
        elif event.startswith("-") and event[1:].isdigit():
            found = history.recent(int(event[1:]))
        elif event.isdigit():
            found = history.get(int(event))
        else:
            found = history.find_prefix(event)
        if found is None:
            raise InvalidArgument(f"{m.group(0)}: event not found")
        return found

    expanded = _HISTORY_EVENT.sub(resolve, line)
    if expanded != line:
        log.debug("History expansion: %r -> %r", line, expanded)
    return expanded


def expand_alias(line: str, aliases: AliasTable) -> str:
    """Substitute the leading word once. ``alias`` itself is never rewritten."""
    stripped = line.lstrip()
    if not stripped:
        return line
    word, sep, rest = stripped.partition(" ")
    if word == "alias":
        return line
    replacement = aliases.get(word)
    if replacement is None:
        return line
    log.debug("Alias %s -> %s", word, replacement)
    return replacement + sep + rest
