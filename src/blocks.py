"""Multi-line input collection: control-structure blocks and heredoc bodies."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from cmdparse import BLOCK_CLOSERS, BLOCK_OPENERS, closes_brace, in_statement_position, lex, opens_brace

log = logging.getLogger("minish.blocks")

# A line ending in one of these continues straight into the next one.
_JOIN_WITH_SPACE = {"do", "then", "else", "{"}


class BlockCollector:
    """Gathers lines until every if/while/for/function block is closed."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self.depth = 0
        self._pending_braces = 0

    def add_line(self, line: str) -> bool:
        """Add a line; returns True while more input is needed."""
        self.lines.append(line)
        words = lex(line)
        for i, word in enumerate(words):
            text = word.text
            opens = opens_brace(text)
            closes = closes_brace(text)
            if opens:
                if self._pending_braces:
                    # opens the body of a function already counted
                    self._pending_braces -= 1
                else:
                    self.depth += 1
            if closes:
                self.depth -= 1
            if opens or closes:
                continue
            if in_statement_position(words, i):
                if text in BLOCK_OPENERS:
                    self.depth += 1
                elif text == "function":
                    self.depth += 1
                    self._pending_braces += 1
                elif text in BLOCK_CLOSERS:
                    self.depth -= 1
        log.debug("Block depth %d after %r", self.depth, line)
        return self.incomplete

    @property
    def incomplete(self) -> bool:
        return self.depth > 0 or self._pending_braces > 0

    def complete_command(self) -> str:
        """Join the collected lines into a single command line."""
        parts = [line.strip() for line in self.lines if line.strip()]
        result = ""
        for i, line in enumerate(parts):
            result += line
            if i == len(parts) - 1:
                break
            nxt = parts[i + 1]
            last_word = line.split()[-1]
            if nxt.startswith("{"):
                result += " "
            elif nxt.split()[0] in ("do", "then") or not (last_word in _JOIN_WITH_SPACE or line.endswith(";")):
                result += "; "
            else:
                result += " "
        return result

    def reset(self) -> None:
        self.lines.clear()
        self.depth = 0
        self._pending_braces = 0


def read_heredoc(delimiter: str, strip_tabs: bool, next_line: Callable[[], Optional[str]]) -> str:
    """Read body lines until one equals ``delimiter`` exactly.

    ``next_line`` returns None at end of input, which also ends the body.
    With ``strip_tabs`` one leading tab is removed from each line.
    """
    lines: List[str] = []
    while True:
        line = next_line()
        if line is None:
            log.warning("End of input inside heredoc (wanted %r)", delimiter)
            break
        line = line.rstrip("\r\n")
        if line == delimiter:
            break
        if strip_tabs and line.startswith("\t"):
            line = line[1:]
        lines.append(line)
    return "\n".join(lines)
