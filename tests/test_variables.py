"""Tests for variable expansion and variable scoping."""

import sys
from pathlib import Path

import pytest  # type: ignore

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from evaluator import Evaluator, execute_line
from expansion import expand_variables
from session import ShellSession


def lookup_from(values):
    return values.get


class TestExpandVariables:
    """Test $NAME / ${NAME} rewriting."""

    def test_bare_and_braced(self):
        values = {"USER": "alice", "N": "3"}
        assert expand_variables("hi $USER, ${N}x", lookup_from(values)) == "hi alice, 3x"

    def test_unresolved_expands_to_empty(self):
        assert expand_variables("a$MISSING-b", lookup_from({})) == "a-b"

    def test_digit_names(self):
        values = {"1": "first"}
        assert expand_variables("$1", lookup_from(values)) == "first"
        # the whole digit run is the name
        assert expand_variables("cost $100", lookup_from(values)) == "cost "

    def test_empty_braces_are_literal(self):
        assert expand_variables("x${}y", lookup_from({})) == "x${}y"

    def test_unclosed_brace_is_literal(self):
        assert expand_variables("a ${HOME b", lookup_from({"HOME": "/h"})) == "a ${HOME b"

    def test_lone_dollar_kept(self):
        assert expand_variables("price: $ 5 and $", lookup_from({})) == "price: $ 5 and $"

    def test_quotes_preserved(self):
        values = {"Q": "with spaces"}
        assert expand_variables("\"Message: $Q\"", lookup_from(values)) == "\"Message: with spaces\""
        assert expand_variables("'${Q}'", lookup_from(values)) == "'with spaces'"

    def test_command_substitution_untouched(self):
        assert expand_variables("$(echo hi)", lookup_from({})) == "$(echo hi)"


class TestEnvironmentOverlay:
    """Test the session environment and the env builtin."""

    def test_set_and_show(self, session, capsys):
        assert execute_line("env GREETING=hello", session) == 0
        assert session.env.get("GREETING") == "hello"
        assert execute_line("env GREETING", session) == 0
        assert capsys.readouterr().out == "hello\n"

    def test_show_missing(self, session, capsys):
        assert execute_line("env NOPE", session) == 1
        err = capsys.readouterr().err
        assert "Environment variable 'NOPE' not set" in err

    def test_expansion_uses_overlay(self, session, capsys):
        execute_line("env NAME=world", session)
        execute_line("echo hello $NAME", session)
        assert capsys.readouterr().out == "hello world\n"

    def test_overlay_shadows_inherited(self):
        sess = ShellSession(inherit_env=False)
        sess.env.inherited = {"SHELL_VAR": "from-process"}
        assert sess.env.get("SHELL_VAR") == "from-process"
        sess.env.set("SHELL_VAR", "from-session")
        assert sess.env.get("SHELL_VAR") == "from-session"
        assert ("SHELL_VAR", "from-session") in sess.env.items()

    def test_env_list(self, session, capsys):
        execute_line("env ZZ_LAST=1", session)
        execute_line("env", session)
        out = capsys.readouterr().out
        assert "ZZ_LAST=1" in out.splitlines()


class TestScopeStack:
    """Loop variables and function arguments never leak into the environment."""

    def test_lookup_prefers_innermost_frame(self, session):
        ev = Evaluator(session)
        session.env.set("X", "env")
        with ev.scope({"X": "outer"}):
            with ev.scope({"X": "inner"}):
                assert ev.lookup("X") == "inner"
            assert ev.lookup("X") == "outer"
        assert ev.lookup("X") == "env"

    def test_frame_popped_on_error(self, session):
        ev = Evaluator(session)
        with pytest.raises(RuntimeError):
            with ev.scope({"Y": "1"}):
                raise RuntimeError("boom")
        assert ev.scopes == []
        assert ev.lookup("Y") is None

    def test_fork_copies_frames(self, session):
        ev = Evaluator(session)
        with ev.scope({"i": "a"}) as frame:
            child = ev.fork()
            frame["i"] = "b"
            assert child.lookup("i") == "a"

    def test_for_variable_unset_afterwards(self, session, capsys):
        execute_line("for i in a b; do echo $i; done", session)
        assert capsys.readouterr().out == "a\nb\n"
        assert session.env.get("i") is None
        assert execute_line("env i", session) == 1
        assert "not set" in capsys.readouterr().err

    def test_env_shows_loop_variable(self, session, capsys):
        assert execute_line("for i in a b; do env i; done", session) == 0
        assert capsys.readouterr().out == "a\nb\n"

    def test_env_shows_function_argument(self, session, capsys):
        execute_line("function show() { env 1; }", session)
        assert execute_line("show hello", session) == 0
        assert capsys.readouterr().out == "hello\n"

    def test_env_listing_includes_frames(self, session, capsys):
        execute_line("env i=outer", session)
        execute_line("for i in inner; do env; done", session)
        lines = capsys.readouterr().out.splitlines()
        assert "i=inner" in lines
        assert "i=outer" not in lines
        assert session.env.get("i") == "outer"
