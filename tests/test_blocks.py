"""Tests for multi-line input: block collection, heredocs and script mode."""

import pytest  # type: ignore

import main
from blocks import BlockCollector, read_heredoc


def collect(*lines):
    collector = BlockCollector()
    pending = [collector.add_line(line) for line in lines]
    return collector, pending


def feeder(*lines):
    it = iter(lines)
    return lambda: next(it, None)


class TestBlockCollector:
    def test_single_line_is_complete(self):
        collector, pending = collect("echo hi")
        assert pending == [False]
        assert collector.complete_command() == "echo hi"

    def test_if_block(self):
        collector, pending = collect("if pwd; then", "echo yes", "fi")
        assert pending == [True, True, False]
        assert collector.complete_command() == "if pwd; then echo yes; fi"

    def test_for_with_do_on_its_own_line(self):
        collector, pending = collect("for i in a b", "do", "echo $i", "done")
        assert pending[-1] is False
        assert collector.complete_command() == "for i in a b; do echo $i; done"

    def test_function_block(self):
        collector, pending = collect("function greet() {", "echo hi", "}")
        assert pending == [True, True, False]
        assert collector.complete_command() == "function greet() { echo hi; }"

    def test_function_brace_on_next_line(self):
        collector, pending = collect("function greet()", "{", "echo hi", "}")
        assert pending == [True, True, True, False]
        assert collector.complete_command() == "function greet() { echo hi; }"

    def test_function_brace_attached(self):
        collector, pending = collect("function f(){", "echo hi", "}")
        assert pending == [True, True, False]

    def test_function_braces_glued_to_words(self):
        collector, pending = collect("function g() {echo hi}")
        assert pending == [False]
        collector, pending = collect("function g() {", "echo hi}")
        assert pending == [True, False]
        assert collector.complete_command() == "function g() { echo hi}"

    def test_braced_variable_does_not_close_block(self):
        collector, pending = collect("function g() {", "echo ${A}", "}")
        assert pending == [True, True, False]

    def test_nested_blocks(self):
        collector, pending = collect("while cat flag; do", "if pwd; then", "rm flag", "fi", "done")
        assert pending == [True, True, True, True, False]
        assert collector.complete_command() == "while cat flag; do if pwd; then rm flag; fi; done"

    def test_else_line(self):
        collector, _ = collect("if cat f; then", "echo a", "else", "echo b", "fi")
        assert collector.complete_command() == "if cat f; then echo a; else echo b; fi"

    def test_keyword_argument_does_not_open_block(self):
        collector, pending = collect("echo if for while")
        assert pending == [False]

    def test_reset(self):
        collector, _ = collect("if pwd; then")
        assert collector.incomplete
        collector.reset()
        assert not collector.incomplete
        assert collector.lines == []


class TestReadHeredoc:
    def test_reads_until_delimiter(self):
        body = read_heredoc("EOF", False, feeder("line one", "  line two", "EOF", "after"))
        assert body == "line one\n  line two"

    def test_delimiter_must_match_exactly(self):
        body = read_heredoc("EOF", False, feeder(" EOF", "EOF "," EOF", "EOF"))
        assert body == " EOF\nEOF \n EOF"

    def test_strip_one_tab(self):
        body = read_heredoc("END", True, feeder("\tone", "\t\ttwo", "END"))
        assert body == "one\n\ttwo"

    def test_end_of_input(self):
        assert read_heredoc("EOF", False, feeder("partial")) == "partial"

    def test_empty_body(self):
        assert read_heredoc("EOF", False, feeder("EOF")) == ""


class TestSubmit:
    def test_heredoc_feeds_command(self, session, capsys):
        session.env.set("WHO", "world")
        rc = main.submit("grep hello <<EOF", session, feeder("hello $WHO", "bye", "EOF"))
        assert rc == 0
        assert capsys.readouterr().out == "hello world\n"

    def test_heredoc_with_substitution(self, session, capsys):
        main.submit("cat <<EOF", session, feeder("now $(echo here)", "EOF"))
        assert capsys.readouterr().out == "now here\n"

    def test_plain_line(self, session, capsys):
        assert main.submit("echo plain", session, feeder()) == 0
        assert capsys.readouterr().out == "plain\n"


class TestRunScript:
    def write_script(self, tmp_path, text):
        path = tmp_path / "script.msh"
        path.write_text(text)
        return path

    def test_runs_lines_and_blocks(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        path = self.write_script(
            tmp_path,
            "# a comment\n"
            "echo start\n"
            "\n"
            "for i in 1 2\n"
            "do\n"
            "    echo n$i\n"
            "done\n"
            "env NAME=script\n"
            "cat <<EOF\n"
            "hello $NAME\n"
            "EOF\n"
            "echo end\n",
        )
        assert main.run_script(path, session) == 0
        assert capsys.readouterr().out == "start\nn1\nn2\nhello script\nend\n"

    def test_heredoc_strip_tabs(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "cat <<-END\n\tindented\nEND\n")
        main.run_script(path, session)
        assert capsys.readouterr().out == "indented\n"

    def test_missing_script(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        assert main.run_script(tmp_path / "nope.msh", session) == 1
        assert "Error: Script file" in capsys.readouterr().err

    def test_incomplete_block(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "if pwd; then\necho never\n")
        assert main.run_script(path, session) == 1
        captured = capsys.readouterr()
        assert "Incomplete block structure" in captured.err
        assert "never" not in captured.out

    def test_exit_stops_script(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "echo before\nexit\necho after\n")
        main.run_script(path, session)
        assert capsys.readouterr().out == "before\ngood bye\n"

    def test_error_does_not_stop_script(self, session, sandbox, capsys):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "cat missing\necho still here\n")
        assert main.run_script(path, session) == 0
        captured = capsys.readouterr()
        assert captured.out == "still here\n"
        assert "IO error" in captured.err

    def test_unexpected_failure_does_not_stop_script(self, session, sandbox, capsys, monkeypatch):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "echo broken\necho fine\n")
        real_submit = main.submit

        def flaky_submit(text, session, next_line):
            if text == "echo broken":
                raise RuntimeError("unexpected")
            return real_submit(text, session, next_line)

        monkeypatch.setattr(main, "submit", flaky_submit)
        assert main.run_script(path, session) == 0
        captured = capsys.readouterr()
        assert captured.out == "fine\n"
        assert "minish: parse/exec error: unexpected" in captured.err

    def test_main_saves_history(self, sandbox):
        tmp_path, _ = sandbox
        path = self.write_script(tmp_path, "echo recorded\n")
        with pytest.raises(SystemExit) as excinfo:
            main.main([str(path)])
        assert excinfo.value.code == 0
        assert (tmp_path / ".minish_history").read_text() == "echo recorded\n"


class TestSettings:
    def test_max_jobs_from_env(self, monkeypatch):
        monkeypatch.setenv("MINISH_MAX_JOBS", "3")
        assert main.max_jobs_from_env() == 3
        monkeypatch.setenv("MINISH_MAX_JOBS", "lots")
        assert main.max_jobs_from_env() == main.DEFAULT_MAX_WORKERS
        monkeypatch.delenv("MINISH_MAX_JOBS")
        assert main.max_jobs_from_env() == main.DEFAULT_MAX_WORKERS

    def test_parse_args(self):
        args = main.parse_args(["--debug", "run.msh"])
        assert args.debug is True
        assert args.script == "run.msh"
        assert main.parse_args([]).script is None
